"""
Unit tests for the Discord bot command handlers with mocked Discord objects.
"""
import logging
import unittest
from unittest.mock import AsyncMock, Mock

import discord

from evalrunner.bot import EvaluationBot
from evalrunner.config_manager import ConfigManager
from evalrunner.session import SessionState
from evalrunner.session_manager import SessionManager
from tests.test_fixtures import AsyncTestHelpers, FakeEvaluationService, MockDiscordObjects

USER_ID = 111


class TestEvaluationBotHandlers(unittest.IsolatedAsyncioTestCase):
    """Test slash command handlers against a real SessionManager."""

    async def asyncSetUp(self):
        logging.disable(logging.CRITICAL)
        self.config_manager = ConfigManager()
        self.config_manager.set_tick_interval(0.01)
        self.config_manager.link_learner(USER_ID, 3)
        self.service = FakeEvaluationService()

        self.bot = EvaluationBot(config_manager=self.config_manager)
        self.bot.session_manager = SessionManager(self.service, self.config_manager)

        self.question_message = Mock()
        self.question_message.edit = AsyncMock()
        self.interaction = MockDiscordObjects.create_mock_interaction(USER_ID)
        self.interaction.followup.send = AsyncMock(return_value=self.question_message)

    async def asyncTearDown(self):
        await self.bot.session_manager.shutdown()
        logging.disable(logging.NOTSET)

    def sent_embed(self, mock) -> discord.Embed:
        return mock.call_args.kwargs['embed']

    async def start(self):
        await self.bot.handle_evaluate(self.interaction, 7)
        return self.bot.session_manager.get_session(USER_ID)

    async def test_evaluate_posts_intro_and_question(self):
        session = await self.start()
        self.interaction.response.defer.assert_awaited_once()
        self.assertEqual(self.interaction.followup.send.await_count, 2)
        question_embed = self.sent_embed(self.interaction.followup.send)
        self.assertIn("Question 1/3", question_embed.description)
        self.assertEqual(session.state, SessionState.ACTIVE)
        self.assertIs(self.bot._question_messages[USER_ID], self.question_message)

    async def test_evaluate_unlinked_user(self):
        interaction = MockDiscordObjects.create_mock_interaction(user_id=999)
        interaction.response.is_done.return_value = True
        await self.bot.handle_evaluate(interaction, 7)
        embed = self.sent_embed(interaction.followup.send)
        self.assertIn("not linked", embed.description)

    async def test_choose_selects_numbered_option(self):
        session = await self.start()
        await self.bot.handle_choose(self.interaction, 2)
        self.assertEqual(session.current_answer.option, "B")
        self.interaction.response.send_message.assert_awaited_once()

    async def test_choose_out_of_range(self):
        session = await self.start()
        await self.bot.handle_choose(self.interaction, 4)
        embed = self.sent_embed(self.interaction.response.send_message)
        self.assertIn("between 1 and 3", embed.description)
        self.assertEqual(len(session.answers), 0)

    async def test_choose_on_text_question(self):
        session = await self.start()
        session.go_to(2)
        await self.bot.handle_choose(self.interaction, 1)
        embed = self.sent_embed(self.interaction.response.send_message)
        self.assertIn("/write", embed.description)

    async def test_write_and_navigate(self):
        session = await self.start()
        await self.bot.handle_navigate(self.interaction, 2)
        self.assertEqual(session.index, 2)
        await self.bot.handle_write(self.interaction, "Use the stairs")
        self.assertEqual(session.current_answer.text, "Use the stairs")

    async def test_submit_posts_results_and_locks_question(self):
        session = await self.start()
        session.go_to(2)
        await self.bot.handle_submit(self.interaction)
        self.assertEqual(session.state, SessionState.COMPLETED)

        self.interaction.channel.send.assert_awaited_once()
        results = self.sent_embed(self.interaction.channel.send)
        self.assertIn("50.0%", results.description)
        locked = self.question_message.edit.call_args.kwargs['embed']
        self.assertIn("locked", locked.footer.text)
        self.assertNotIn(USER_ID, self.bot._question_messages)

    async def test_submit_failure_notifies_channel(self):
        self.service.failures_before_success = 1
        session = await self.start()
        session.go_to(2)
        await self.bot.handle_submit(self.interaction)
        self.assertEqual(session.state, SessionState.SUBMITTING)
        failure = self.sent_embed(self.interaction.channel.send)
        self.assertIn("/submit", failure.description)

    async def test_tick_refreshes_question_message(self):
        self.config_manager.set_timer_refresh_interval(1)
        await self.start()
        refreshed = await AsyncTestHelpers.wait_for(lambda: self.question_message.edit.await_count >= 2)
        self.assertTrue(refreshed)

    async def test_leave(self):
        session = await self.start()
        self.interaction.response.send_message.reset_mock()
        await self.bot.handle_leave(self.interaction)
        self.assertTrue(session.is_closed)
        embed = self.sent_embed(self.interaction.response.send_message)
        self.assertEqual(embed.title, "👋 Left Evaluation")

    async def test_review(self):
        await self.bot.handle_review(self.interaction, 42)
        embed = self.sent_embed(self.interaction.followup.send)
        self.assertIn("Review", embed.title)
        self.assertEqual(len(embed.fields), 3)

    async def test_history(self):
        await self.bot.handle_history(self.interaction)
        embed = self.sent_embed(self.interaction.followup.send)
        self.assertIn("not completed any", embed.description)

    async def test_status_without_session(self):
        await self.bot.handle_status(self.interaction)
        embed = self.sent_embed(self.interaction.response.send_message)
        self.assertIn("not taking", embed.description)

    async def test_help(self):
        await self.start()
        await self.bot.handle_help(self.interaction)
        embed = self.sent_embed(self.interaction.response.send_message)
        self.assertEqual(len(embed.fields), 3)
        self.assertIn("/evaluations", embed.fields[0].value)
        settings = embed.fields[2].value
        self.assertIn("Linked learners: 1", settings)
        self.assertIn("Evaluations in progress: 1", settings)

    async def test_evaluations(self):
        await self.bot.handle_evaluations(self.interaction)
        self.interaction.response.defer.assert_awaited_once()
        embed = self.sent_embed(self.interaction.followup.send)
        self.assertIn("`#7` **Safety basics**", embed.description)

    async def test_evaluations_unlinked_user(self):
        interaction = MockDiscordObjects.create_mock_interaction(user_id=999)
        interaction.response.is_done.return_value = True
        await self.bot.handle_evaluations(interaction)
        embed = self.sent_embed(interaction.followup.send)
        self.assertEqual(embed.title, "❌ Evaluations Unavailable")


class TestBotSetup(unittest.IsolatedAsyncioTestCase):
    """Test component wiring in setup_hook."""

    async def test_setup_applies_config_and_reports_settings_issues(self):
        config_manager = ConfigManager()
        bot = EvaluationBot(
            config={"api": {"base_url": "http://backend.test"}, "learners": {"111": 3}},
            config_manager=config_manager
        )
        bot.setup_commands = AsyncMock()
        config_manager.validate_settings = Mock(
            return_value={"valid": False, "issues": ["Invalid tick interval: 0"]}
        )

        with self.assertLogs('evalrunner.bot', level='WARNING') as captured:
            await bot.setup_hook()
        self.assertTrue(any("Invalid tick interval" in line for line in captured.output))
        self.assertEqual(bot.api_client.base_url, "http://backend.test")
        self.assertEqual(config_manager.get_learner_id(111), 3)
        bot.setup_commands.assert_awaited_once()
        await bot.api_client.aclose()


class TestResponseHelpers(unittest.IsolatedAsyncioTestCase):
    """Test error, info and warning response helpers."""

    async def asyncSetUp(self):
        self.bot = EvaluationBot()
        self.interaction = MockDiscordObjects.create_mock_interaction()

    async def test_uses_followup_when_response_done(self):
        self.interaction.response.is_done.return_value = True
        await self.bot.send_warning_response(self.interaction, "careful")
        self.interaction.followup.send.assert_awaited_once()
        self.interaction.response.send_message.assert_not_awaited()

    async def test_error_response_is_ephemeral(self):
        await self.bot.send_error_response(self.interaction, "broken")
        kwargs = self.interaction.response.send_message.call_args.kwargs
        self.assertTrue(kwargs['ephemeral'])
        self.assertEqual(kwargs['embed'].color.value, 0xff0000)

    async def test_http_exception_is_logged(self):
        response = Mock(status=500, reason="Server Error")
        self.interaction.response.send_message = AsyncMock(
            side_effect=discord.HTTPException(response, "boom")
        )
        with self.assertLogs('evalrunner.bot', level='ERROR'):
            await self.bot.send_info_response(self.interaction, "hello")


if __name__ == '__main__':
    unittest.main()
