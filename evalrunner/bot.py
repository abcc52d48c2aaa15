import discord
from discord.ext import commands
import logging
import os
from typing import Dict, Optional

from .api_client import EvaluationApiClient
from .config_manager import ConfigManager
from .models import Attempt
from .presenter import (
    COLOR_INFO,
    COLOR_SUCCESS,
    COLOR_WARNING,
    build_evaluations_embed,
    build_history_embed,
    build_message_embed,
    build_question_embed,
    build_results_embed,
    build_review_embed,
)
from .session import EvaluationSession, SessionState
from .session_manager import SessionManager

logger = logging.getLogger(__name__)


class EvaluationBot(commands.Bot):
    """Discord bot for taking timed evaluations"""

    def __init__(self, config=None, config_manager: Optional[ConfigManager] = None):
        # Minimal intents, slash commands only
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager = config_manager or ConfigManager()
        self.api_client: Optional[EvaluationApiClient] = None
        self.session_manager: Optional[SessionManager] = None

        # Per-user presentation state
        self._question_messages: Dict[int, discord.Message] = {}
        self._channels: Dict[int, discord.abc.Messageable] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            if self.app_config:
                errors = self.config_manager.apply_config(self.app_config)
                for error in errors:
                    logger.warning(f"Ignored configuration value: {error}")

            validation = self.config_manager.validate_settings()
            for issue in validation["issues"]:
                logger.warning(f"Settings issue: {issue}")

            settings = self.config_manager.get_settings()
            self.api_client = EvaluationApiClient(settings.api_base_url, settings.request_timeout)
            self.session_manager = SessionManager(self.api_client, self.config_manager)

            await self.setup_commands()
            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="evaluate", description="Start a timed evaluation")
        async def evaluate_command(interaction: discord.Interaction, evaluation_id: int):
            await self.handle_evaluate(interaction, evaluation_id)

        @self.tree.command(name="choose", description="Select (or toggle) an option of the current question")
        async def choose_command(interaction: discord.Interaction, option: int):
            await self.handle_choose(interaction, option)

        @self.tree.command(name="write", description="Answer the current free-text question")
        async def write_command(interaction: discord.Interaction, text: str):
            await self.handle_write(interaction, text)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_navigate(interaction, 1)

        @self.tree.command(name="previous", description="Go to the previous question")
        async def previous_command(interaction: discord.Interaction):
            await self.handle_navigate(interaction, -1)

        @self.tree.command(name="submit", description="Submit your answers (from the last question)")
        async def submit_command(interaction: discord.Interaction):
            await self.handle_submit(interaction)

        @self.tree.command(name="leave", description="Leave the current evaluation")
        async def leave_command(interaction: discord.Interaction):
            await self.handle_leave(interaction)

        @self.tree.command(name="retake", description="Take the evaluation you just finished again")
        async def retake_command(interaction: discord.Interaction):
            await self.handle_retake(interaction)

        @self.tree.command(name="review", description="Review the answers of a past attempt")
        async def review_command(interaction: discord.Interaction, attempt_id: int):
            await self.handle_review(interaction, attempt_id)

        @self.tree.command(name="evaluations", description="List the evaluations assigned to you")
        async def evaluations_command(interaction: discord.Interaction):
            await self.handle_evaluations(interaction)

        @self.tree.command(name="history", description="Show your evaluation history")
        async def history_command(interaction: discord.Interaction):
            await self.handle_history(interaction)

        @self.tree.command(name="status", description="Show your current evaluation progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.session_manager is not None:
            await self.session_manager.shutdown()
        if self.api_client is not None:
            await self.api_client.aclose()
        await super().close()

    # ------------------------------------------------------------------
    # Session callbacks

    def _session_callbacks(self, user_id: int) -> Dict[str, object]:
        """Build the tick, completion and failure callbacks for a user's session."""
        refresh = self.config_manager.get_settings().timer_refresh_interval

        async def on_tick(session: EvaluationSession, remaining: int):
            if remaining % refresh == 0 or remaining <= 5:
                await self._refresh_question_message(user_id, session)

        async def on_completed(session: EvaluationSession, attempt: Attempt):
            await self._announce_results(user_id, session, attempt)

        async def on_failed(session: EvaluationSession, error: Exception):
            channel = self._channels.get(user_id)
            if channel is None:
                return
            await channel.send(
                content=f"<@{user_id}>",
                embed=build_message_embed(
                    "Your answers could not be submitted. Use /submit to try again.",
                    "❌ Submission Failed"
                )
            )

        return {
            'tick_callback': on_tick,
            'completion_callback': on_completed,
            'failure_callback': on_failed,
        }

    async def _refresh_question_message(self, user_id: int, session: EvaluationSession):
        message = self._question_messages.get(user_id)
        if message is None or session.evaluation is None:
            return
        try:
            await message.edit(embed=build_question_embed(session))
        except discord.NotFound:
            self._question_messages.pop(user_id, None)
        except discord.HTTPException as e:
            logger.warning(f"Failed to refresh question message for user {user_id}: {e}")

    async def _announce_results(self, user_id: int, session: EvaluationSession, attempt: Attempt):
        message = self._question_messages.pop(user_id, None)
        if message is not None:
            try:
                await message.edit(embed=build_question_embed(session))
            except discord.HTTPException as e:
                logger.warning(f"Failed to lock question message for user {user_id}: {e}")

        channel = self._channels.get(user_id)
        if channel is None:
            return
        pass_threshold = self.config_manager.get_settings().pass_threshold
        timed_out = session.remaining_seconds == 0
        try:
            await channel.send(
                content=f"<@{user_id}>",
                embed=build_results_embed(attempt, pass_threshold, timed_out=timed_out)
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to post results of attempt {attempt.id} for user {user_id}: {e}")

    # ------------------------------------------------------------------
    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="🎯 Evaluation Bot Commands",
            description="Take timed evaluations and review your results",
            color=COLOR_SUCCESS
        )
        embed.add_field(
            name="📝 Taking an evaluation",
            value=(
                "`/evaluations` - List the evaluations assigned to you\n"
                "`/evaluate <id>` - Start a timed evaluation\n"
                "`/choose <n>` - Select option n (toggles on multi-answer questions)\n"
                "`/write <text>` - Answer a free-text question\n"
                "`/next`, `/previous` - Move between questions\n"
                "`/submit` - Submit from the last question\n"
                "`/leave` - Abandon the evaluation\n"
                "`/status` - Show your progress"
            ),
            inline=False
        )
        embed.add_field(
            name="📊 Results",
            value=(
                "`/retake` - Start the finished evaluation again\n"
                "`/review <attempt>` - See which answers were correct\n"
                "`/history` - Your past attempts and statistics"
            ),
            inline=False
        )
        embed.add_field(
            name="⚙️ Settings",
            value=(
                f"{self.config_manager.get_settings_summary()}\n"
                f"• Evaluations in progress: {self.session_manager.get_live_session_count()}"
            ),
            inline=False
        )
        embed.set_footer(text="When time runs out your answers are submitted automatically.")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def _start(self, interaction: discord.Interaction, result: Dict):
        user_id = interaction.user.id
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Evaluation Not Started")
            return

        session = self.session_manager.get_session(user_id)
        self._channels[user_id] = interaction.channel
        evaluation = session.evaluation
        intro = build_message_embed(
            evaluation.description or "Good luck!",
            f"🎯 {evaluation.title}",
            color=COLOR_INFO,
            footer=f"{session.question_count} questions • {evaluation.duration_minutes} minutes"
        )
        await interaction.followup.send(embed=intro, ephemeral=True)
        self._question_messages[user_id] = await interaction.followup.send(
            embed=build_question_embed(session), ephemeral=True, wait=True
        )

    async def handle_evaluate(self, interaction: discord.Interaction, evaluation_id: int):
        """Handle /evaluate command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.start_evaluation(
            interaction.user.id, evaluation_id, **self._session_callbacks(interaction.user.id)
        )
        await self._start(interaction, result)

    async def handle_retake(self, interaction: discord.Interaction):
        """Handle /retake command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.retake(
            interaction.user.id, **self._session_callbacks(interaction.user.id)
        )
        await self._start(interaction, result)

    async def _respond_with_question(self, interaction: discord.Interaction, result: Dict):
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'])
            return
        session = self.session_manager.get_session(interaction.user.id)
        await interaction.response.send_message(embed=build_question_embed(session), ephemeral=True)
        self._question_messages[interaction.user.id] = await interaction.original_response()

    async def handle_choose(self, interaction: discord.Interaction, option: int):
        """Handle /choose command"""
        session = self.session_manager.get_session(interaction.user.id)
        question = session.current_question if session is not None else None
        if question is None or not question.type.is_choice:
            await self.send_error_response(interaction, "The current question has no options. Use /write.")
            return
        if not 1 <= option <= len(question.options):
            await self.send_error_response(
                interaction, f"Pick an option between 1 and {len(question.options)}."
            )
            return
        result = self.session_manager.answer(interaction.user.id, question.options[option - 1])
        await self._respond_with_question(interaction, result)

    async def handle_write(self, interaction: discord.Interaction, text: str):
        """Handle /write command"""
        result = self.session_manager.answer(interaction.user.id, text)
        await self._respond_with_question(interaction, result)

    async def handle_navigate(self, interaction: discord.Interaction, step: int):
        """Handle /next and /previous commands"""
        result = self.session_manager.navigate(interaction.user.id, step)
        await self._respond_with_question(interaction, result)

    async def handle_submit(self, interaction: discord.Interaction):
        """Handle /submit command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.submit(interaction.user.id)
        if result['success']:
            await interaction.followup.send(
                embed=build_message_embed("Your answers were graded.", "✅ Submitted", color=COLOR_SUCCESS),
                ephemeral=True
            )
        else:
            await self.send_error_response(interaction, result['user_message'], "❌ Submission")

    async def handle_leave(self, interaction: discord.Interaction):
        """Handle /leave command"""
        user_id = interaction.user.id
        result = self.session_manager.leave(user_id)
        self._question_messages.pop(user_id, None)
        self._channels.pop(user_id, None)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'])
            return
        note = "Your evaluation was abandoned."
        if result['state'] == SessionState.SUBMITTING.value:
            note = "You left while your answers were being submitted."
        await self.send_info_response(interaction, note, "👋 Left Evaluation")

    async def handle_review(self, interaction: discord.Interaction, attempt_id: int):
        """Handle /review command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.review_attempt(interaction.user.id, attempt_id)
        if result['success']:
            await interaction.followup.send(embed=build_review_embed(result['review']), ephemeral=True)
        elif result.get('not_found'):
            await self.send_warning_response(interaction, result['user_message'], "🔍 Attempt Not Found")
        else:
            await self.send_error_response(interaction, result['user_message'], "❌ Review Unavailable")

    async def handle_history(self, interaction: discord.Interaction):
        """Handle /history command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.history(interaction.user.id)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ History Unavailable")
            return
        pass_threshold = self.config_manager.get_settings().pass_threshold
        await interaction.followup.send(
            embed=build_history_embed(result['attempts'], result['stats'], pass_threshold),
            ephemeral=True
        )

    async def handle_evaluations(self, interaction: discord.Interaction):
        """Handle /evaluations command"""
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.session_manager.list_evaluations(interaction.user.id)
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Evaluations Unavailable")
            return
        await interaction.followup.send(embed=build_evaluations_embed(result['evaluations']), ephemeral=True)

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        session = self.session_manager.get_session(interaction.user.id)
        if session is None:
            await self.send_info_response(interaction, "You are not taking an evaluation.")
            return
        if session.state in (SessionState.ACTIVE, SessionState.SUBMITTING):
            await interaction.response.send_message(embed=build_question_embed(session), ephemeral=True)
            return
        if session.state is SessionState.COMPLETED and session.attempt is not None:
            pass_threshold = self.config_manager.get_settings().pass_threshold
            await interaction.response.send_message(
                embed=build_results_embed(session.attempt, pass_threshold), ephemeral=True
            )
            return
        await self.send_info_response(interaction, f"Your evaluation is {session.state.value}.")

    # ------------------------------------------------------------------
    # Responses

    async def _send(self, interaction: discord.Interaction, embed: discord.Embed):
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send '{embed.title}' response to user")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        embed = build_message_embed(
            message, title, footer="If this error persists, try using /help for available commands"
        )
        await self._send(interaction, embed)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send(interaction, build_message_embed(message, title, color=COLOR_INFO))

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send(interaction, build_message_embed(message, title, color=COLOR_WARNING))


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = EvaluationBot(config)

    try:
        logger.info("Starting Evaluation Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
