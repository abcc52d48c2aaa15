"""
Unit tests for SessionManager orchestration of per-user sessions.
"""
import asyncio
import logging
import unittest

from evalrunner.config_manager import ConfigManager
from evalrunner.errors import (
    ApiError,
    ApiNotFoundError,
    SessionConflictError,
    SessionNotFoundError,
)
from evalrunner.models import Attempt
from evalrunner.session import SessionState
from evalrunner.session_manager import SessionManager
from tests.test_fixtures import FakeEvaluationService, TestFixtures

USER_ID = 111
LEARNER_ID = 3


class TestSessionManager(unittest.IsolatedAsyncioTestCase):
    """Test cases for SessionManager functionality."""

    def setUp(self):
        """Set up test fixtures."""
        logging.disable(logging.CRITICAL)
        self.service = FakeEvaluationService()
        self.config_manager = ConfigManager()
        self.config_manager.set_tick_interval(0.01)
        self.config_manager.link_learner(USER_ID, LEARNER_ID)
        self.manager = SessionManager(self.service, self.config_manager)

    async def asyncTearDown(self):
        await self.manager.shutdown()
        logging.disable(logging.NOTSET)

    async def test_start_evaluation(self):
        result = await self.manager.start_evaluation(USER_ID, 7)
        self.assertTrue(result['success'])
        self.assertEqual(result['session_info']['state'], 'active')
        session = self.manager.get_session(USER_ID)
        self.assertEqual(session.learner_id, LEARNER_ID)
        self.assertTrue(self.manager.has_live_session(USER_ID))
        self.assertEqual(self.manager.get_live_session_count(), 1)

    async def test_unlinked_user_rejected(self):
        result = await self.manager.start_evaluation(999, 7)
        self.assertFalse(result['success'])
        self.assertIn("not linked", result['user_message'])
        self.assertIsNone(self.manager.get_session(999))

    async def test_second_start_while_live_rejected(self):
        await self.manager.start_evaluation(USER_ID, 7)
        first = self.manager.get_session(USER_ID)
        result = await self.manager.start_evaluation(USER_ID, 7)
        self.assertFalse(result['success'])
        self.assertIn('session_info', result)
        self.assertIs(self.manager.get_session(USER_ID), first)

    async def test_load_failure_drops_session(self):
        self.service.fetch_error = ApiNotFoundError("Évaluation non trouvée", 404)
        result = await self.manager.start_evaluation(USER_ID, 99)
        self.assertFalse(result['success'])
        self.assertIn("could not be loaded", result['user_message'])
        self.assertIsNone(self.manager.get_session(USER_ID))

    async def test_answer_and_navigate(self):
        await self.manager.start_evaluation(USER_ID, 7)
        result = self.manager.answer(USER_ID, "B")
        self.assertTrue(result['success'])
        result = self.manager.navigate(USER_ID, 1)
        self.assertEqual(result['index'], 1)
        result = self.manager.navigate(USER_ID, 10)
        self.assertEqual(result['index'], 2)

    async def test_invalid_answer_reported(self):
        await self.manager.start_evaluation(USER_ID, 7)
        result = self.manager.answer(USER_ID, "Z")
        self.assertFalse(result['success'])
        self.assertIn("not an option", result['user_message'])

    async def test_actions_without_session(self):
        self.assertFalse(self.manager.answer(USER_ID, "A")['success'])
        self.assertFalse(self.manager.navigate(USER_ID, 1)['success'])
        self.assertFalse((await self.manager.submit(USER_ID))['success'])
        self.assertFalse(self.manager.leave(USER_ID)['success'])

    async def test_submit_from_last_question(self):
        await self.manager.start_evaluation(USER_ID, 7)
        early = await self.manager.submit(USER_ID)
        self.assertFalse(early['success'])

        self.manager.navigate(USER_ID, 2)
        result = await self.manager.submit(USER_ID)
        self.assertTrue(result['success'])
        self.assertEqual(result['attempt'].id, 101)
        self.assertEqual(self.manager.get_session(USER_ID).state, SessionState.COMPLETED)
        self.assertFalse(self.manager.has_live_session(USER_ID))

        again = await self.manager.submit(USER_ID)
        self.assertFalse(again['success'])
        self.assertEqual(len(self.service.submissions), 1)

    async def test_failed_submit_then_retry(self):
        self.service.failures_before_success = 1
        await self.manager.start_evaluation(USER_ID, 7)
        self.manager.navigate(USER_ID, 2)
        failed = await self.manager.submit(USER_ID)
        self.assertFalse(failed['success'])
        self.assertIn("/submit", failed['user_message'])
        retried = await self.manager.submit(USER_ID)
        self.assertTrue(retried['success'])
        self.assertEqual(len(self.service.submissions), 2)

    async def test_retake_creates_fresh_session(self):
        await self.manager.start_evaluation(USER_ID, 7)
        first = self.manager.get_session(USER_ID)
        self.manager.answer(USER_ID, "A")

        not_yet = await self.manager.retake(USER_ID)
        self.assertFalse(not_yet['success'])

        self.manager.navigate(USER_ID, 2)
        await self.manager.submit(USER_ID)
        result = await self.manager.retake(USER_ID)
        self.assertTrue(result['success'])
        second = self.manager.get_session(USER_ID)
        self.assertIsNot(second, first)
        self.assertTrue(first.is_closed)
        self.assertEqual(len(second.answers), 0)
        self.assertEqual(second.state, SessionState.ACTIVE)

    async def test_leave_closes_session(self):
        await self.manager.start_evaluation(USER_ID, 7)
        session = self.manager.get_session(USER_ID)
        result = self.manager.leave(USER_ID)
        self.assertTrue(result['success'])
        self.assertEqual(result['state'], 'active')
        self.assertTrue(session.is_closed)
        self.assertFalse(session.timer.is_running)
        self.assertIsNone(self.manager.get_session(USER_ID))

    async def test_leave_mid_submission(self):
        self.service.release = asyncio.Event()
        await self.manager.start_evaluation(USER_ID, 7)
        self.manager.navigate(USER_ID, 2)
        submitting = asyncio.create_task(self.manager.submit(USER_ID))
        await asyncio.sleep(0.01)
        result = self.manager.leave(USER_ID)
        self.assertEqual(result['state'], 'submitting')
        self.service.release.set()
        outcome = await submitting
        self.assertFalse(outcome['success'])

    async def test_review_attempt(self):
        result = await self.manager.review_attempt(USER_ID, 42)
        self.assertTrue(result['success'])
        self.assertEqual(result['review'].attempt.id, 42)

    async def test_review_missing_attempt(self):
        async def missing(learner_id, attempt_id):
            raise ApiNotFoundError("Tentative non trouvée", 404)

        self.service.fetch_attempt_detail = missing
        result = await self.manager.review_attempt(USER_ID, 999)
        self.assertFalse(result['success'])
        self.assertTrue(result['not_found'])

    async def test_history(self):
        self.service.attempts = [
            TestFixtures.create_attempt(1, score=9, total_points=10),
            TestFixtures.create_attempt(2, score=4, total_points=10),
        ]
        result = await self.manager.history(USER_ID)
        self.assertTrue(result['success'])
        self.assertEqual(len(result['attempts']), 2)
        self.assertEqual(result['stats'].count, 2)
        self.assertEqual(result['stats'].passed, 1)

    async def test_history_backend_failure(self):
        async def failing(learner_id, limit=50):
            raise ApiError("down", 503)

        self.service.list_attempts = failing
        result = await self.manager.history(USER_ID)
        self.assertFalse(result['success'])
        self.assertIn("unavailable", result['user_message'])

    async def test_list_evaluations(self):
        result = await self.manager.list_evaluations(USER_ID)
        self.assertTrue(result['success'])
        self.assertEqual([e.id for e in result['evaluations']], [7])

    async def test_list_evaluations_unlinked_and_failing(self):
        self.assertIn("not linked", (await self.manager.list_evaluations(999))['user_message'])

        async def failing(learner_id):
            raise ApiError("down", 500)

        self.service.list_evaluations = failing
        result = await self.manager.list_evaluations(USER_ID)
        self.assertFalse(result['success'])
        self.assertIn("unavailable", result['user_message'])

    async def test_second_start_reports_conflict(self):
        await self.manager.start_evaluation(USER_ID, 7)
        with self.assertRaises(SessionConflictError):
            self.manager._ensure_no_live_session(USER_ID)
        result = await self.manager.start_evaluation(USER_ID, 9)
        self.assertIn("already have an evaluation in progress", result['user_message'])
        self.assertIn("evaluation 7", result['error'])
        self.assertEqual(self.manager.get_live_session_count(), 1)

    async def test_actions_without_session_report_not_found(self):
        with self.assertRaises(SessionNotFoundError):
            self.manager._require_session(USER_ID)
        results = [
            self.manager.answer(USER_ID, "A"),
            self.manager.navigate(USER_ID, 1),
            await self.manager.submit(USER_ID),
            await self.manager.retake(USER_ID),
            self.manager.leave(USER_ID),
        ]
        for result in results:
            self.assertFalse(result['success'])
            self.assertEqual(result['error'], f"No session for user {USER_ID}")
            self.assertIn("not taking an evaluation", result['user_message'])
        self.assertEqual(self.manager.get_live_session_count(), 0)


if __name__ == '__main__':
    unittest.main()
