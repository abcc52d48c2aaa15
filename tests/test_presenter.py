"""
Unit tests for embed rendering.
"""
import unittest

from evalrunner.history import summarize_attempts
from evalrunner.presenter import (
    COLOR_ERROR,
    COLOR_SUCCESS,
    build_evaluations_embed,
    build_history_embed,
    build_message_embed,
    build_question_embed,
    build_results_embed,
    build_review_embed,
)
from evalrunner.models import EvaluationSummary
from evalrunner.review import ReviewReconciler
from evalrunner.session import EvaluationSession
from tests.test_fixtures import FakeEvaluationService, TestFixtures


class TestQuestionEmbed(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.session = EvaluationSession(7, 3, FakeEvaluationService(), tick_interval=0.01)
        await self.session.load()

    async def asyncTearDown(self):
        self.session.close()

    async def test_choice_question_marks_selection(self):
        self.session.capture("B")
        embed = build_question_embed(self.session)
        options = embed.fields[0].value
        self.assertIn("🔘 **2.** B", options)
        self.assertIn("⚪ **1.** A", options)
        self.assertNotIn("/submit", embed.footer.text)

    async def test_last_question_offers_submit(self):
        self.session.go_to(2)
        embed = build_question_embed(self.session)
        self.assertEqual(embed.fields[0].name, "Your answer")
        self.assertIn("/submit", embed.footer.text)


class TestResultEmbeds(unittest.TestCase):

    def test_passed_results(self):
        embed = build_results_embed(TestFixtures.create_attempt(score=4, total_points=5))
        self.assertEqual(embed.color.value, COLOR_SUCCESS)
        self.assertIn("80.0%", embed.description)

    def test_failed_timed_out_results(self):
        embed = build_results_embed(TestFixtures.create_attempt(score=1, total_points=5), timed_out=True)
        self.assertEqual(embed.color.value, COLOR_ERROR)
        self.assertIn("Time ran out", embed.footer.text)

    def test_review_embed(self):
        review = ReviewReconciler().reconcile(TestFixtures.create_attempt_detail())
        embed = build_review_embed(review)
        self.assertIn("1/3 correct", embed.description)
        self.assertIn("1 awaiting manual review", embed.description)
        self.assertIn("No answer provided", embed.fields[2].value)
        self.assertIn("✔️ correct answer", embed.fields[1].value)

    def test_history_embed(self):
        attempts = [TestFixtures.create_attempt(1, score=5, total_points=5)]
        embed = build_history_embed(attempts, summarize_attempts(attempts))
        self.assertIn("100.0%", embed.fields[-1].value)

    def test_history_embed_shows_completion(self):
        attempts = [
            TestFixtures.create_attempt(1, score=5, total_points=5),
            TestFixtures.create_attempt(2, finished=False),
        ]
        embed = build_history_embed(attempts, summarize_attempts(attempts))
        completed = next(f for f in embed.fields if f.name == "Completed")
        self.assertEqual(completed.value, "1/2 (50.0%)")

    def test_history_embed_with_only_unfinished(self):
        attempts = [TestFixtures.create_attempt(1, finished=False)]
        embed = build_history_embed(attempts, summarize_attempts(attempts))
        self.assertIn("1 started but not finished", embed.description)

    def test_empty_history_embed(self):
        embed = build_history_embed([], summarize_attempts([]))
        self.assertEqual(len(embed.fields), 0)

    def test_evaluations_embed(self):
        evaluations = [
            EvaluationSummary(id=7, title="Safety basics", duration_minutes=15, course="Onboarding"),
            EvaluationSummary(id=9, title="", duration_minutes=20),
        ]
        embed = build_evaluations_embed(evaluations)
        self.assertIn("`#7` **Safety basics** • 15 min • Onboarding", embed.description)
        self.assertIn("`#9` **Untitled** • 20 min", embed.description)
        self.assertIn("/evaluate", embed.footer.text)

    def test_empty_evaluations_embed(self):
        embed = build_evaluations_embed([])
        self.assertIn("No evaluations", embed.description)

    def test_message_embed_footer(self):
        embed = build_message_embed("text", "Title", footer="hint")
        self.assertEqual(embed.footer.text, "hint")


if __name__ == '__main__':
    unittest.main()
