"""
Attempt review reconciliation.

Rebuilds a per-question correctness review from the grading service's
attempt detail: the learner's recorded answer is compared with the
authoritative correct answers using the equality rule of each question type.
Free-text answers are never auto-graded and always need manual review.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .answers import (
    AnswerValue,
    MultiChoiceAnswer,
    SingleChoiceAnswer,
    TextAnswer,
    answer_from_wire,
)
from .errors import (
    ApiError,
    ApiNotFoundError,
    AttemptNotFoundError,
    PayloadError,
    ReviewFetchError,
)
from .models import Attempt, Question, QuestionType

logger = logging.getLogger(__name__)

NO_ANSWER_MARKER = "No answer provided"


class Verdict(Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class OptionMark:
    """One option of a choice question, flagged for display."""
    label: str
    chosen: bool
    correct: bool


@dataclass(frozen=True)
class QuestionReview:
    question: Question
    recorded_answer: Optional[AnswerValue]
    correct_answers: FrozenSet[str]
    verdict: Verdict
    option_marks: Tuple[OptionMark, ...] = ()
    display_text: Optional[str] = None
    reported_correct: Optional[bool] = None

    @property
    def is_correct(self) -> bool:
        return self.verdict is Verdict.CORRECT

    @property
    def needs_manual_review(self) -> bool:
        return self.verdict is Verdict.MANUAL_REVIEW


@dataclass(frozen=True)
class AttemptReview:
    attempt: Attempt
    evaluation_title: str
    questions: Tuple[QuestionReview, ...]

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def correct_count(self) -> int:
        return sum(1 for q in self.questions if q.is_correct)

    @property
    def manual_review_count(self) -> int:
        return sum(1 for q in self.questions if q.needs_manual_review)


def judge(question_type: QuestionType, recorded: Optional[AnswerValue],
          correct_answers: FrozenSet[str]) -> Verdict:
    """
    Decide whether a recorded answer is correct.

    single choice: the recorded label equals the single correct option
    multi choice: the recorded set equals the correct set
    free text: always manual review
    """
    if question_type is QuestionType.TEXT:
        return Verdict.MANUAL_REVIEW
    if question_type is QuestionType.SINGLE_CHOICE:
        if not isinstance(recorded, SingleChoiceAnswer) or recorded.option is None:
            return Verdict.INCORRECT
        if len(correct_answers) != 1:
            return Verdict.INCORRECT
        return Verdict.CORRECT if recorded.option in correct_answers else Verdict.INCORRECT
    if question_type is QuestionType.MULTI_CHOICE:
        if not isinstance(recorded, MultiChoiceAnswer):
            return Verdict.INCORRECT
        return Verdict.CORRECT if recorded.options == correct_answers else Verdict.INCORRECT
    raise TypeError(f"Unhandled question type: {question_type!r}")


def _chosen_labels(recorded: Optional[AnswerValue]) -> FrozenSet[str]:
    if isinstance(recorded, SingleChoiceAnswer):
        return frozenset([recorded.option]) if recorded.option is not None else frozenset()
    if isinstance(recorded, MultiChoiceAnswer):
        return recorded.options
    return frozenset()


def _display_text(recorded: Optional[AnswerValue]) -> str:
    if isinstance(recorded, TextAnswer) and recorded.text != "":
        return recorded.text
    return NO_ANSWER_MARKER


class ReviewReconciler:
    """Builds attempt reviews from grading service detail."""

    def __init__(self, grading_service=None):
        """
        Args:
            grading_service: Object exposing async fetch_attempt_detail(learner_id, attempt_id);
                only needed for fetch_review()
        """
        self._grading_service = grading_service

    def reconcile_question(self, payload: Dict[str, Any]) -> QuestionReview:
        question = Question.from_payload(payload)

        raw_correct = payload.get('correct_answers') or []
        if not isinstance(raw_correct, (list, tuple)):
            raise PayloadError(f"Question {question.id} correct_answers must be a list")
        correct_answers = frozenset(str(a) for a in raw_correct)

        recorded = answer_from_wire(question.type, payload.get('user_answer'))
        verdict = judge(question.type, recorded, correct_answers)

        option_marks: Tuple[OptionMark, ...] = ()
        display_text = None
        if question.type.is_choice:
            chosen = _chosen_labels(recorded)
            option_marks = tuple(
                OptionMark(label=o, chosen=o in chosen, correct=o in correct_answers)
                for o in question.options
            )
        else:
            display_text = _display_text(recorded)

        reported = payload.get('is_correct')
        return QuestionReview(
            question=question,
            recorded_answer=recorded,
            correct_answers=correct_answers,
            verdict=verdict,
            option_marks=option_marks,
            display_text=display_text,
            reported_correct=bool(reported) if reported is not None else None
        )

    def reconcile(self, detail: Dict[str, Any]) -> AttemptReview:
        """
        Build a review from an attempt detail payload.

        Args:
            detail: Payload with attempt, questions and summary

        Returns:
            Read-only AttemptReview

        Raises:
            PayloadError: If the payload is malformed
        """
        if not isinstance(detail, dict):
            raise PayloadError("Attempt detail must be an object")
        raw_attempt = detail.get('attempt')
        if not isinstance(raw_attempt, dict):
            raise PayloadError("Attempt detail is missing 'attempt'")
        raw_questions = detail.get('questions')
        if not isinstance(raw_questions, list):
            raise PayloadError("Attempt detail is missing 'questions'")

        summary = detail.get('summary') or {}
        merged = dict(raw_attempt)
        for key in ('score', 'total_points', 'temps_utilise'):
            if merged.get(key) is None and summary.get(key) is not None:
                merged[key] = summary[key]
        attempt = Attempt.from_payload(merged)

        questions = tuple(self.reconcile_question(q) for q in raw_questions)
        review = AttemptReview(
            attempt=attempt,
            evaluation_title=str(raw_attempt.get('evaluation_titre') or ''),
            questions=questions
        )

        disagreements = [
            q.question.id for q in questions
            if q.reported_correct is not None and q.question.type.is_choice
            and q.reported_correct != q.is_correct
        ]
        if disagreements:
            logger.warning(
                f"Attempt {attempt.id}: backend correctness differs on questions {disagreements}"
            )
        return review

    async def fetch_review(self, learner_id: int, attempt_id: int) -> AttemptReview:
        """
        Fetch attempt detail and reconcile it.

        Raises:
            AttemptNotFoundError: If the attempt does not exist
            ReviewFetchError: If the detail cannot be fetched or parsed
        """
        if self._grading_service is None:
            raise ReviewFetchError("No grading service configured for reviews")
        try:
            detail = await self._grading_service.fetch_attempt_detail(learner_id, attempt_id)
        except ApiNotFoundError as e:
            logger.info(f"Attempt {attempt_id} for learner {learner_id} not found")
            raise AttemptNotFoundError(f"Attempt {attempt_id} not found") from e
        except (ApiError, PayloadError) as e:
            logger.error(f"Could not fetch attempt {attempt_id} for learner {learner_id}: {e}")
            raise ReviewFetchError(f"Could not load attempt {attempt_id}: {e}") from e

        try:
            return self.reconcile(detail)
        except PayloadError as e:
            logger.error(f"Attempt {attempt_id} detail is malformed: {e}")
            raise ReviewFetchError(f"Attempt {attempt_id} detail is malformed: {e}") from e
