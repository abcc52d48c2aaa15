"""
Core data models for the evaluation runner.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import PayloadError


class QuestionType(Enum):
    """Question types, valued by their wire names."""
    SINGLE_CHOICE = "multiple_choice"
    MULTI_CHOICE = "multiple_choice_multiple"
    TEXT = "text"

    @classmethod
    def from_wire(cls, value: Any) -> "QuestionType":
        try:
            return cls(value)
        except ValueError:
            raise PayloadError(f"Unknown question type: {value!r}")

    @property
    def is_choice(self) -> bool:
        return self is not QuestionType.TEXT


def _require(payload: Dict[str, Any], key: str, what: str) -> Any:
    if not isinstance(payload, dict):
        raise PayloadError(f"{what} payload must be an object, got {type(payload).__name__}")
    if key not in payload or payload[key] is None:
        raise PayloadError(f"{what} payload is missing '{key}'")
    return payload[key]


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise PayloadError(f"{what} must be an integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PayloadError(f"{what} must be an integer, got {value!r}")


def _as_number(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise PayloadError(f"{what} must be a number, got bool")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise PayloadError(f"{what} must be a number, got {value!r}")


@dataclass(frozen=True)
class Question:
    """Represents a single evaluation question."""
    id: int
    prompt: str
    type: QuestionType
    options: Tuple[str, ...] = ()
    points: int = 1

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Question":
        """
        Build a question from its wire representation.

        Args:
            payload: Dictionary with id, question, type, options and points

        Returns:
            Parsed Question

        Raises:
            PayloadError: If a field is missing or malformed
        """
        question_id = _as_int(_require(payload, 'id', 'Question'), 'Question id')
        prompt = _require(payload, 'question', 'Question')
        question_type = QuestionType.from_wire(_require(payload, 'type', 'Question'))

        options = payload.get('options') or []
        if not isinstance(options, (list, tuple)) or not all(isinstance(o, str) for o in options):
            raise PayloadError(f"Question {question_id} options must be a list of strings")
        if question_type.is_choice and not options:
            raise PayloadError(f"Choice question {question_id} has no options")
        if not question_type.is_choice:
            options = []

        points = _as_int(payload.get('points', 1), f"Question {question_id} points")
        if points < 1:
            raise PayloadError(f"Question {question_id} points must be positive, got {points}")

        return cls(
            id=question_id,
            prompt=str(prompt),
            type=question_type,
            options=tuple(options),
            points=points
        )


@dataclass(frozen=True)
class Evaluation:
    """A named, timed assessment composed of an ordered set of questions."""
    id: int
    title: str
    description: str
    duration_minutes: int
    questions: Tuple[Question, ...]

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Evaluation":
        """
        Build an evaluation from the fetch-evaluation response.

        Raises:
            PayloadError: If the evaluation is malformed, has no questions
                or a non-positive duration
        """
        evaluation_id = _as_int(_require(payload, 'id', 'Evaluation'), 'Evaluation id')
        duration = _as_int(_require(payload, 'duree_minutes', 'Evaluation'), 'Evaluation duration')
        if duration < 1:
            raise PayloadError(f"Evaluation {evaluation_id} duration must be positive, got {duration}")

        raw_questions = _require(payload, 'questions', 'Evaluation')
        if not isinstance(raw_questions, list) or not raw_questions:
            raise PayloadError(f"Evaluation {evaluation_id} has no questions")
        questions = tuple(Question.from_payload(q) for q in raw_questions)

        seen = set()
        for question in questions:
            if question.id in seen:
                raise PayloadError(f"Evaluation {evaluation_id} repeats question id {question.id}")
            seen.add(question.id)

        return cls(
            id=evaluation_id,
            title=str(payload.get('titre') or ''),
            description=str(payload.get('description') or ''),
            duration_minutes=duration,
            questions=questions
        )


@dataclass(frozen=True)
class EvaluationSummary:
    """An evaluation assigned to a learner, as listed without its questions."""
    id: int
    title: str
    duration_minutes: int
    course: Optional[str] = None
    session_description: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "EvaluationSummary":
        evaluation_id = _as_int(_require(payload, 'id', 'Evaluation summary'), 'Evaluation id')
        duration = payload.get('duree_minutes')
        return cls(
            id=evaluation_id,
            title=str(payload.get('titre') or ''),
            duration_minutes=_as_int(duration, 'Evaluation duration') if duration is not None else 0,
            course=payload.get('formation_nom'),
            session_description=payload.get('seance_description')
        )


@dataclass(frozen=True)
class Attempt:
    """One graded submission of a session, or a row of attempt history."""
    id: int
    score: float
    total_points: int
    elapsed_seconds: int
    evaluation_id: Optional[int] = None
    evaluation_title: Optional[str] = None
    finished: bool = True
    finished_at: Optional[str] = None

    @property
    def percentage(self) -> float:
        if self.total_points <= 0:
            return 0.0
        return 100.0 * self.score / self.total_points

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        elapsed_fallback: Optional[int] = None
    ) -> "Attempt":
        """
        Build an attempt from a submit response or an attempt history row.

        Args:
            payload: Wire attempt; the id is read from attempt_id or id
            elapsed_fallback: Elapsed seconds to use when the payload has none

        Returns:
            Parsed Attempt with score clamped to [0, total_points]
        """
        if not isinstance(payload, dict):
            raise PayloadError(f"Attempt payload must be an object, got {type(payload).__name__}")
        raw_id = payload.get('attempt_id', payload.get('id'))
        if raw_id is None:
            raise PayloadError("Attempt payload is missing 'attempt_id'")

        total_points = max(0, _as_int(payload.get('total_points') or 0, 'Attempt total_points'))
        score = _as_number(payload.get('score') or 0, 'Attempt score')
        score = min(max(score, 0.0), float(total_points))

        elapsed = payload.get('temps_utilise')
        if elapsed is None:
            elapsed = elapsed_fallback if elapsed_fallback is not None else 0
        elapsed = max(0, _as_int(elapsed, 'Attempt temps_utilise'))

        evaluation_id = payload.get('evaluation_id')
        return cls(
            id=_as_int(raw_id, 'Attempt id'),
            score=score,
            total_points=total_points,
            elapsed_seconds=elapsed,
            evaluation_id=_as_int(evaluation_id, 'Attempt evaluation_id') if evaluation_id is not None else None,
            evaluation_title=payload.get('evaluation_titre'),
            finished=bool(payload.get('termine', True)),
            finished_at=payload.get('date_fin')
        )


@dataclass(frozen=True)
class SubmissionPayload:
    """Body of a submit-attempt request."""
    learner_id: int
    answers: Dict[int, Any] = field(default_factory=dict)
    elapsed_seconds: int = 0

    def to_wire(self) -> Dict[str, Any]:
        return {
            'employe_id': self.learner_id,
            'reponses': dict(self.answers),
            'temps_utilise': self.elapsed_seconds
        }


def format_time(seconds: int) -> str:
    """Format seconds as m:ss."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


@dataclass
class RunnerSettings:
    """Configuration settings for the evaluation runner."""
    api_base_url: str = "http://localhost:3001"
    request_timeout: float = 10.0
    tick_interval: float = 1.0
    pass_threshold: float = 70.0
    history_limit: int = 50
    timer_refresh_interval: int = 10
