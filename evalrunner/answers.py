"""
Answer model and capture rules.

Each question type has its own answer shape:

* single choice keeps one selected option label (or none), edits replace it
* multi choice keeps a set of option labels, edits toggle one label
* free text keeps a string, edits replace it

An AnswerSet only holds entries for questions the learner touched.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, Optional, Union

from .errors import InvalidAnswerError
from .models import Question, QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SingleChoiceAnswer:
    option: Optional[str] = None

    def to_wire(self, question: Optional[Question] = None) -> Optional[str]:
        return self.option

    @property
    def is_empty(self) -> bool:
        return self.option is None


@dataclass(frozen=True)
class MultiChoiceAnswer:
    options: FrozenSet[str] = frozenset()

    def toggled(self, option: str) -> "MultiChoiceAnswer":
        if option in self.options:
            return MultiChoiceAnswer(self.options - {option})
        return MultiChoiceAnswer(self.options | {option})

    def to_wire(self, question: Optional[Question] = None) -> list:
        # Keep the question's option order so payloads are deterministic
        if question is not None:
            ordered = [o for o in question.options if o in self.options]
            ordered.extend(sorted(o for o in self.options if o not in question.options))
            return ordered
        return sorted(self.options)

    @property
    def is_empty(self) -> bool:
        return not self.options


@dataclass(frozen=True)
class TextAnswer:
    text: str = ""

    def to_wire(self, question: Optional[Question] = None) -> str:
        return self.text

    @property
    def is_empty(self) -> bool:
        return self.text == ""


AnswerValue = Union[SingleChoiceAnswer, MultiChoiceAnswer, TextAnswer]


def empty_answer(question_type: QuestionType) -> AnswerValue:
    """Return the empty answer value for a question type."""
    if question_type is QuestionType.SINGLE_CHOICE:
        return SingleChoiceAnswer()
    if question_type is QuestionType.MULTI_CHOICE:
        return MultiChoiceAnswer()
    if question_type is QuestionType.TEXT:
        return TextAnswer()
    raise TypeError(f"Unhandled question type: {question_type!r}")


def answer_from_wire(question_type: QuestionType, raw: Any) -> Optional[AnswerValue]:
    """
    Convert a recorded wire answer into an answer value.

    Args:
        question_type: Type of the question the answer belongs to
        raw: Wire value as stored by the grading service

    Returns:
        The answer value, None if nothing was recorded. A value of the
        wrong shape becomes the empty value of the type.
    """
    if raw is None:
        return None
    if question_type is QuestionType.SINGLE_CHOICE:
        return SingleChoiceAnswer(raw if isinstance(raw, str) else None)
    if question_type is QuestionType.MULTI_CHOICE:
        if not isinstance(raw, (list, tuple)):
            return MultiChoiceAnswer()
        return MultiChoiceAnswer(frozenset(o for o in raw if isinstance(o, str)))
    if question_type is QuestionType.TEXT:
        return TextAnswer(raw if isinstance(raw, str) else "")
    raise TypeError(f"Unhandled question type: {question_type!r}")


class AnswerSet:
    """The learner's answers, keyed by question id."""

    def __init__(self):
        self._answers: Dict[int, AnswerValue] = {}

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, question_id: int) -> bool:
        return question_id in self._answers

    def __iter__(self) -> Iterator[int]:
        return iter(self._answers)

    def get(self, question_id: int) -> Optional[AnswerValue]:
        return self._answers.get(question_id)

    def _check_option(self, question: Question, option: str) -> None:
        if option not in question.options:
            raise InvalidAnswerError(
                f"'{option}' is not an option of question {question.id}"
            )

    def select_option(self, question: Question, option: str) -> AnswerValue:
        """Replace the selected option of a single-choice question."""
        if question.type is not QuestionType.SINGLE_CHOICE:
            raise InvalidAnswerError(f"Question {question.id} is not single choice")
        self._check_option(question, option)
        value = SingleChoiceAnswer(option)
        self._answers[question.id] = value
        return value

    def toggle_option(self, question: Question, option: str) -> AnswerValue:
        """Toggle one option of a multi-choice question."""
        if question.type is not QuestionType.MULTI_CHOICE:
            raise InvalidAnswerError(f"Question {question.id} is not multi choice")
        self._check_option(question, option)
        current = self._answers.get(question.id) or MultiChoiceAnswer()
        value = current.toggled(option)
        self._answers[question.id] = value
        return value

    def write_text(self, question: Question, text: str) -> AnswerValue:
        """Replace the text of a free-text question."""
        if question.type is not QuestionType.TEXT:
            raise InvalidAnswerError(f"Question {question.id} is not free text")
        if not isinstance(text, str):
            raise InvalidAnswerError(f"Text answer must be a string, got {type(text).__name__}")
        value = TextAnswer(text)
        self._answers[question.id] = value
        return value

    def capture(self, question: Question, edit: str) -> AnswerValue:
        """
        Apply a learner edit using the semantics of the question type.

        Args:
            question: The question being answered
            edit: Option label for choice questions, text for free text

        Returns:
            The stored answer value after the edit
        """
        if question.type is QuestionType.SINGLE_CHOICE:
            value = self.select_option(question, edit)
        elif question.type is QuestionType.MULTI_CHOICE:
            value = self.toggle_option(question, edit)
        elif question.type is QuestionType.TEXT:
            value = self.write_text(question, edit)
        else:
            raise TypeError(f"Unhandled question type: {question.type!r}")

        logger.debug(
            f"Captured answer for question {question.id}",
            extra={
                'event_type': 'answer_captured',
                'question_id': question.id,
                'question_type': question.type.value
            }
        )
        return value

    def to_payload(self, questions) -> Dict[int, Any]:
        """
        Serialize answers for submission.

        Args:
            questions: Questions of the evaluation, used for option ordering

        Returns:
            Mapping of question id to wire answer for answered questions only
        """
        by_id = {q.id: q for q in questions}
        return {
            question_id: value.to_wire(by_id.get(question_id))
            for question_id, value in self._answers.items()
        }
