"""
Evaluation session state machine.
Loads an evaluation, owns the question cursor, the answer set and the
countdown, and moves to submission on explicit or timeout completion.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .answers import AnswerSet, AnswerValue
from .countdown import CountdownTimer
from .errors import (
    ApiError,
    InvalidSessionStateError,
    PayloadError,
    SessionLoadError,
    SubmissionError,
)
from .models import Attempt, Evaluation, Question
from .submission import SubmissionCoordinator, SubmissionTrigger


class SessionState(Enum):
    """Enumeration of possible evaluation session states."""
    LOADING = "loading"
    LOAD_FAILED = "load_failed"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class EvaluationSession:
    """
    One learner taking one evaluation.

    States move LOADING -> ACTIVE -> SUBMITTING -> COMPLETED, with
    LOAD_FAILED as the failed form of LOADING. Only the first submission
    trigger in ACTIVE has effect; it cancels the countdown before anything
    else can run. A retake is a new EvaluationSession.
    """

    def __init__(
        self,
        evaluation_id: int,
        learner_id: int,
        provider,
        grading_service=None,
        tick_interval: float = 1.0,
        tick_callback: Optional[Callable[["EvaluationSession", int], Any]] = None,
        completion_callback: Optional[Callable[["EvaluationSession", Attempt], Any]] = None,
        failure_callback: Optional[Callable[["EvaluationSession", Exception], Any]] = None
    ):
        """
        Initialize the session.

        Args:
            evaluation_id: Evaluation to take
            learner_id: Learner taking it
            provider: Object exposing async fetch_evaluation(evaluation_id)
            grading_service: Object exposing async submit_attempt(...);
                defaults to provider
            tick_interval: Seconds per countdown tick
            tick_callback: Called with (session, remaining) on each tick
            completion_callback: Called with (session, attempt) once graded
            failure_callback: Called with (session, error) when a submission fails
        """
        self.logger = logging.getLogger(__name__)
        self.evaluation_id = evaluation_id
        self.learner_id = learner_id
        self.session_key = f"learner-{learner_id}/evaluation-{evaluation_id}"

        self._provider = provider
        self._coordinator = SubmissionCoordinator(
            grading_service if grading_service is not None else provider,
            evaluation_id,
            learner_id
        )
        self._timer = CountdownTimer(self.session_key, tick_interval)

        self._tick_callback = tick_callback
        self._completion_callback = completion_callback
        self._failure_callback = failure_callback

        self._state = SessionState.LOADING
        self._closed = False
        self._evaluation: Optional[Evaluation] = None
        self._index = 0
        self._answers = AnswerSet()
        self._remaining = 0
        self._elapsed_at_submission: Optional[int] = None
        self._submission_task: Optional[asyncio.Task] = None
        self._last_submission_error: Optional[SubmissionError] = None
        self._attempt: Optional[Attempt] = None
        self.error: Optional[str] = None

    # ------------------------------------------------------------------
    # State and read access

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def evaluation(self) -> Optional[Evaluation]:
        return self._evaluation

    @property
    def attempt(self) -> Optional[Attempt]:
        return self._attempt

    @property
    def answers(self) -> AnswerSet:
        return self._answers

    @property
    def index(self) -> int:
        return self._index

    @property
    def question_count(self) -> int:
        return len(self._evaluation.questions) if self._evaluation else 0

    @property
    def current_question(self) -> Optional[Question]:
        if self._evaluation is None:
            return None
        return self._evaluation.questions[self._index]

    @property
    def current_answer(self) -> Optional[AnswerValue]:
        question = self.current_question
        return self._answers.get(question.id) if question else None

    @property
    def is_last_question(self) -> bool:
        return self._evaluation is not None and self._index == self.question_count - 1

    @property
    def remaining_seconds(self) -> int:
        if self._state is SessionState.ACTIVE and not self._closed:
            return self._timer.remaining_seconds
        return self._remaining

    @property
    def elapsed_seconds(self) -> int:
        if self._elapsed_at_submission is not None:
            return self._elapsed_at_submission
        if self._evaluation is None:
            return 0
        return self._clamp_elapsed(self._evaluation.duration_seconds - self.remaining_seconds)

    @property
    def is_submission_in_flight(self) -> bool:
        return self._coordinator.is_in_flight

    @property
    def submission_attempts(self) -> int:
        return self._coordinator.attempts_made

    @property
    def submission_task(self) -> Optional[asyncio.Task]:
        return self._submission_task

    @property
    def timer(self) -> CountdownTimer:
        return self._timer

    def _clamp_elapsed(self, elapsed: int) -> int:
        return min(max(0, elapsed), self._evaluation.duration_seconds)

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidSessionStateError(f"Session {self.session_key} has been closed")

    def _ensure_active(self, operation: str) -> None:
        self._ensure_open()
        if self._state is not SessionState.ACTIVE:
            raise InvalidSessionStateError(
                f"Cannot {operation}: session {self.session_key} is {self._state.value}"
            )

    def _transition(self, new_state: SessionState, reason: str) -> None:
        old_state = self._state
        self._state = new_state
        self.logger.info(
            f"Session {self.session_key}: {old_state.value} -> {new_state.value} ({reason})",
            extra={
                'event_type': 'session_state_transition',
                'session_key': self.session_key,
                'from_state': old_state.value,
                'to_state': new_state.value,
                'reason': reason
            }
        )

    async def _notify(self, callback: Optional[Callable[..., Any]], *args) -> None:
        if callback is None:
            return
        try:
            result = callback(self, *args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(
                f"Session {self.session_key}: listener {getattr(callback, '__name__', callback)} failed: {e}",
                exc_info=True
            )

    # ------------------------------------------------------------------
    # Loading

    async def load(self) -> Evaluation:
        """
        Fetch the evaluation and start the countdown.

        Returns:
            The loaded evaluation

        Raises:
            SessionLoadError: If the fetch fails; the session stays in
                LOAD_FAILED and load() may be called again
            InvalidSessionStateError: If the session is past loading
        """
        self._ensure_open()
        if self._state not in (SessionState.LOADING, SessionState.LOAD_FAILED):
            raise InvalidSessionStateError(
                f"Cannot load: session {self.session_key} is {self._state.value}"
            )
        self._state = SessionState.LOADING
        self.error = None

        try:
            evaluation = await self._provider.fetch_evaluation(self.evaluation_id)
        except (ApiError, PayloadError) as e:
            if not self._closed:
                self.error = f"Could not load evaluation {self.evaluation_id}: {e}"
                self._transition(SessionState.LOAD_FAILED, "evaluation fetch failed")
            self.logger.error(f"Session {self.session_key}: load failed: {e}")
            raise SessionLoadError(str(e)) from e

        if self._closed:
            self.logger.info(f"Session {self.session_key} closed while loading; discarding evaluation")
            raise InvalidSessionStateError(f"Session {self.session_key} was closed while loading")

        self._evaluation = evaluation
        self._index = 0
        self._answers = AnswerSet()
        self._remaining = evaluation.duration_seconds
        self._transition(SessionState.ACTIVE, "evaluation loaded")
        self._timer.start(self._remaining, self._handle_tick, self._handle_expiry)
        return evaluation

    # ------------------------------------------------------------------
    # Countdown

    async def _handle_tick(self, remaining: int) -> None:
        if self._closed or self._state is not SessionState.ACTIVE:
            return
        self._remaining = remaining
        await self._notify(self._tick_callback, remaining)

    def _handle_expiry(self) -> None:
        if self._closed or self._state is not SessionState.ACTIVE:
            self.logger.warning(f"Session {self.session_key}: expiry after leaving active state ignored")
            return
        self._remaining = 0
        self.request_submission(SubmissionTrigger.TIMEOUT)

    # ------------------------------------------------------------------
    # Navigation

    def go_to(self, index: int) -> int:
        """Move the cursor, clamped to the question range. Returns the new index."""
        self._ensure_active("navigate")
        self._index = min(max(0, index), self.question_count - 1)
        return self._index

    def next_question(self) -> int:
        return self.go_to(self._index + 1)

    def previous_question(self) -> int:
        return self.go_to(self._index - 1)

    # ------------------------------------------------------------------
    # Answer capture

    def select_option(self, option: str) -> AnswerValue:
        self._ensure_active("answer")
        return self._answers.select_option(self.current_question, option)

    def toggle_option(self, option: str) -> AnswerValue:
        self._ensure_active("answer")
        return self._answers.toggle_option(self.current_question, option)

    def write_text(self, text: str) -> AnswerValue:
        self._ensure_active("answer")
        return self._answers.write_text(self.current_question, text)

    def capture(self, edit: str) -> AnswerValue:
        """Apply an edit to the current question using its type's semantics."""
        self._ensure_active("answer")
        return self._answers.capture(self.current_question, edit)

    # ------------------------------------------------------------------
    # Submission

    def request_submission(self, trigger: SubmissionTrigger) -> Optional[asyncio.Task]:
        """
        Enter SUBMITTING and start grading, if the session is still ACTIVE.

        Runs without yielding, so the first trigger in an event loop turn
        wins and later ones see SUBMITTING.

        Returns:
            Task resolving to the Attempt (None on failure), or None when
            the trigger had no effect
        """
        if self._closed or self._state is not SessionState.ACTIVE:
            self.logger.info(
                f"Session {self.session_key}: {trigger.value} submission ignored in state {self._state.value}",
                extra={
                    'event_type': 'submission_trigger_ignored',
                    'session_key': self.session_key,
                    'trigger': trigger.value,
                    'state': self._state.value
                }
            )
            return None

        self._transition(SessionState.SUBMITTING, f"{trigger.value} submission")
        self._timer.cancel()
        # Undelivered ticks still count
        self._remaining = min(self._remaining, self._timer.remaining_seconds)
        self._elapsed_at_submission = self._clamp_elapsed(
            self._evaluation.duration_seconds - self._remaining
        )
        return self._start_submission(trigger)

    def _start_submission(self, trigger: SubmissionTrigger) -> asyncio.Task:
        self._last_submission_error = None
        self.error = None
        grading = self._coordinator.begin(
            self._answers.to_payload(self._evaluation.questions),
            self._elapsed_at_submission,
            trigger
        )
        self._submission_task = asyncio.create_task(self._complete_submission(grading))
        return self._submission_task

    async def _complete_submission(self, grading: asyncio.Task) -> Optional[Attempt]:
        try:
            attempt = await grading
        except SubmissionError as e:
            if self._closed:
                self.logger.info(f"Session {self.session_key} closed; discarding submission failure")
                return None
            self._last_submission_error = e
            self.error = f"Submission failed: {e}"
            await self._notify(self._failure_callback, e)
            return None

        if self._closed:
            self.logger.info(
                f"Session {self.session_key} closed; discarding graded attempt {attempt.id}"
            )
            return None

        self._attempt = attempt
        self._transition(SessionState.COMPLETED, f"graded as attempt {attempt.id}")
        await self._notify(self._completion_callback, attempt)
        return attempt

    async def submit(self) -> Optional[Attempt]:
        """
        Explicit learner submission, or a retry after a failed submission.

        Returns:
            The graded Attempt, or None when the call had no effect because
            a submission is already in flight or completed

        Raises:
            InvalidSessionStateError: If the session is not loaded, is closed,
                or the cursor is not on the last question
            SubmissionError: If the grading service fails; the session stays
                in SUBMITTING and submit() may be called again
        """
        self._ensure_open()
        if self._state is SessionState.ACTIVE:
            if not self.is_last_question:
                raise InvalidSessionStateError(
                    f"Cannot submit from question {self._index + 1} of {self.question_count}; "
                    f"move to the last question first"
                )
            task = self.request_submission(SubmissionTrigger.EXPLICIT)
        elif (self._state is SessionState.SUBMITTING
              and not self._coordinator.is_in_flight
              and not self._coordinator.has_submitted):
            self.logger.info(f"Session {self.session_key}: retrying submission")
            task = self._start_submission(SubmissionTrigger.RETRY)
        elif self._state in (SessionState.SUBMITTING, SessionState.COMPLETED):
            self.logger.info(
                f"Session {self.session_key}: submit ignored in state {self._state.value}"
            )
            return None
        else:
            raise InvalidSessionStateError(
                f"Cannot submit: session {self.session_key} is {self._state.value}"
            )

        if task is None:
            return None
        attempt = await task
        if attempt is None and self._last_submission_error is not None:
            raise SubmissionError(str(self._last_submission_error)) from self._last_submission_error
        return attempt

    # ------------------------------------------------------------------
    # Teardown

    def close(self) -> None:
        """
        Tear the session down. Cancels the countdown; an in-flight submission
        runs to completion in the background and its result is discarded.
        """
        if self._closed:
            return
        self._closed = True
        self._timer.cancel()
        self.logger.info(
            f"Session {self.session_key} closed in state {self._state.value}",
            extra={
                'event_type': 'session_closed',
                'session_key': self.session_key,
                'state': self._state.value,
                'submission_in_flight': self._coordinator.is_in_flight
            }
        )

    def progress(self) -> Dict[str, Any]:
        """Snapshot of the session for display."""
        return {
            'session_key': self.session_key,
            'evaluation_id': self.evaluation_id,
            'title': self._evaluation.title if self._evaluation else None,
            'state': self._state.value,
            'current_question': self._index + 1 if self._evaluation else 0,
            'total_questions': self.question_count,
            'answered': len(self._answers),
            'remaining_seconds': self.remaining_seconds,
            'elapsed_seconds': self.elapsed_seconds,
            'submission_in_flight': self._coordinator.is_in_flight,
            'error': self.error
        }
