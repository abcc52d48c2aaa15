"""
Submission coordinator for evaluation sessions.
Guarantees at most one grading request in flight and at most one
successful submission per session.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, Optional

from .errors import (
    AlreadySubmittedError,
    ApiError,
    PayloadError,
    SubmissionError,
    SubmissionInProgressError,
)
from .models import Attempt, SubmissionPayload


class SubmissionTrigger(Enum):
    """What caused a submission."""
    EXPLICIT = "explicit"
    TIMEOUT = "timeout"
    RETRY = "retry"


class SubmissionCoordinator:
    """
    Packages an answer set and sends it to the grading service.

    Two latches are kept. The in-flight latch is held while a request is
    outstanding and released when it finishes, successfully or not, so a
    failed submission can be retried. The submitted latch flips once on the
    first success and never reverts.
    """

    def __init__(self, grading_service, evaluation_id: int, learner_id: int):
        """
        Initialize the coordinator.

        Args:
            grading_service: Object exposing async submit_attempt(evaluation_id, payload)
            evaluation_id: Evaluation being answered
            learner_id: Learner submitting the attempt
        """
        self.logger = logging.getLogger(__name__)
        self._grading_service = grading_service
        self.evaluation_id = evaluation_id
        self.learner_id = learner_id

        self._in_flight: Optional[asyncio.Task] = None
        self._submitted = False
        self.result: Optional[Attempt] = None
        self.last_error: Optional[Exception] = None
        self.attempts_made = 0

    @property
    def is_in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def has_submitted(self) -> bool:
        return self._submitted

    def build_payload(self, answers: Dict[int, Any], elapsed_seconds: int) -> SubmissionPayload:
        return SubmissionPayload(
            learner_id=self.learner_id,
            answers=dict(answers),
            elapsed_seconds=max(0, int(elapsed_seconds))
        )

    def begin(
        self,
        answers: Dict[int, Any],
        elapsed_seconds: int,
        trigger: SubmissionTrigger = SubmissionTrigger.EXPLICIT
    ) -> asyncio.Task:
        """
        Start a grading request.

        The latch check and the task creation happen without yielding to the
        event loop, so two triggers in the same loop turn cannot both pass.

        Args:
            answers: Serialized answer set keyed by question id
            elapsed_seconds: Seconds used by the learner
            trigger: What caused the submission, for logging

        Returns:
            Task resolving to the graded Attempt, or raising SubmissionError

        Raises:
            AlreadySubmittedError: If a previous submission succeeded
            SubmissionInProgressError: If a request is already outstanding
        """
        if self._submitted:
            raise AlreadySubmittedError(
                f"Evaluation {self.evaluation_id} already submitted as attempt "
                f"{self.result.id if self.result else '?'}"
            )
        if self.is_in_flight:
            raise SubmissionInProgressError(
                f"Submission for evaluation {self.evaluation_id} is already in progress"
            )

        payload = self.build_payload(answers, elapsed_seconds)
        self._in_flight = asyncio.create_task(self._send(payload, trigger))
        return self._in_flight

    async def _send(self, payload: SubmissionPayload, trigger: SubmissionTrigger) -> Attempt:
        self.attempts_made += 1
        attempt_number = self.attempts_made
        started = time.time()
        self.logger.info(
            f"Submitting evaluation {self.evaluation_id} for learner {self.learner_id} "
            f"(trigger={trigger.value}, try={attempt_number}, answers={len(payload.answers)}, "
            f"elapsed={payload.elapsed_seconds}s)",
            extra={
                'event_type': 'submission_started',
                'evaluation_id': self.evaluation_id,
                'learner_id': self.learner_id,
                'trigger': trigger.value,
                'try': attempt_number
            }
        )

        try:
            attempt = await self._grading_service.submit_attempt(self.evaluation_id, payload)
        except (ApiError, PayloadError) as e:
            self.last_error = e
            self.logger.error(
                f"Submission of evaluation {self.evaluation_id} failed on try {attempt_number}: {e}",
                extra={
                    'event_type': 'submission_failed',
                    'evaluation_id': self.evaluation_id,
                    'learner_id': self.learner_id,
                    'try': attempt_number,
                    'error_type': type(e).__name__
                }
            )
            raise SubmissionError(str(e)) from e
        finally:
            self._in_flight = None

        self._submitted = True
        self.result = attempt
        self.last_error = None
        self.logger.info(
            f"Submission of evaluation {self.evaluation_id} accepted as attempt {attempt.id} "
            f"in {time.time() - started:.3f}s",
            extra={
                'event_type': 'submission_succeeded',
                'evaluation_id': self.evaluation_id,
                'learner_id': self.learner_id,
                'attempt_id': attempt.id,
                'try': attempt_number
            }
        )
        return attempt
