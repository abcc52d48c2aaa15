"""
Exception hierarchy for the evaluation runner.
"""
from typing import Optional


class EvaluationRunnerError(Exception):
    """Base exception for evaluation runner errors."""
    pass


class PayloadError(EvaluationRunnerError, ValueError):
    """Raised when a backend payload does not have the expected shape."""
    pass


class ApiError(EvaluationRunnerError):
    """Raised when a backend request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiNotFoundError(ApiError):
    """Raised when the backend answers 404."""
    pass


class SessionError(EvaluationRunnerError):
    """Base exception for session errors."""
    pass


class SessionLoadError(SessionError):
    """Raised when the evaluation for a session cannot be loaded."""
    pass


class InvalidSessionStateError(SessionError):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class SessionConflictError(SessionError):
    """Raised when a learner already has a live session."""
    pass


class SessionNotFoundError(SessionError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class InvalidAnswerError(EvaluationRunnerError, ValueError):
    """Raised when an edit does not fit the question it targets."""
    pass


class SubmissionError(EvaluationRunnerError):
    """Raised when the grading service rejects or fails a submission."""
    pass


class AlreadySubmittedError(SubmissionError):
    """Raised when a session has already been graded."""
    pass


class SubmissionInProgressError(SubmissionError):
    """Raised when a grading request is already outstanding."""
    pass


class ReviewError(EvaluationRunnerError):
    """Base exception for attempt review errors."""
    pass


class AttemptNotFoundError(ReviewError):
    """Raised when the requested attempt does not exist."""
    pass


class ReviewFetchError(ReviewError):
    """Raised when attempt detail cannot be fetched."""
    pass


class TimerError(EvaluationRunnerError):
    """Raised on countdown timer misuse."""
    pass
