"""
Session manager for the evaluation runner.
Keeps at most one live evaluation session per Discord user and turns
session errors into result dictionaries for the bot.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .config_manager import ConfigManager
from .errors import (
    AttemptNotFoundError,
    InvalidAnswerError,
    InvalidSessionStateError,
    ApiError,
    PayloadError,
    ReviewFetchError,
    SessionConflictError,
    SessionLoadError,
    SessionNotFoundError,
    SubmissionError,
)
from .history import summarize_attempts
from .review import ReviewReconciler
from .session import EvaluationSession, SessionState


class SessionManager:
    """
    Orchestrates evaluation sessions for Discord users.

    Each user can have at most one live session. A retake closes the
    finished session and starts a brand-new one for the same evaluation.
    """

    def __init__(self, client, config_manager: ConfigManager):
        """
        Initialize the session manager.

        Args:
            client: Evaluation API client (provider, grading and history)
            config_manager: Instance for settings and learner resolution
        """
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.config_manager = config_manager
        self.reviewer = ReviewReconciler(client)

        self._sessions: Dict[int, EvaluationSession] = {}
        self._started_at: Dict[int, datetime] = {}

        self.logger.info("SessionManager initialized")

    # ------------------------------------------------------------------
    # Lookup

    def get_session(self, user_id: int) -> Optional[EvaluationSession]:
        return self._sessions.get(user_id)

    def has_live_session(self, user_id: int) -> bool:
        """True if the user has a session that is loading, active or submitting."""
        session = self._sessions.get(user_id)
        return (
            session is not None
            and not session.is_closed
            and session.state in (SessionState.LOADING, SessionState.ACTIVE, SessionState.SUBMITTING)
        )

    def _resolve_learner(self, user_id: int) -> Optional[int]:
        return self.config_manager.get_learner_id(user_id)

    def _get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        """
        Generate user-friendly error messages based on error type and operation.

        Args:
            error: The exception that occurred
            operation: The operation that failed

        Returns:
            User-friendly error message
        """
        if isinstance(error, SessionConflictError):
            return "❌ You already have an evaluation in progress. Finish it or use /leave."
        if isinstance(error, SessionNotFoundError):
            return "❌ You are not taking an evaluation. Use /evaluate to start one."
        if isinstance(error, SessionLoadError):
            return "❌ The evaluation could not be loaded. Please try again in a moment."
        if isinstance(error, SubmissionError):
            return "❌ Your answers could not be submitted. Use /submit to try again; your time is not restored."
        if isinstance(error, AttemptNotFoundError):
            return "❌ That attempt does not exist."
        if isinstance(error, ReviewFetchError):
            return "❌ The attempt review could not be loaded. Please try again later."
        if isinstance(error, InvalidAnswerError):
            return f"❌ {error}"
        if isinstance(error, InvalidSessionStateError):
            return f"❌ {error}"
        if isinstance(error, (ApiError, PayloadError)):
            return "❌ The evaluation service is unavailable. Please try again later."
        return f"❌ An unexpected error occurred during {operation}."

    def _error_result(self, error: Exception, operation: str) -> Dict[str, Any]:
        self.logger.error(f"{operation} failed: {error}")
        return {
            'success': False,
            'error': str(error),
            'user_message': self._get_user_friendly_error_message(error, operation)
        }

    def _not_linked(self, user_id: int) -> Dict[str, Any]:
        self.logger.warning(f"Discord user {user_id} is not linked to a learner")
        return {
            'success': False,
            'error': f"User {user_id} is not linked to a learner",
            'user_message': "❌ Your Discord account is not linked to a learner profile."
        }

    def _require_session(self, user_id: int) -> EvaluationSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise SessionNotFoundError(f"No session for user {user_id}")
        return session

    def _ensure_no_live_session(self, user_id: int) -> None:
        if self.has_live_session(user_id):
            current = self._sessions[user_id]
            raise SessionConflictError(
                f"User {user_id} already has a live session for evaluation {current.evaluation_id}"
            )

    # ------------------------------------------------------------------
    # Session lifecycle

    async def start_evaluation(
        self,
        user_id: int,
        evaluation_id: int,
        tick_callback: Optional[Callable] = None,
        completion_callback: Optional[Callable] = None,
        failure_callback: Optional[Callable] = None
    ) -> Dict[str, Any]:
        """
        Create and load a session for the user.

        Returns:
            Dictionary with success status, session progress and messages
        """
        learner_id = self._resolve_learner(user_id)
        if learner_id is None:
            return self._not_linked(user_id)

        try:
            self._ensure_no_live_session(user_id)
        except SessionConflictError as e:
            result = self._error_result(e, "evaluation start")
            result['session_info'] = self._sessions[user_id].progress()
            return result

        previous = self._sessions.pop(user_id, None)
        if previous is not None:
            previous.close()

        settings = self.config_manager.get_settings()
        session = EvaluationSession(
            evaluation_id,
            learner_id,
            self.client,
            tick_interval=settings.tick_interval,
            tick_callback=tick_callback,
            completion_callback=completion_callback,
            failure_callback=failure_callback
        )
        self._sessions[user_id] = session

        try:
            await session.load()
        except (SessionLoadError, InvalidSessionStateError) as e:
            session.close()
            if self._sessions.get(user_id) is session:
                del self._sessions[user_id]
            return self._error_result(e, "evaluation loading")

        self._started_at[user_id] = datetime.now()
        self.logger.info(
            f"User {user_id} (learner {learner_id}) started evaluation {evaluation_id}"
        )
        return {
            'success': True,
            'message': f"Evaluation {evaluation_id} started",
            'session_info': session.progress()
        }

    async def retake(
        self,
        user_id: int,
        tick_callback: Optional[Callable] = None,
        completion_callback: Optional[Callable] = None,
        failure_callback: Optional[Callable] = None
    ) -> Dict[str, Any]:
        """Start a fresh session for the evaluation the user just completed."""
        try:
            session = self._require_session(user_id)
        except SessionNotFoundError as e:
            return self._error_result(e, "retake")
        if session.state is not SessionState.COMPLETED:
            return {
                'success': False,
                'error': f"Cannot retake from state {session.state.value}",
                'user_message': "❌ You can only retake an evaluation after it has been graded."
            }
        evaluation_id = session.evaluation_id
        self.leave(user_id)
        return await self.start_evaluation(
            user_id, evaluation_id, tick_callback, completion_callback, failure_callback
        )

    def leave(self, user_id: int) -> Dict[str, Any]:
        """Tear down the user's session."""
        try:
            session = self._require_session(user_id)
        except SessionNotFoundError as e:
            return self._error_result(e, "leave")
        del self._sessions[user_id]
        started = self._started_at.pop(user_id, None)
        state = session.state
        session.close()
        held = f" after {int((datetime.now() - started).total_seconds())}s" if started else ""
        self.logger.info(f"User {user_id} left evaluation {session.evaluation_id} in state {state.value}{held}")
        return {
            'success': True,
            'message': f"Session closed in state {state.value}",
            'state': state.value
        }

    async def shutdown(self) -> None:
        """Close every session."""
        for user_id in list(self._sessions):
            self.leave(user_id)

    # ------------------------------------------------------------------
    # Learner actions

    def answer(self, user_id: int, edit: str) -> Dict[str, Any]:
        """Apply an answer edit to the user's current question."""
        try:
            session = self._require_session(user_id)
            value = session.capture(edit)
        except (SessionNotFoundError, InvalidAnswerError, InvalidSessionStateError) as e:
            return self._error_result(e, "answer capture")
        return {'success': True, 'answer': value, 'session_info': session.progress()}

    def navigate(self, user_id: int, step: int) -> Dict[str, Any]:
        """Move the user's cursor by step questions."""
        try:
            session = self._require_session(user_id)
            index = session.go_to(session.index + step)
        except (SessionNotFoundError, InvalidSessionStateError) as e:
            return self._error_result(e, "navigation")
        return {'success': True, 'index': index, 'session_info': session.progress()}

    async def submit(self, user_id: int) -> Dict[str, Any]:
        """Explicitly submit, or retry a failed submission."""
        try:
            session = self._require_session(user_id)
            attempt = await session.submit()
        except (SessionNotFoundError, SubmissionError, InvalidSessionStateError) as e:
            return self._error_result(e, "submission")

        if attempt is None:
            return {
                'success': False,
                'error': f"Submission had no effect in state {session.state.value}",
                'user_message': "ℹ️ Your answers are already being submitted.",
                'session_info': session.progress()
            }
        return {'success': True, 'attempt': attempt, 'session_info': session.progress()}

    async def review_attempt(self, user_id: int, attempt_id: int) -> Dict[str, Any]:
        """Fetch and reconcile the detail of one of the user's attempts."""
        learner_id = self._resolve_learner(user_id)
        if learner_id is None:
            return self._not_linked(user_id)
        try:
            review = await self.reviewer.fetch_review(learner_id, attempt_id)
        except AttemptNotFoundError as e:
            result = self._error_result(e, "attempt review")
            result['not_found'] = True
            return result
        except ReviewFetchError as e:
            return self._error_result(e, "attempt review")
        return {'success': True, 'review': review}

    async def history(self, user_id: int) -> Dict[str, Any]:
        """List the user's past attempts and summarize them."""
        learner_id = self._resolve_learner(user_id)
        if learner_id is None:
            return self._not_linked(user_id)
        settings = self.config_manager.get_settings()
        try:
            attempts = await self.client.list_attempts(learner_id, settings.history_limit)
        except (ApiError, PayloadError) as e:
            return self._error_result(e, "history listing")
        return {
            'success': True,
            'attempts': attempts,
            'stats': summarize_attempts(attempts, settings.pass_threshold)
        }

    async def list_evaluations(self, user_id: int) -> Dict[str, Any]:
        """List the evaluations assigned to the user's learner profile."""
        learner_id = self._resolve_learner(user_id)
        if learner_id is None:
            return self._not_linked(user_id)
        try:
            evaluations = await self.client.list_evaluations(learner_id)
        except (ApiError, PayloadError) as e:
            return self._error_result(e, "evaluation listing")
        return {'success': True, 'evaluations': evaluations}

    def get_live_session_count(self) -> int:
        return sum(1 for user_id in self._sessions if self.has_live_session(user_id))
