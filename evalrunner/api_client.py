"""
HTTP client for the evaluation backend.

One client covers the collaborators the runner consumes: the evaluation
provider, the grading service, and the assigned-evaluation and attempt
history listings.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import ApiError, ApiNotFoundError, PayloadError
from .models import Attempt, Evaluation, EvaluationSummary, SubmissionPayload

logger = logging.getLogger(__name__)


class EvaluationApiClient:
    """Async client for the evaluation REST API."""

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the backend, e.g. http://localhost:3001
            timeout: Per-request timeout in seconds
            transport: Optional transport override (used by tests)
        """
        self.base_url = base_url.rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport
        )

    async def __aenter__(self) -> "EvaluationApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict):
            if body.get('error'):
                return str(body['error'])
            errors = body.get('errors')
            if isinstance(errors, list) and errors:
                first = errors[0]
                if isinstance(first, dict) and first.get('msg'):
                    return str(first['msg'])
        return default

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out: {e}")
            raise ApiError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(f"Request to {path} failed: {e}") from e

        if response.status_code == 404:
            raise ApiNotFoundError(self._error_message(response, f"Not found: {path}"), 404)
        if response.is_error:
            message = self._error_message(response, f"Backend error {response.status_code} on {path}")
            logger.warning(f"{method} {path} returned {response.status_code}: {message}")
            raise ApiError(message, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise PayloadError(f"Response from {path} is not valid JSON") from e

    async def fetch_evaluation(self, evaluation_id: int) -> Evaluation:
        """Fetch an evaluation definition with its ordered questions."""
        payload = await self._request('GET', f"/api/evaluations/{evaluation_id}")
        evaluation = Evaluation.from_payload(payload)
        logger.info(
            f"Fetched evaluation {evaluation.id} with {len(evaluation.questions)} questions",
            extra={'event_type': 'evaluation_fetched', 'evaluation_id': evaluation.id}
        )
        return evaluation

    async def submit_attempt(self, evaluation_id: int, submission: SubmissionPayload) -> Attempt:
        """
        Submit an answer set for grading.

        Args:
            evaluation_id: Evaluation being answered
            submission: Learner id, answers and elapsed seconds

        Returns:
            The graded attempt
        """
        payload = await self._request(
            'POST',
            f"/api/evaluations/{evaluation_id}/submit",
            json=submission.to_wire()
        )
        attempt = Attempt.from_payload(payload, elapsed_fallback=submission.elapsed_seconds)
        logger.info(
            f"Attempt {attempt.id} graded: {attempt.score}/{attempt.total_points}",
            extra={
                'event_type': 'attempt_graded',
                'evaluation_id': evaluation_id,
                'attempt_id': attempt.id
            }
        )
        return attempt

    async def fetch_attempt_detail(self, learner_id: int, attempt_id: int) -> Dict[str, Any]:
        """Fetch the raw per-question detail of an attempt."""
        payload = await self._request(
            'GET', f"/api/evaluations/attempts/{learner_id}/{attempt_id}/details"
        )
        if not isinstance(payload, dict):
            raise PayloadError("Attempt detail payload must be an object")
        return payload

    async def list_attempts(self, learner_id: int, limit: int = 50) -> List[Attempt]:
        """List the learner's attempts, most recent first."""
        payload = await self._request(
            'GET', f"/api/evaluations/attempts/{learner_id}", params={'limit': limit}
        )
        if not isinstance(payload, list):
            raise PayloadError("Attempt list payload must be an array")
        return [Attempt.from_payload(row) for row in payload]

    async def list_evaluations(self, learner_id: int) -> List[EvaluationSummary]:
        """List the evaluations assigned to the learner, newest first."""
        payload = await self._request('GET', f"/api/evaluations/employe/{learner_id}")
        if not isinstance(payload, list):
            raise PayloadError("Evaluation list payload must be an array")
        return [EvaluationSummary.from_payload(row) for row in payload]
