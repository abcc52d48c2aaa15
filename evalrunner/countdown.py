"""
Countdown timer for evaluation sessions.
Ticks once per interval and fires an expiry signal exactly once.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

from .errors import TimerError

logger = logging.getLogger(__name__)


class CountdownLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_start(owner_id: str, handle: int, duration: int) -> None:
        logger.info(
            f"Countdown lifecycle: START - Owner {owner_id}, Handle {handle}, Duration {duration}s",
            extra={
                'event_type': 'countdown_start',
                'owner_id': owner_id,
                'handle': handle,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_tick(owner_id: str, remaining: int, total: int) -> None:
        """Log tick events (throttled to avoid spam)."""
        if remaining % 60 == 0 or remaining <= 5:
            progress_percent = ((total - remaining) / total) * 100 if total else 100.0
            logger.debug(
                f"Countdown lifecycle: TICK - Owner {owner_id}, Remaining {remaining}s ({progress_percent:.1f}% elapsed)",
                extra={
                    'event_type': 'countdown_tick',
                    'owner_id': owner_id,
                    'remaining': remaining,
                    'total_duration': total,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_completion(owner_id: str, handle: int, completion_type: str) -> None:
        """Log countdown completion (expiry, revocation or asyncio cancellation)."""
        logger.info(
            f"Countdown lifecycle: COMPLETED - Owner {owner_id}, Handle {handle}, Type {completion_type}",
            extra={
                'event_type': 'countdown_completed',
                'owner_id': owner_id,
                'handle': handle,
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_cancel(owner_id: str, handle: Optional[int], was_live: bool) -> None:
        logger.debug(
            f"Countdown lifecycle: CANCEL - Owner {owner_id}, Handle {handle}, Live {was_live}",
            extra={
                'event_type': 'countdown_cancel',
                'owner_id': owner_id,
                'handle': handle,
                'was_live': was_live,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_callback_error(owner_id: str, callback_name: str, error: BaseException) -> None:
        logger.error(
            f"Countdown lifecycle: ERROR - Owner {owner_id}, Callback {callback_name}: {error}",
            extra={
                'event_type': 'countdown_callback_error',
                'owner_id': owner_id,
                'callback': callback_name,
                'error_type': type(error).__name__,
                'error_message': str(error),
                'timestamp': time.time()
            },
            exc_info=error
        )


async def _deliver(callback: Callable[..., Any], *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CountdownTimer:
    """
    Cancellable countdown owned by a single session.

    Each start() issues a new handle. cancel() revokes the live handle, and
    the countdown task checks its handle before every callback, so nothing
    is delivered after cancel() returns. The task is never cancelled from
    inside itself; a cancel issued from a callback only revokes the handle.

    Ticks are paced against deadlines measured from the start, so a slow
    tick listener cannot stretch the countdown. An awaitable returned by
    the tick listener runs in its own task; while it is still pending,
    later ticks are counted but not delivered.
    """

    def __init__(self, owner_id: str = None, tick_interval: float = 1.0):
        """
        Initialize the timer.

        Args:
            owner_id: Identifier used in log records
            tick_interval: Seconds between ticks
        """
        if tick_interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {tick_interval}")
        self._owner_id = owner_id
        self._tick_interval = tick_interval
        self._task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self.skipped_ticks = 0
        self._last_handle = 0
        self._live_handle: Optional[int] = None
        self._remaining = 0
        self._total = 0

    def start(
        self,
        initial_seconds: int,
        on_tick: Callable[[int], Any],
        on_expire: Callable[[], Any]
    ) -> int:
        """
        Start counting down from initial_seconds.

        Args:
            initial_seconds: Seconds on the clock
            on_tick: Called after each decrement with the remaining seconds
            on_expire: Called once when the clock reaches zero

        Returns:
            Handle identifying this countdown

        Raises:
            TimerError: If a countdown is already running
        """
        if self.is_running:
            raise TimerError(f"Countdown already running for {self._owner_id}")
        if initial_seconds < 0:
            raise ValueError(f"Initial seconds must not be negative, got {initial_seconds}")

        self._last_handle += 1
        handle = self._last_handle
        self._live_handle = handle
        self._remaining = int(initial_seconds)
        self._total = int(initial_seconds)

        CountdownLifecycleLogger.log_start(self._owner_id, handle, self._total)
        self._task = asyncio.create_task(self._run(handle, on_tick, on_expire))
        return handle

    def _is_live(self, handle: int) -> bool:
        return self._live_handle == handle

    async def _run(
        self,
        handle: int,
        on_tick: Callable[[int], Any],
        on_expire: Callable[[], Any]
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        ticks = 0
        try:
            while self._remaining > 0:
                ticks += 1
                await asyncio.sleep(max(0.0, started + ticks * self._tick_interval - loop.time()))
                if not self._is_live(handle):
                    CountdownLifecycleLogger.log_completion(self._owner_id, handle, "revoked")
                    return

                self._remaining -= 1
                CountdownLifecycleLogger.log_tick(self._owner_id, self._remaining, self._total)
                self._dispatch_tick(on_tick, self._remaining)

                if not self._is_live(handle):
                    CountdownLifecycleLogger.log_completion(self._owner_id, handle, "revoked")
                    return

            # Release the handle before delivery so expiry cannot fire twice
            self._live_handle = None
            CountdownLifecycleLogger.log_completion(self._owner_id, handle, "natural_expiry")
            try:
                await _deliver(on_expire)
            except Exception as e:
                CountdownLifecycleLogger.log_callback_error(self._owner_id, "on_expire", e)

        except asyncio.CancelledError:
            CountdownLifecycleLogger.log_completion(self._owner_id, handle, "asyncio_cancelled")
            raise

    def _dispatch_tick(self, on_tick: Callable[[int], Any], remaining: int) -> None:
        if self._tick_task is not None and not self._tick_task.done():
            self.skipped_ticks += 1
            logger.debug(
                f"Countdown lifecycle: SKIP - Owner {self._owner_id}, Remaining {remaining}s, previous tick still running",
                extra={
                    'event_type': 'countdown_tick_skipped',
                    'owner_id': self._owner_id,
                    'remaining': remaining
                }
            )
            return
        try:
            result = on_tick(remaining)
        except Exception as e:
            CountdownLifecycleLogger.log_callback_error(self._owner_id, "on_tick", e)
            return
        if inspect.isawaitable(result):
            self._tick_task = asyncio.ensure_future(self._await_tick(result))

    async def _await_tick(self, pending) -> None:
        try:
            await pending
        except Exception as e:
            CountdownLifecycleLogger.log_callback_error(self._owner_id, "on_tick", e)

    def cancel(self) -> bool:
        """
        Stop the countdown. Idempotent.

        Returns:
            True if a live countdown was revoked, False otherwise
        """
        handle = self._live_handle
        was_live = handle is not None
        self._live_handle = None

        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        CountdownLifecycleLogger.log_cancel(self._owner_id, handle, was_live)
        return was_live

    @property
    def is_running(self) -> bool:
        return self._live_handle is not None and self._task is not None and not self._task.done()

    @property
    def handle(self) -> Optional[int]:
        return self._live_handle

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task
