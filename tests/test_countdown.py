"""
Unit tests for the countdown timer lifecycle.
Tests tick delivery, single expiry, cancellation and callback error handling.
"""
import asyncio
import unittest

from evalrunner.countdown import CountdownLifecycleLogger, CountdownTimer
from evalrunner.errors import TimerError
from tests.test_fixtures import AsyncTestHelpers

TICK = 0.01


class TestCountdownTimer(unittest.IsolatedAsyncioTestCase):
    """Test cases for CountdownTimer."""

    def setUp(self):
        """Set up test fixtures."""
        self.timer = CountdownTimer("learner-1/evaluation-7", tick_interval=TICK)
        self.ticks = []
        self.expiries = 0

    def on_tick(self, remaining):
        self.ticks.append(remaining)

    def on_expire(self):
        self.expiries += 1

    async def test_ticks_down_and_expires_once(self):
        self.timer.start(3, self.on_tick, self.on_expire)
        await self.timer.task
        self.assertEqual(self.ticks, [2, 1, 0])
        self.assertEqual(self.expiries, 1)
        self.assertFalse(self.timer.is_running)
        self.assertIsNone(self.timer.handle)

    async def test_zero_seconds_expires_immediately(self):
        self.timer.start(0, self.on_tick, self.on_expire)
        await self.timer.task
        self.assertEqual(self.ticks, [])
        self.assertEqual(self.expiries, 1)

    async def test_cancel_stops_delivery(self):
        self.timer.start(100, self.on_tick, self.on_expire)
        await AsyncTestHelpers.wait_for(lambda: len(self.ticks) >= 2)
        self.assertTrue(self.timer.cancel())
        seen = len(self.ticks)
        await asyncio.sleep(TICK * 5)
        self.assertEqual(len(self.ticks), seen)
        self.assertEqual(self.expiries, 0)
        self.assertFalse(self.timer.is_running)

    async def test_cancel_is_idempotent(self):
        self.timer.start(100, self.on_tick, self.on_expire)
        self.assertTrue(self.timer.cancel())
        self.assertFalse(self.timer.cancel())
        self.assertFalse(CountdownTimer(tick_interval=TICK).cancel())

    async def test_cancel_from_tick_callback_revokes(self):
        def cancelling_tick(remaining):
            self.ticks.append(remaining)
            self.timer.cancel()

        self.timer.start(10, cancelling_tick, self.on_expire)
        await self.timer.task
        self.assertEqual(self.ticks, [9])
        self.assertEqual(self.expiries, 0)
        self.assertFalse(self.timer.task.cancelled())

    async def test_cancel_from_expiry_does_not_abort_callback(self):
        finished = []

        async def expiring():
            self.timer.cancel()
            await asyncio.sleep(0)
            finished.append(True)

        self.timer.start(1, self.on_tick, expiring)
        await self.timer.task
        self.assertEqual(finished, [True])

    async def test_start_while_running_raises(self):
        self.timer.start(100, self.on_tick, self.on_expire)
        with self.assertRaises(TimerError):
            self.timer.start(5, self.on_tick, self.on_expire)
        self.timer.cancel()

    async def test_restart_issues_new_handle(self):
        first = self.timer.start(100, self.on_tick, self.on_expire)
        self.timer.cancel()
        second = self.timer.start(1, self.on_tick, self.on_expire)
        self.assertNotEqual(first, second)
        await self.timer.task
        self.assertEqual(self.expiries, 1)

    async def test_tick_callback_error_does_not_stop_countdown(self):
        def failing_tick(remaining):
            raise RuntimeError("display failed")

        with self.assertLogs('evalrunner.countdown', level='ERROR'):
            self.timer.start(2, failing_tick, self.on_expire)
            await self.timer.task
        self.assertEqual(self.expiries, 1)

    async def test_async_callbacks_awaited(self):
        async def async_tick(remaining):
            self.ticks.append(remaining)

        self.timer.start(2, async_tick, self.on_expire)
        await self.timer.task
        await AsyncTestHelpers.wait_for(lambda: self.ticks == [1, 0])
        self.assertEqual(self.expiries, 1)

    async def test_slow_tick_listener_does_not_stretch_countdown(self):
        async def slow_tick(remaining):
            await asyncio.sleep(0.05)
            self.ticks.append(remaining)

        loop = asyncio.get_running_loop()
        started = loop.time()
        self.timer.start(20, slow_tick, self.on_expire)
        await self.timer.task
        elapsed = loop.time() - started

        self.assertLess(elapsed, 0.3)
        self.assertEqual(self.expiries, 1)
        self.assertEqual(self.timer.remaining_seconds, 0)
        self.assertGreater(self.timer.skipped_ticks, 0)
        await AsyncTestHelpers.wait_for(lambda: len(self.ticks) == 20 - self.timer.skipped_ticks)

    async def test_async_tick_error_is_logged(self):
        async def failing_tick(remaining):
            raise RuntimeError("display failed")

        with self.assertLogs('evalrunner.countdown', level='ERROR'):
            self.timer.start(1, failing_tick, self.on_expire)
            await self.timer.task
            await asyncio.sleep(TICK)
        self.assertEqual(self.expiries, 1)

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            CountdownTimer(tick_interval=0)


class TestCountdownLifecycleLogger(unittest.TestCase):
    """Test cases for structured lifecycle logging."""

    def test_start_record_carries_event_type(self):
        with self.assertLogs('evalrunner.countdown', level='INFO') as captured:
            CountdownLifecycleLogger.log_start("owner", 1, 60)
        self.assertEqual(captured.records[0].event_type, 'countdown_start')
        self.assertEqual(captured.records[0].duration, 60)

    def test_completion_record(self):
        with self.assertLogs('evalrunner.countdown', level='INFO') as captured:
            CountdownLifecycleLogger.log_completion("owner", 3, "natural_expiry")
        self.assertEqual(captured.records[0].completion_type, 'natural_expiry')


if __name__ == '__main__':
    unittest.main()
