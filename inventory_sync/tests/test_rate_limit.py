import threading
import time
from unittest.mock import MagicMock

import requests
from django.test import SimpleTestCase

from inventory_sync.exceptions import RetriesExhausted, TransientApiError
from inventory_sync.rate_limit import RateLimiter, is_transient_status

from .helpers import FakeClock


def _response(status_code, headers=None):
    return MagicMock(status_code=status_code, headers=headers or {})


class TestSlidingWindow(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(requests_per_second=2, clock=self.clock, sleep=self.clock.sleep)

    def test_burst_never_exceeds_limit_per_window(self):
        started = []

        def call():
            started.append(self.clock())
            return _response(200)

        for _ in range(6):
            self.limiter.schedule(call)

        self.assertEqual(started, [0.0, 0.0, 1.0, 1.0, 2.0, 2.0])
        for i, start in enumerate(started):
            in_window = [s for s in started if start <= s < start + 1.0]
            self.assertLessEqual(len(in_window), 2, f"window starting at call {i}")
        self.assertEqual(self.limiter.throttle_events, 2)

    def test_calls_within_limit_do_not_wait(self):
        self.limiter.schedule(lambda: _response(200))
        self.limiter.schedule(lambda: _response(200))
        self.assertEqual(self.clock.sleeps, [])

    def test_window_slides_rather_than_resetting(self):
        self.limiter.schedule(lambda: _response(200))
        self.clock.now = 0.6
        self.limiter.schedule(lambda: _response(200))
        self.limiter.schedule(lambda: _response(200))
        # third call waits for the first to leave the window, not for a full second
        self.assertAlmostEqual(self.clock.sleeps[0], 0.4)

    def test_status_reports_counters(self):
        self.limiter.schedule(lambda: _response(200))
        status = self.limiter.status()
        self.assertEqual(status['requests_in_window'], 1)
        self.assertEqual(status['queue_length'], 0)
        self.assertEqual(status['config']['requests_per_second'], 2)

    def test_rejects_zero_limit(self):
        with self.assertRaises(ValueError):
            RateLimiter(requests_per_second=0)


class TestRetries(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(
            requests_per_second=2, max_retries=3, retry_base_delay=1.0,
            clock=self.clock, sleep=self.clock.sleep,
        )

    def test_429_retried_then_succeeds(self):
        ok = _response(200)
        request = MagicMock(side_effect=[_response(429), _response(429), ok])

        result = self.limiter.schedule(request)

        self.assertIs(result, ok)
        self.assertEqual(request.call_count, 3)
        self.assertEqual(self.limiter.retry_events, 2)
        self.assertEqual(self.clock.sleeps, [1.0, 2.0])

    def test_retry_after_header_wins_when_longer(self):
        request = MagicMock(side_effect=[_response(429, {'Retry-After': '5'}), _response(200)])
        self.limiter.schedule(request)
        self.assertEqual(self.clock.sleeps, [5.0])

    def test_server_error_and_timeout_are_transient(self):
        request = MagicMock(side_effect=[
            _response(503),
            requests.exceptions.Timeout("read timed out"),
            _response(200),
        ])
        result = self.limiter.schedule(request)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(self.limiter.retry_events, 2)

    def test_client_error_returned_without_retry(self):
        request = MagicMock(return_value=_response(404))
        result = self.limiter.schedule(request)
        self.assertEqual(result.status_code, 404)
        self.assertEqual(request.call_count, 1)
        self.assertEqual(self.limiter.retry_events, 0)

    def test_exhausted_429_raises_retriable_error(self):
        request = MagicMock(return_value=_response(429))

        with self.assertRaises(RetriesExhausted) as ctx:
            self.limiter.schedule(request)

        self.assertEqual(str(ctx.exception), "Rate limit exceeded after 3 retries")
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertIsInstance(ctx.exception, TransientApiError)
        self.assertTrue(ctx.exception.retriable)
        self.assertEqual(request.call_count, 4)

    def test_exhausted_connection_errors_keep_cause(self):
        cause = requests.exceptions.ConnectionError("connection refused")
        request = MagicMock(side_effect=cause)

        with self.assertRaises(RetriesExhausted) as ctx:
            self.limiter.schedule(request)

        self.assertIs(ctx.exception.cause, cause)
        self.assertIn("ConnectionError", str(ctx.exception))

    def test_non_transient_exception_propagates(self):
        request = MagicMock(side_effect=requests.exceptions.InvalidURL("bad url"))
        with self.assertRaises(requests.exceptions.InvalidURL):
            self.limiter.schedule(request)
        self.assertEqual(request.call_count, 1)

    def test_transient_status_classification(self):
        self.assertTrue(is_transient_status(429))
        self.assertTrue(is_transient_status(502))
        self.assertFalse(is_transient_status(401))
        self.assertFalse(is_transient_status(200))


class TestConcurrentCallers(SimpleTestCase):
    def test_callers_start_in_arrival_order(self):
        limiter = RateLimiter(requests_per_second=1, period=0.05)
        order = []
        threads = []

        def worker(index):
            limiter.schedule(lambda: order.append(index) or _response(200))

        for index in range(5):
            thread = threading.Thread(target=worker, args=(index,))
            thread.start()
            threads.append(thread)
            deadline = time.monotonic() + 2
            # wait until this caller holds its ticket before the next one arrives
            while limiter._next_ticket < index + 1 and time.monotonic() < deadline:
                time.sleep(0.001)

        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(order, [0, 1, 2, 3, 4])

    def test_burst_from_threads_respects_limit(self):
        limiter = RateLimiter(requests_per_second=2, period=0.3)
        started = []
        lock = threading.Lock()

        def call():
            with lock:
                started.append(time.monotonic())
            return _response(200)

        threads = [threading.Thread(target=limiter.schedule, args=(call,)) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(len(started), 6)
        started.sort()
        for i in range(len(started) - 2):
            # any three consecutive starts span at least one full window
            self.assertGreaterEqual(started[i + 2] - started[i], 0.3 - 0.05)
