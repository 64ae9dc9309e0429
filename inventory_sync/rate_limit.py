import logging
import threading
import time
from collections import deque

import requests
from django.conf import settings

from .exceptions import RetriesExhausted

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


def is_transient_status(status_code):
    return status_code == 429 or status_code >= 500


def _retry_after(response):
    value = response.headers.get('Retry-After')
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class RateLimiter:
    """Throttle outbound calls to `requests_per_second` per rolling `period`.

    Callers are served strictly in arrival order: each call takes a ticket and
    may only start once every earlier ticket has started. A call starts when
    fewer than `requests_per_second` calls started within the last `period`
    seconds, so no window of that length ever holds more than the limit.

    Responses with status 429 or 5xx, timeouts and connection errors are
    retried with exponential backoff (`retry_base_delay * 2 ** attempt`, or the
    server's Retry-After if longer). Every retry waits for a fresh slot. Once
    `max_retries` retries are spent, `RetriesExhausted` is raised; any other
    response is handed back unchanged.
    """

    def __init__(self, requests_per_second=2, period=1.0, max_retries=3, retry_base_delay=1.0,
                 clock=time.monotonic, sleep=time.sleep):
        if requests_per_second < 1:
            raise ValueError("requests_per_second must be at least 1")
        self.limit = requests_per_second
        self.period = period
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._clock = clock
        self._sleep = sleep

        self._mutex = threading.Lock()
        self._turn = threading.Condition(self._mutex)
        self._next_ticket = 0
        self._now_serving = 0
        self._started = deque()

        self.throttle_events = 0
        self.retry_events = 0

    def schedule(self, request):
        attempt = 0
        while True:
            self._wait_for_slot()
            response = None
            error = None
            try:
                response = request()
            except TRANSIENT_EXCEPTIONS as exc:
                error = exc
                reason = type(exc).__name__
                retry_after = None
            else:
                if not is_transient_status(response.status_code):
                    return response
                reason = f"HTTP {response.status_code}"
                retry_after = _retry_after(response)

            status_code = response.status_code if response is not None else None
            if attempt >= self.max_retries:
                if status_code == 429:
                    message = f"Rate limit exceeded after {self.max_retries} retries"
                else:
                    message = f"Request failed after {self.max_retries} retries ({reason})"
                logger.error(message)
                raise RetriesExhausted(
                    message, attempts=attempt + 1, cause=error,
                    status_code=status_code, response=response,
                ) from error

            delay = self.retry_base_delay * (2 ** attempt)
            if retry_after is not None:
                delay = max(retry_after, delay)
            attempt += 1
            with self._mutex:
                self.retry_events += 1
            logger.warning(
                "Transient failure (%s), attempt %d/%d, backing off %.2fs",
                reason, attempt, self.max_retries, delay,
            )
            self._sleep(delay)

    def _wait_for_slot(self):
        with self._turn:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._now_serving:
                self._turn.wait()

        try:
            while True:
                with self._mutex:
                    now = self._clock()
                    while self._started and now - self._started[0] >= self.period:
                        self._started.popleft()
                    if len(self._started) < self.limit:
                        self._started.append(now)
                        return
                    delay = self.period - (now - self._started[0])
                    self.throttle_events += 1
                logger.info(
                    "Throttling: %d requests in the last %.1fs, waiting %.2fs",
                    self.limit, self.period, delay,
                )
                self._sleep(delay)
        finally:
            with self._turn:
                self._now_serving += 1
                self._turn.notify_all()

    def status(self):
        with self._mutex:
            now = self._clock()
            in_window = sum(1 for started in self._started if now - started < self.period)
            return {
                'queue_length': self._next_ticket - self._now_serving,
                'requests_in_window': in_window,
                'throttle_events': self.throttle_events,
                'retry_events': self.retry_events,
                'config': {
                    'requests_per_second': self.limit,
                    'period': self.period,
                    'max_retries': self.max_retries,
                    'retry_base_delay': self.retry_base_delay,
                },
            }


_limiter = None
_limiter_guard = threading.Lock()


def get_rate_limiter():
    """Process-wide limiter shared by every Finale client."""
    global _limiter
    with _limiter_guard:
        if _limiter is None:
            _limiter = RateLimiter(
                requests_per_second=settings.FINALE_API_RATE_LIMIT,
                max_retries=settings.FINALE_API_MAX_RETRIES,
                retry_base_delay=settings.FINALE_API_RETRY_BASE_DELAY,
            )
        return _limiter
