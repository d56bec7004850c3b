"""Outbound notification webhook over ``httpx``.

``HttpNotificationSink`` posts domain events to the notification service.
Each call carries the caller's ``X-Request-ID`` and goes through a shared
circuit breaker; transport errors and 5xx answers are retried with
exponential backoff. A 4xx answer means the event itself was refused, so
it is raised straight away and does not count against the circuit.

Delivery is best effort: the sink raises on final failure and
``notifications.notify_on_commit`` logs and drops the error.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import NotificationPort

CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"


class CircuitBreaker:
    """Stops calling a dependency after ``fail_threshold`` consecutive failures.

    After ``reset_timeout`` seconds an OPEN circuit lets a single trial call
    through (HALF_OPEN). A successful trial closes it, a failed one opens
    it again for another full timeout.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self.reset()

    def reset(self):
        with self._lock:
            self._state = CLOSED
            self._consecutive_failures = 0
            self._opened_at = 0.0
            self._probing = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == OPEN and time.monotonic() - self._opened_at >= self.reset_timeout:
                self._state = HALF_OPEN
                self._probing = False
            return self._state

    def before_call(self) -> str:
        """Admit a call or raise ``RuntimeError`` when the circuit refuses it."""
        with self._lock:
            current = self.state
            if current == OPEN:
                raise RuntimeError("CIRCUIT_OPEN")
            if current == HALF_OPEN:
                if self._probing:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._probing = True
            return current

    def on_success(self):
        with self._lock:
            self._state = CLOSED
            self._consecutive_failures = 0
            self._probing = False

    def on_failure(self):
        with self._lock:
            self._consecutive_failures += 1
            tripped = self._consecutive_failures >= self.fail_threshold
            if self._state == HALF_OPEN or (tripped and self._state == CLOSED):
                self._state = OPEN
                self._opened_at = time.monotonic()
                self._probing = False

    def on_finish(self):
        with self._lock:
            if self._state == HALF_OPEN:
                self._probing = False


_notifications_cb = CircuitBreaker(
    "notifications",
    fail_threshold=settings.HTTP_CIRCUIT_FAIL_THRESHOLD,
    reset_timeout=settings.HTTP_CIRCUIT_RESET_TIMEOUT,
)


def notifications_circuit_state() -> str:
    return _notifications_cb.state


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    backoff_base: float
    max_sleep: float

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=max(1, settings.HTTP_RETRY_MAX),
            backoff_base=settings.HTTP_RETRY_BACKOFF_BASE,
            max_sleep=settings.HTTP_RETRY_MAX_SLEEP,
        )

    def pause(self, retry: int) -> None:
        delay = min(self.backoff_base * (2 ** (retry - 1)), self.max_sleep)
        if delay > 0:
            time.sleep(delay)


def _retryable(status_code: int) -> bool:
    return 500 <= status_code < 600


class HttpNotificationSink(NotificationPort):
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.NOTIFICATIONS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _headers(self, circuit_state: str, retry: int) -> dict:
        headers = {"X-Circuit-State": circuit_state, "X-Retry-Count": str(retry)}
        request_id = REQUEST_ID_CTX.get()
        if request_id and request_id != "-":
            headers["X-Request-ID"] = request_id
        return headers

    def notify(self, event: str, payload: dict) -> None:
        """POST ``{"event", "payload"}`` to ``{base_url}/events``.

        Raises:
            RuntimeError: Circuit open, or a HALF_OPEN trial already running.
            httpx.HTTPStatusError: 4xx at once, 5xx once retries run out.
            httpx.RequestError: Transport failure once retries run out.
        """
        policy = RetryPolicy.from_settings()
        circuit_state = _notifications_cb.before_call()
        url = f"{self.base_url}/events"
        body = {"event": event, "payload": payload}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                for retry in range(policy.attempts):
                    if retry:
                        policy.pause(retry)
                    last = retry == policy.attempts - 1
                    try:
                        resp = client.post(url, json=body, headers=self._headers(circuit_state, retry))
                    except httpx.RequestError:
                        if last:
                            _notifications_cb.on_failure()
                            raise
                        continue
                    if 200 <= resp.status_code < 300:
                        _notifications_cb.on_success()
                        return
                    if not _retryable(resp.status_code):
                        # the service is up; the event was refused
                        _notifications_cb.on_success()
                        resp.raise_for_status()
                    if last:
                        _notifications_cb.on_failure()
                        resp.raise_for_status()
        finally:
            _notifications_cb.on_finish()
