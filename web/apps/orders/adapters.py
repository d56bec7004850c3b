"""In-process adapters for the orders domain ports.

These adapters implement ``SessionStore`` and ``NotificationPort``
without any network or database calls. The in-memory session store is
a keyed map suitable for a single process and for tests; the logging
sink is the default notification collaborator when no notification
service is configured.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional

from .domain import CheckoutSession, NotificationPort, SessionStatus, SessionStore
from .errors import BadRequest, Conflict, NotFound

logger = logging.getLogger("orders.notifications")


class InMemorySessionStore(SessionStore):
    """Keyed-map implementation of ``SessionStore``.

    All reads and writes go through one lock, which makes ``consume`` an
    atomic compare-and-swap. Because the map is not part of the database
    transaction, a completion that fails after consuming must call
    ``release`` to put the session back to pending.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, CheckoutSession] = {}

    def save(self, session: CheckoutSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str, now: datetime) -> Optional[CheckoutSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.status == SessionStatus.EXPIRED:
                return None
            if session.is_expired(now):
                if session.status == SessionStatus.PENDING:
                    self._sessions[session_id] = replace(session, status=SessionStatus.EXPIRED)
                return None
            return session

    def update_delivery(self, session: CheckoutSession, now: datetime) -> bool:
        with self._lock:
            current = self._sessions.get(session.session_id)
            if current is None or current.status != SessionStatus.PENDING or current.is_expired(now):
                return False
            self._sessions[session.session_id] = replace(
                current,
                delivery_method=session.delivery_method,
                delivery_address=session.delivery_address,
                delivery_fee=session.delivery_fee,
                total=session.total,
            )
            return True

    def consume(self, session_id: str, now: datetime, order_id: str) -> CheckoutSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound("Session not found", "SESSION_NOT_FOUND")
            if session.status == SessionStatus.COMPLETED:
                raise Conflict("Session already completed", "SESSION_ALREADY_COMPLETED")
            if session.status == SessionStatus.EXPIRED or session.is_expired(now):
                raise BadRequest("Session expired. Please start checkout again.", "SESSION_EXPIRED")
            consumed = replace(session, status=SessionStatus.COMPLETED, order_id=order_id)
            self._sessions[session_id] = consumed
            return consumed

    def release(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.status == SessionStatus.COMPLETED:
                self._sessions[session_id] = replace(session, status=SessionStatus.PENDING, order_id=None)


class LoggingNotificationSink(NotificationPort):
    """Notification stub that writes each event to the log."""

    def notify(self, event: str, payload: dict) -> None:
        logger.info("notification", extra={"event": event, "payload": payload})
