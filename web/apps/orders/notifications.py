"""After-commit dispatch to the notification collaborator.

Notifications are a best-effort side channel: they are sent only once
the surrounding transaction commits, and a failing sink is logged and
otherwise ignored so it can never change the outcome of the operation
that produced the event.
"""

import logging
from typing import Optional

from django.db import transaction

from .domain import NotificationPort

logger = logging.getLogger("orders.notifications")


def notify_on_commit(sink: Optional[NotificationPort], event: str, payload: dict, using: Optional[str] = None) -> None:
    """Schedule ``sink.notify(event, payload)`` for after the current commit.

    Outside an atomic block Django runs the callback immediately.

    Args:
        sink: Notification port; None disables delivery.
        event: Event name, e.g. ``order.created``.
        payload: JSON-serializable body.
        using: Database alias whose transaction gates delivery.
    """
    if sink is None:
        return

    def _send():
        try:
            sink.notify(event, payload)
        except Exception:
            logger.warning("notification failed", exc_info=True, extra={"event": event})

    transaction.on_commit(_send, using=using)
