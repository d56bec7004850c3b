"""Durable checkout session store backed by the ``checkout_sessions`` table.

Expiry is evaluated lazily on every read against ``expires_at``; there
is no background sweep. The first read that finds a pending session past
its expiry flips its row to ``expired``. Consumption is a single
conditional UPDATE (pending and unexpired -> completed), so of two
concurrent completions of the same session only one sees its row change.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from .domain import CheckoutSession, DeliveryMethod, SessionLine, SessionStatus, SessionStore
from .errors import BadRequest, Conflict, NotFound
from .models import CheckoutSessionModel
from .repository import address_from_dict, address_to_dict


def line_to_dict(line: SessionLine) -> dict:
    return {
        "product_id": line.product_id,
        "product_name": line.product_name,
        "unit_price": str(line.unit_price),
        "quantity": line.quantity,
        "total": str(line.total),
        "variant": line.variant,
        "notes": line.notes,
    }


def line_from_dict(data: dict) -> SessionLine:
    return SessionLine(
        product_id=data["product_id"],
        product_name=data["product_name"],
        unit_price=Decimal(data["unit_price"]),
        quantity=int(data["quantity"]),
        total=Decimal(data["total"]),
        variant=data.get("variant"),
        notes=data.get("notes"),
    )


class DjangoSessionStore(SessionStore):
    """``SessionStore`` persisted through the Django ORM.

    ``consume`` runs inside the caller's ``transaction.atomic`` block, so
    a completion that fails later rolls the session back to pending and
    ``release`` has nothing to do.
    """

    def save(self, session: CheckoutSession) -> None:
        CheckoutSessionModel.objects.create(
            session_id=session.session_id,
            merchant_id=session.merchant_id,
            customer_id=session.customer_id,
            items=[line_to_dict(line) for line in session.items],
            delivery_method=session.delivery_method.value if session.delivery_method else None,
            delivery_address=address_to_dict(session.delivery_address),
            subtotal=session.subtotal,
            delivery_fee=session.delivery_fee,
            merchant_delivery_fee=session.merchant_delivery_fee,
            total=session.total,
            payment_reference=session.payment_reference,
            status=session.status.value,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )

    def get(self, session_id: str, now: datetime) -> Optional[CheckoutSession]:
        obj = CheckoutSessionModel.objects.filter(session_id=session_id).first()
        if obj is None or obj.status == SessionStatus.EXPIRED.value:
            return None
        if obj.expires_at <= now:
            # a completed row keeps its status and order_id
            self._mark_expired(session_id, now)
            return None
        return self._to_domain(obj)

    def update_delivery(self, session: CheckoutSession, now: datetime) -> bool:
        updated = CheckoutSessionModel.objects.filter(
            session_id=session.session_id,
            status=SessionStatus.PENDING.value,
            expires_at__gt=now,
        ).update(
            delivery_method=session.delivery_method.value if session.delivery_method else None,
            delivery_address=address_to_dict(session.delivery_address),
            delivery_fee=session.delivery_fee,
            total=session.total,
        )
        return updated == 1

    def consume(self, session_id: str, now: datetime, order_id: str) -> CheckoutSession:
        updated = CheckoutSessionModel.objects.filter(
            session_id=session_id,
            status=SessionStatus.PENDING.value,
            expires_at__gt=now,
        ).update(status=SessionStatus.COMPLETED.value, order_id=order_id, completed_at=now)

        obj = CheckoutSessionModel.objects.filter(session_id=session_id).first()
        if obj is None:
            raise NotFound("Session not found", "SESSION_NOT_FOUND")
        if updated != 1:
            if obj.status == SessionStatus.COMPLETED.value:
                raise Conflict("Session already completed", "SESSION_ALREADY_COMPLETED")
            raise BadRequest("Session expired. Please start checkout again.", "SESSION_EXPIRED")
        return self._to_domain(obj)

    def release(self, session_id: str) -> None:
        return None

    def _mark_expired(self, session_id: str, now: datetime) -> None:
        CheckoutSessionModel.objects.filter(
            session_id=session_id,
            status=SessionStatus.PENDING.value,
            expires_at__lte=now,
        ).update(status=SessionStatus.EXPIRED.value)

    @staticmethod
    def _to_domain(obj: CheckoutSessionModel) -> CheckoutSession:
        return CheckoutSession(
            session_id=obj.session_id,
            merchant_id=str(obj.merchant_id),
            items=tuple(line_from_dict(d) for d in obj.items),
            subtotal=obj.subtotal,
            delivery_fee=obj.delivery_fee,
            merchant_delivery_fee=obj.merchant_delivery_fee,
            total=obj.total,
            payment_reference=obj.payment_reference,
            created_at=obj.created_at,
            expires_at=obj.expires_at,
            status=SessionStatus(obj.status),
            delivery_method=DeliveryMethod(obj.delivery_method) if obj.delivery_method else None,
            delivery_address=address_from_dict(obj.delivery_address),
            order_id=str(obj.order_id) if obj.order_id else None,
            customer_id=obj.customer_id,
        )
