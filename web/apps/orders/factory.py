"""Conversion of a checkout session into a durable order, exactly once.

``OrderFactory.complete`` runs one unit of work inside a single
``transaction.atomic`` block on one database alias:

1. consume the session (conditional update; the replay guard),
2. re-validate the merchant, the delivery method and the locked lines,
3. take stock with one conditional decrement per line,
4. write the order, its items, its payment and the ``order_created`` event.

Any failure raises out of the block and rolls every write back, so a
decremented stock count without an order (or an order without its
payment) is never committed. Notifications are scheduled for after the
commit.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.db import transaction
from django.utils import timezone

from .checkout import ensure_delivery_capability
from .domain import (
    CheckoutSession,
    ContactInfo,
    DeliveryAddress,
    DeliveryMethod,
    NotificationPort,
    OrderReceipt,
    SessionStore,
)
from .errors import BadRequest, PreconditionFailed, NotFound
from .notifications import notify_on_commit
from .pricing import money
from .repository import CatalogRepository, OrderRepository, address_to_dict

logger = logging.getLogger("orders.factory")


class OrderFactory:
    """Completes checkout sessions into orders.

    Args:
        sessions: Session store shared with the session manager.
        catalog: Merchant/product reads and the stock guard.
        orders: Order aggregate writes.
        notifier: Optional notification port.
        currency: Currency stamped on the payment record.
        clock: Callable returning the current aware datetime.
        using: Database alias of the unit of work.
    """

    def __init__(
        self,
        sessions: SessionStore,
        catalog: Optional[CatalogRepository] = None,
        orders: Optional[OrderRepository] = None,
        notifier: Optional[NotificationPort] = None,
        currency: str = "SGD",
        clock: Callable[[], datetime] = timezone.now,
        using: Optional[str] = None,
    ):
        self.sessions = sessions
        self.catalog = catalog or CatalogRepository()
        self.orders = orders or OrderRepository()
        self.notifier = notifier
        self.currency = currency
        self.clock = clock
        self.using = using

    def complete(
        self,
        session_id: str,
        contact: ContactInfo,
        delivery_address: Optional[DeliveryAddress] = None,
        notes: Optional[str] = None,
        delivery_notes: Optional[str] = None,
    ) -> OrderReceipt:
        """Turn a pending session into a PENDING order.

        Args:
            session_id: Token of the session to consume.
            contact: Customer contact snapshot (guest orders allowed).
            delivery_address: Address; required when the session's method
                is DELIVERY unless one was given at delivery selection.
            notes: Free-form order notes.
            delivery_notes: Free-form delivery notes.

        Returns:
            OrderReceipt: Order id, number, total and estimated ready time.

        Raises:
            NotFound: Unknown session.
            Conflict: Session already completed.
            BadRequest: Expired session, missing address, changed or
                unavailable product, insufficient stock.
            PreconditionFailed: Merchant no longer offers the method or no
                longer accepts orders.
        """
        now = self.clock()
        order_id = str(uuid.uuid4())
        consumed = False
        try:
            with transaction.atomic(using=self.using):
                session = self.sessions.consume(session_id, now, order_id)
                consumed = True
                order, address = self._write_order(session, order_id, contact, delivery_address, notes, delivery_notes, now)
        except Exception:
            if consumed:
                self.sessions.release(session_id)
            raise

        logger.info(
            "order created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "merchant_id": session.merchant_id,
                "total": str(order.total),
            },
        )
        return OrderReceipt(
            order_id=str(order.id),
            order_number=order.order_number,
            total=money(order.total),
            estimated_ready=order.estimated_ready,
            payment_reference=session.payment_reference,
        )

    def _write_order(
        self,
        session: CheckoutSession,
        order_id: str,
        contact: ContactInfo,
        delivery_address: Optional[DeliveryAddress],
        notes: Optional[str],
        delivery_notes: Optional[str],
        now: datetime,
    ):
        try:
            merchant = self.catalog.get_active_merchant(session.merchant_id)
        except NotFound:
            raise PreconditionFailed("Merchant is no longer accepting orders", "MERCHANT_UNAVAILABLE")

        method = session.delivery_method or DeliveryMethod.PICKUP
        ensure_delivery_capability(merchant, method)
        address = None
        if method == DeliveryMethod.DELIVERY:
            address = delivery_address or session.delivery_address
            if address is None:
                raise BadRequest("Delivery address is required", "DELIVERY_ADDRESS_REQUIRED")

        self._revalidate_lines(session)
        for line in session.items:
            if not self.catalog.decrement_inventory(line.product_id, line.quantity):
                raise BadRequest(f"Insufficient stock for {line.product_name}", "INSUFFICIENT_STOCK")

        estimated_ready = now + timedelta(minutes=merchant.preparation_time or 30)
        order = self.orders.create(
            order_id=order_id,
            merchant=merchant,
            contact=contact,
            delivery_method=method,
            delivery_address=address,
            lines=session.items,
            subtotal=session.subtotal,
            delivery_fee=session.delivery_fee,
            total=session.total,
            payment_reference=session.payment_reference,
            currency=self.currency,
            estimated_ready=estimated_ready,
            customer_id=session.customer_id,
            notes=notes or "",
            delivery_notes=delivery_notes or "",
        )
        self.orders.record_event(order, "order_created", session.customer_id, {
            "source": "checkout",
            "session_id": session.session_id,
            "payment_reference": session.payment_reference,
            "customer": {"name": contact.name, "email": contact.email, "phone": contact.phone},
            "delivery_method": method.value,
            "delivery_address": address_to_dict(address),
        }, now)
        notify_on_commit(self.notifier, "order.created", {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "merchant_id": session.merchant_id,
            "total": str(order.total),
            "customer_email": contact.email,
            "customer_phone": contact.phone,
        }, using=self.using)
        return order, address

    def _revalidate_lines(self, session: CheckoutSession) -> None:
        """Fail on products that became unavailable or changed price.

        Prices stay locked to the session; a product whose live price no
        longer matches is rejected instead of silently repriced.
        """
        products = self.catalog.products_by_id(session.merchant_id, {line.product_id for line in session.items})
        for line in session.items:
            product = products.get(line.product_id)
            if product is None or not product.is_active or product.deleted_at is not None:
                raise BadRequest(
                    f"{line.product_name} is no longer available. Please start checkout again.",
                    "PRODUCT_UNAVAILABLE",
                )
            if money(product.price) != line.unit_price:
                raise BadRequest(
                    f"The price of {line.product_name} has changed. Please start checkout again.",
                    "PRODUCT_CHANGED",
                )
