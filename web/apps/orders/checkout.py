"""Checkout session creation, retrieval and delivery selection.

``CheckoutSessionManager`` validates a cart against the merchant's
catalog, prices it with ``PricingEngine`` and stores a time-boxed,
price-locked ``CheckoutSession`` through the injected ``SessionStore``.

Delivery method flow: the method may be given at creation or chosen
later with ``select_delivery``; it can change until the session is
completed, and completion falls back to PICKUP when it was never chosen.
The merchant's flat delivery fee is captured in the session at creation
so later selections price from the same snapshot as the items.
"""

import logging
import secrets
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from django.utils import timezone

from . import paynow
from .domain import CartItem, CheckoutSession, DeliveryAddress, DeliveryMethod, SessionLine, SessionStore
from .errors import BadRequest, NotFound, PreconditionFailed
from .pricing import DeliveryFeeCalculator, FeeQuote, PricingEngine, money
from .repository import CatalogRepository

logger = logging.getLogger("orders.checkout")

DEFAULT_TTL = timedelta(minutes=30)


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def new_payment_reference() -> str:
    return f"PAY-{secrets.token_hex(4).upper()}"


def _product_key(product_id) -> str:
    try:
        return str(uuid.UUID(str(product_id)))
    except ValueError:
        raise NotFound(f"Product {product_id} not found", "PRODUCT_NOT_FOUND")


def ensure_delivery_capability(merchant, delivery_method: DeliveryMethod) -> None:
    """Reject a method the merchant has switched off.

    Raises:
        PreconditionFailed: DELIVERY without ``delivery_enabled`` or
            PICKUP without ``pickup_enabled``.
    """
    if delivery_method == DeliveryMethod.DELIVERY and not merchant.delivery_enabled:
        raise PreconditionFailed("Merchant does not offer delivery", "DELIVERY_NOT_AVAILABLE")
    if delivery_method == DeliveryMethod.PICKUP and not merchant.pickup_enabled:
        raise PreconditionFailed("Merchant does not offer pickup", "PICKUP_NOT_AVAILABLE")


class CheckoutSessionManager:
    """Issues and serves checkout sessions.

    Args:
        sessions: Session store (durable table or in-memory map).
        catalog: Merchant/product reads.
        pricing: Pricing rules.
        fee_calculator: Postal-zone heuristic for fee quotes.
        ttl: Hard lifetime of a session.
        clock: Callable returning the current aware datetime.
        paynow_valid_days: Lifetime of the PayNow payloads handed out.
    """

    def __init__(
        self,
        sessions: SessionStore,
        catalog: Optional[CatalogRepository] = None,
        pricing: Optional[PricingEngine] = None,
        fee_calculator: Optional[DeliveryFeeCalculator] = None,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = timezone.now,
        paynow_valid_days: int = 7,
    ):
        self.sessions = sessions
        self.catalog = catalog or CatalogRepository()
        self.pricing = pricing or PricingEngine()
        self.fee_calculator = fee_calculator or DeliveryFeeCalculator()
        self.ttl = ttl
        self.clock = clock
        self.paynow_valid_days = paynow_valid_days

    def create(
        self,
        merchant_id: str,
        items: Iterable[CartItem],
        delivery_method: Optional[DeliveryMethod] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """Validate a cart and store a new pending session.

        Stock is only soft-checked here; the hard guard is the conditional
        decrement at completion.

        Raises:
            BadRequest: Empty cart, unavailable product, stock shortfall or
                minimum order not met.
            NotFound: Unknown merchant or product.
            PreconditionFailed: Requested method disabled for the merchant.
        """
        items = list(items)
        if not items:
            raise BadRequest("Cart cannot be empty", "EMPTY_CART")
        for item in items:
            if item.quantity < 1:
                raise BadRequest("Quantity must be at least 1", "INVALID_QUANTITY")

        merchant = self.catalog.get_active_merchant(merchant_id)
        if delivery_method is not None:
            delivery_method = DeliveryMethod(delivery_method)
            ensure_delivery_capability(merchant, delivery_method)

        lines = self._price_lines(merchant, items)
        quote = self.pricing.quote(
            [(line.unit_price, line.quantity) for line in lines],
            delivery_method,
            merchant.delivery_fee,
            merchant.minimum_order,
        )
        if not quote.meets_minimum:
            raise BadRequest(quote.minimum_order_message, "MINIMUM_ORDER_NOT_MET")

        now = self.clock()
        session = CheckoutSession(
            session_id=new_session_id(),
            merchant_id=str(merchant.id),
            items=tuple(lines),
            subtotal=quote.subtotal,
            delivery_fee=quote.delivery_fee,
            merchant_delivery_fee=money(merchant.delivery_fee),
            total=quote.total,
            payment_reference=new_payment_reference(),
            created_at=now,
            expires_at=now + self.ttl,
            delivery_method=delivery_method,
            customer_id=customer_id,
        )
        self.sessions.save(session)
        logger.info(
            "checkout session created",
            extra={"merchant_id": session.merchant_id, "lines": len(lines), "total": str(session.total)},
        )
        return session

    def get(self, session_id: str) -> CheckoutSession:
        """Return an unexpired session, pending or completed.

        Raises:
            NotFound: When absent or past its expiry.
        """
        session = self.sessions.get(session_id, self.clock())
        if session is None:
            raise NotFound("Session not found or expired", "SESSION_NOT_FOUND")
        return session

    def select_delivery(
        self,
        session_id: str,
        delivery_method: DeliveryMethod,
        delivery_address: Optional[DeliveryAddress] = None,
    ) -> CheckoutSession:
        """Choose or change the delivery method of a pending session.

        Raises:
            NotFound: Session absent or expired.
            BadRequest: Completed session, missing address for DELIVERY or
                minimum order not met under the new totals.
            PreconditionFailed: Method disabled for the merchant.
        """
        delivery_method = DeliveryMethod(delivery_method)
        session = self.get(session_id)
        if session.order_id:
            raise BadRequest("Session already completed", "SESSION_ALREADY_COMPLETED")

        merchant = self.catalog.get_active_merchant(session.merchant_id)
        ensure_delivery_capability(merchant, delivery_method)
        if delivery_method == DeliveryMethod.DELIVERY and delivery_address is None:
            raise BadRequest("Delivery address is required", "DELIVERY_ADDRESS_REQUIRED")

        quote = self.pricing.quote(
            [(line.unit_price, line.quantity) for line in session.items],
            delivery_method,
            session.merchant_delivery_fee,
            merchant.minimum_order,
        )
        if not quote.meets_minimum:
            raise BadRequest(quote.minimum_order_message, "MINIMUM_ORDER_NOT_MET")

        updated = replace(
            session,
            delivery_method=delivery_method,
            delivery_address=delivery_address if delivery_method == DeliveryMethod.DELIVERY else None,
            delivery_fee=quote.delivery_fee,
            total=quote.total,
        )
        if not self.sessions.update_delivery(updated, self.clock()):
            raise NotFound("Session not found or expired", "SESSION_NOT_FOUND")
        return updated

    def quote_delivery_fee(self, merchant_id: str, postal_code: str) -> FeeQuote:
        """Estimate the delivery fee and time to a postal code.

        Raises:
            NotFound: Unknown or inactive merchant.
            PreconditionFailed: Merchant does not deliver.
        """
        merchant = self.catalog.get_active_merchant(merchant_id)
        if not merchant.delivery_enabled:
            raise PreconditionFailed("Delivery not available for this merchant", "DELIVERY_NOT_AVAILABLE")
        return self.fee_calculator.quote(merchant.delivery_fee, merchant.postal_code, postal_code)

    def payment_info(
        self,
        merchant_id: str,
        amount=None,
        reference: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> Optional[dict]:
        """PayNow details the customer needs to pay the merchant.

        ``paynow_payload`` is the SGQR string for ``amount`` and
        ``reference``, valid for ``paynow_valid_days`` from ``issued_at``;
        it is empty when the merchant has no PayNow number.
        """
        merchant = self.catalog.get_merchant(merchant_id)
        if merchant is None:
            return None
        payload = ""
        if merchant.paynow_number:
            issued_at = issued_at or self.clock()
            payload = paynow.build_payload(
                merchant.paynow_number,
                amount=amount,
                reference=reference,
                merchant_name=merchant.business_name,
                expires_on=issued_at.date() + timedelta(days=self.paynow_valid_days),
            )
        return {
            "merchant_name": merchant.business_name,
            "paynow_number": merchant.paynow_number,
            "paynow_qr_code": merchant.paynow_qr_code,
            "paynow_payload": payload,
        }

    def _price_lines(self, merchant, items: List[CartItem]) -> List[SessionLine]:
        requested = defaultdict(int)
        for item in items:
            requested[_product_key(item.product_id)] += item.quantity
        products = self.catalog.products_by_id(merchant.id, requested.keys())

        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", "PRODUCT_NOT_FOUND")
            if not product.is_active or product.deleted_at is not None:
                raise BadRequest(f"{product.name} is not available", "PRODUCT_UNAVAILABLE")
            if product.track_inventory and product.inventory < quantity:
                raise BadRequest(
                    f"Only {product.inventory} units of {product.name} available",
                    "INSUFFICIENT_STOCK",
                )

        lines = []
        for item in items:
            product = products[_product_key(item.product_id)]
            unit = money(product.price)
            lines.append(SessionLine(
                product_id=str(product.id),
                product_name=product.name,
                unit_price=unit,
                quantity=item.quantity,
                total=self.pricing.line_total(unit, item.quantity),
                variant=item.variant,
                notes=item.notes,
            ))
        return lines
