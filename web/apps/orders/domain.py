"""Domain types and ports for the checkout and order lifecycle.

This module contains the enums that name every lifecycle state, the
frozen dataclasses passed between the checkout, order and payment
services, and protocol definitions (ports) for the collaborators those
services depend on: the checkout session store and the notification
sink. Nothing in here touches Django.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Every state an order can be in. PENDING is the only initial state."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DeliveryMethod(str, Enum):
    """How the customer receives the order.

    Selects both the delivery fee rule and the status transition table.
    """

    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartItem:
    """A line requested by the customer before any validation.

    Attributes:
        product_id: Identifier of the product (string form of its UUID).
        quantity: Units requested, at least 1.
        variant: Optional free-form variant label.
        notes: Optional free-form notes for the kitchen.
    """

    product_id: str
    quantity: int
    variant: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SessionLine:
    """A priced line inside a checkout session.

    The unit price is the price at session creation and never changes
    afterwards; completion prices order items from it.
    """

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    total: Decimal
    variant: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class DeliveryAddress:
    line1: str
    postal_code: str
    line2: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ContactInfo:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class CheckoutSession:
    """Time-boxed, price-locked snapshot of a cart.

    Attributes:
        session_id: Opaque, unguessable token.
        merchant_id: Merchant the cart belongs to.
        items: Priced lines locked at creation.
        subtotal: Sum of the line totals.
        delivery_fee: Fee for the selected method (0 until DELIVERY is chosen).
        merchant_delivery_fee: The merchant's flat fee captured at creation.
        total: subtotal + delivery_fee.
        payment_reference: Human-facing reference for the manual payment.
        created_at: Creation time.
        expires_at: Hard expiry; the session behaves as absent afterwards.
        status: Consumption state.
        delivery_method: Chosen method, or None while still deferred.
        delivery_address: Address given with the DELIVERY selection.
        order_id: Order produced by the completion, once completed.
        customer_id: Identity of the caller who created the session, if any.
    """

    session_id: str
    merchant_id: str
    items: tuple
    subtotal: Decimal
    delivery_fee: Decimal
    merchant_delivery_fee: Decimal
    total: Decimal
    payment_reference: str
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    delivery_method: Optional[DeliveryMethod] = None
    delivery_address: Optional[DeliveryAddress] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class OrderReceipt:
    """What a successful checkout completion hands back to the caller."""

    order_id: str
    order_number: str
    total: Decimal
    estimated_ready: datetime
    payment_reference: str


@dataclass(frozen=True)
class ProofUpload:
    file_url: str
    file_name: str
    file_size: int
    mime_type: str


@dataclass
class BulkTransitionResult:
    success_count: int = 0
    skipped_count: int = 0
    total_count: int = 0
    order_ids: List[str] = field(default_factory=list)


# ---- Ports (DIP) ----
class SessionStore(Protocol):
    """Port describing checkout session persistence.

    Implementations evaluate expiry lazily: a session past ``expires_at``
    is never returned as live. ``consume`` is compare-and-swap: of two
    concurrent consumers of the same session exactly one succeeds.
    """

    def save(self, session: CheckoutSession) -> None:
        """Persist a newly created session."""
        raise NotImplementedError()

    def get(self, session_id: str, now: datetime) -> Optional[CheckoutSession]:
        """Return the session, or None when absent or expired at ``now``."""
        raise NotImplementedError()

    def update_delivery(self, session: CheckoutSession, now: datetime) -> bool:
        """Store the delivery selection of a pending, unexpired session.

        Returns:
            True when the write applied, False when the session was no
            longer pending or had expired.
        """
        raise NotImplementedError()

    def consume(self, session_id: str, now: datetime, order_id: str) -> CheckoutSession:
        """Mark a pending, unexpired session completed for ``order_id``.

        Must run inside the caller's unit of work so the mark is undone
        when that work rolls back.

        Raises:
            NotFound: No such session.
            Conflict: The session was already completed.
            BadRequest: The session has expired.
        """
        raise NotImplementedError()

    def release(self, session_id: str) -> None:
        """Undo a ``consume`` whose unit of work did not commit.

        Stores that consume inside the database transaction get this for
        free from the rollback and implement it as a no-op.
        """
        raise NotImplementedError()


class NotificationPort(Protocol):
    """Port for the fire-and-forget notification collaborator."""

    def notify(self, event: str, payload: dict) -> None:
        """Deliver one event. May raise; callers treat delivery as best effort."""
        raise NotImplementedError()
