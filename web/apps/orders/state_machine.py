"""Order status state machine.

The transition tables are keyed by every ``OrderStatus`` for both
delivery methods, so ``allowed`` is total: any (status, method) pair
yields a set, and a target outside that set is illegal. Re-submitting the current status is not in any set and
is therefore rejected like every other unlisted pair.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, Optional

from django.db import transaction
from django.utils import timezone

from .domain import BulkTransitionResult, DeliveryMethod, NotificationPort, OrderStatus
from .errors import BadRequest, NotFound
from .models import OrderModel
from .notifications import notify_on_commit
from .repository import OrderRepository, as_uuid

logger = logging.getLogger("orders.status")

S = OrderStatus

PICKUP_FLOW: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY, S.CANCELLED}),
    S.READY: frozenset({S.COMPLETED, S.CANCELLED}),
    S.OUT_FOR_DELIVERY: frozenset(),
    S.DELIVERED: frozenset(),
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

DELIVERY_FLOW: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.READY, S.CANCELLED}),
    S.READY: frozenset({S.OUT_FOR_DELIVERY, S.CANCELLED}),
    S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset({S.COMPLETED, S.REFUNDED}),
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

FLOWS = {
    DeliveryMethod.PICKUP: PICKUP_FLOW,
    DeliveryMethod.DELIVERY: DELIVERY_FLOW,
}

# OUT_FOR_DELIVERY and REFUNDED carry no dedicated timestamp
TIMESTAMP_FIELDS = {
    S.CONFIRMED: "confirmed_at",
    S.PREPARING: "prepared_at",
    S.READY: "ready_at",
    S.DELIVERED: "delivered_at",
    S.CANCELLED: "cancelled_at",
    S.COMPLETED: "completed_at",
}

def allowed(current: OrderStatus, delivery_method: DeliveryMethod) -> FrozenSet[OrderStatus]:
    """Statuses reachable in one step from ``current`` for the method."""
    return FLOWS[DeliveryMethod(delivery_method)][OrderStatus(current)]


def can_transition(current: OrderStatus, delivery_method: DeliveryMethod, target: OrderStatus) -> bool:
    return OrderStatus(target) in allowed(current, delivery_method)


def assert_transition(current: OrderStatus, delivery_method: DeliveryMethod, target: OrderStatus) -> None:
    """Raise BadRequest naming the pair when the step is illegal."""
    if not can_transition(current, delivery_method, target):
        raise BadRequest(
            f"Invalid status transition: {OrderStatus(current).value} -> {OrderStatus(target).value}"
            f" for {DeliveryMethod(delivery_method).value.lower()} orders",
            "INVALID_STATUS_TRANSITION",
        )


class OrderStatusStateMachine:
    """Applies legal status transitions to persisted orders.

    Each applied transition writes the new status and its lifecycle
    timestamp, merges a cancellation reason into the order metadata,
    appends a ``status_changed`` event and schedules an
    ``order.status_changed`` notification for after the commit.

    Args:
        orders: Repository used for order loads and audit events.
        notifier: Optional notification port.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        orders: Optional[OrderRepository] = None,
        notifier: Optional[NotificationPort] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.orders = orders or OrderRepository()
        self.notifier = notifier
        self.clock = clock

    def transition(
        self,
        order: OrderModel,
        target: OrderStatus,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        source: str = "merchant",
    ) -> OrderModel:
        """Move ``order`` to ``target`` or fail without writing anything.

        The caller is expected to hold the order row (``select_for_update``)
        when it runs inside a larger transaction.

        Raises:
            BadRequest: When the pair is not in the order's transition table.
        """
        target = OrderStatus(target)
        current = OrderStatus(order.status)
        method = DeliveryMethod(order.delivery_method)
        assert_transition(current, method, target)

        now = self.clock()
        with transaction.atomic():
            order.status = target.value
            fields = ["status", "updated_at"]
            ts_field = TIMESTAMP_FIELDS.get(target)
            if ts_field:
                setattr(order, ts_field, now)
                fields.append(ts_field)
            if target == S.CANCELLED and reason:
                order.metadata = {**(order.metadata or {}), "cancellation_reason": reason}
                fields.append("metadata")
            order.save(update_fields=fields)

            data = {"from": current.value, "to": target.value, "source": source}
            if reason:
                data["reason"] = reason
            self.orders.record_event(order, "status_changed", actor, data, now)
            notify_on_commit(self.notifier, "order.status_changed", {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "merchant_id": str(order.merchant_id),
                "from": current.value,
                "to": target.value,
                "reason": reason,
            })

        logger.info(
            "order status changed",
            extra={"order_id": str(order.id), "from": current.value, "to": target.value, "source": source},
        )
        return order

    def update_status(self, order_id, merchant_id, target: OrderStatus, reason: Optional[str] = None, actor: Optional[str] = None) -> OrderModel:
        """Load a merchant's order under a row lock and transition it.

        Raises:
            NotFound: When the order is absent or owned by another merchant.
            BadRequest: When the transition is illegal.
        """
        if not merchant_id:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")
        with transaction.atomic():
            order = self.orders.get_for_merchant(order_id, merchant_id, for_update=True)
            return self.transition(order, target, reason=reason, actor=actor)

    def bulk_update_status(
        self,
        order_ids: Iterable,
        merchant_id,
        target: OrderStatus,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> BulkTransitionResult:
        """Transition every owned order that can legally reach ``target``.

        Orders that cannot make the step are skipped. All applied
        transitions commit together.

        Raises:
            NotFound: When none of the ids belongs to the merchant.
            BadRequest: When none of the owned orders can transition.
        """
        target = OrderStatus(target)
        merchant_id = as_uuid(merchant_id)
        ids = [i for i in (as_uuid(o) for o in order_ids) if i is not None]
        if merchant_id is None or not ids:
            raise NotFound("No valid orders found", "ORDER_NOT_FOUND")
        with transaction.atomic():
            orders = list(
                OrderModel.objects.select_for_update()
                .filter(id__in=ids, merchant_id=merchant_id)
                .order_by("internal_id")
            )
            if not orders:
                raise NotFound("No valid orders found", "ORDER_NOT_FOUND")

            movable = [o for o in orders if can_transition(o.status, o.delivery_method, target)]
            if not movable:
                raise BadRequest("No orders can be transitioned to the selected status", "INVALID_STATUS_TRANSITION")

            for order in movable:
                self.transition(order, target, reason=reason, actor=actor, source="bulk")

        return BulkTransitionResult(
            success_count=len(movable),
            skipped_count=len(orders) - len(movable),
            total_count=len(orders),
            order_ids=[str(o.id) for o in movable],
        )
