"""Repository layer over the Django ORM.

This module keeps ORM queries out of the services. ``CatalogRepository``
reads merchants and products and owns the only write to product stock,
the conditional inventory decrement. ``OrderRepository`` creates the
order aggregate (order, items, payment) and appends audit events.
"""

import uuid
from datetime import date, datetime
from typing import Iterable, Optional

from django.db.models import F, Q, QuerySet

from .domain import ContactInfo, DeliveryAddress, DeliveryMethod, OrderStatus, PaymentStatus, SessionLine
from .errors import NotFound
from .models import (
    MerchantModel,
    OrderEventModel,
    OrderItemModel,
    OrderModel,
    PaymentModel,
    ProductModel,
)


class CatalogRepository:
    """Reads of merchant and product data, plus the stock guard."""

    def get_active_merchant(self, merchant_id) -> MerchantModel:
        """Return an active, non-deleted merchant.

        Raises:
            NotFound: When the merchant is absent, inactive or deleted.
        """
        merchant_id = as_uuid(merchant_id)
        if merchant_id is None:
            raise NotFound("Merchant not found or inactive", "MERCHANT_NOT_FOUND")
        merchant = MerchantModel.objects.filter(
            id=merchant_id, is_active=True, deleted_at__isnull=True
        ).first()
        if merchant is None:
            raise NotFound("Merchant not found or inactive", "MERCHANT_NOT_FOUND")
        return merchant

    def get_merchant(self, merchant_id) -> Optional[MerchantModel]:
        """Return the merchant regardless of its state, or None."""
        merchant_id = as_uuid(merchant_id)
        if merchant_id is None:
            return None
        return MerchantModel.objects.filter(id=merchant_id).first()

    def products_by_id(self, merchant_id, product_ids: Iterable[str]) -> dict:
        """Map ``str(product.id)`` to the product for the merchant's products.

        Inactive and deleted products are included so callers can tell
        "unavailable" apart from "unknown".
        """
        qs = ProductModel.objects.filter(merchant_id=merchant_id, id__in=list(product_ids))
        return {str(p.id): p for p in qs}

    def decrement_inventory(self, product_id, quantity: int) -> bool:
        """Take ``quantity`` units of a product's stock in a single statement.

        The UPDATE only applies while ``inventory >= quantity``, so two
        concurrent callers can never both take the last unit. Products
        that do not track inventory always succeed.

        Returns:
            bool: False when the product tracks inventory and has too little.
        """
        updated = ProductModel.objects.filter(
            id=product_id, track_inventory=True, inventory__gte=quantity
        ).update(inventory=F("inventory") - quantity)
        if updated:
            return True
        return not ProductModel.objects.filter(id=product_id, track_inventory=True).exists()


class OrderRepository:
    """Writes and merchant-scoped reads of the order aggregate."""

    def create(
        self,
        *,
        order_id,
        merchant: MerchantModel,
        contact: ContactInfo,
        delivery_method: DeliveryMethod,
        delivery_address: Optional[DeliveryAddress],
        lines: Iterable[SessionLine],
        subtotal,
        delivery_fee,
        total,
        payment_reference: str,
        currency: str,
        estimated_ready: datetime,
        customer_id: Optional[str] = None,
        notes: str = "",
        delivery_notes: str = "",
    ) -> OrderModel:
        """Persist a PENDING order with its items and a PENDING payment.

        Must be called inside the caller's transaction.
        """
        order = OrderModel(
            id=order_id,
            merchant=merchant,
            customer_id=customer_id,
            customer_name=contact.name,
            customer_email=contact.email,
            customer_phone=contact.phone,
            delivery_method=delivery_method.value,
            delivery_address=address_to_dict(delivery_address),
            delivery_notes=delivery_notes or "",
            notes=notes or "",
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            discount=0,
            tax=0,
            total=total,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_reference=payment_reference,
            estimated_ready=estimated_ready,
        )
        order.save()
        OrderItemModel.objects.bulk_create([
            OrderItemModel(
                order=order,
                product_id=line.product_id,
                product_name=line.product_name,
                product_price=line.unit_price,
                quantity=line.quantity,
                total=line.total,
                variant=line.variant or "",
                notes=line.notes or "",
            )
            for line in lines
        ])
        PaymentModel.objects.create(
            order=order,
            amount=total,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            payment_reference=payment_reference,
        )
        return order

    def record_event(self, order: OrderModel, event: str, actor: Optional[str], data: dict, at: datetime) -> OrderEventModel:
        return OrderEventModel.objects.create(order=order, event=event, actor=actor, data=data, created_at=at)

    def get_for_merchant(self, order_id, merchant_id, for_update: bool = False) -> OrderModel:
        """Load an order owned by ``merchant_id``.

        Orders of other merchants are reported as missing.

        Raises:
            NotFound: When absent or not owned by the merchant.
        """
        order_id, merchant_id = as_uuid(order_id), as_uuid(merchant_id)
        if order_id is None or merchant_id is None:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")
        qs = OrderModel.objects.filter(id=order_id, merchant_id=merchant_id)
        if for_update:
            qs = qs.select_for_update()
        order = qs.first()
        if order is None:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")
        return order

    def list_for_merchant(self, merchant_id, status: Optional[str] = None, search: Optional[str] = None) -> QuerySet:
        merchant_id = as_uuid(merchant_id)
        if merchant_id is None:
            return OrderModel.objects.none()
        qs = OrderModel.objects.filter(merchant_id=merchant_id).order_by("-created_at", "-internal_id")
        if status:
            qs = qs.filter(status=status)
        if search:
            qs = qs.filter(
                Q(order_number__icontains=search)
                | Q(customer_name__icontains=search)
                | Q(customer_phone__contains=search)
            )
        return qs

    def export_for_merchant(
        self,
        merchant_id,
        order_ids: Optional[Iterable] = None,
        statuses: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 1000,
    ) -> QuerySet:
        """Newest-first orders for an export, items prefetched.

        Explicit ``order_ids`` take precedence over the filters. Dates are
        inclusive calendar days.
        """
        merchant_id = as_uuid(merchant_id)
        if merchant_id is None:
            return OrderModel.objects.none()
        qs = OrderModel.objects.filter(merchant_id=merchant_id)
        if order_ids:
            qs = qs.filter(id__in=list(order_ids))
        else:
            if statuses:
                qs = qs.filter(status__in=list(statuses))
            if search:
                qs = qs.filter(Q(order_number__icontains=search) | Q(customer_name__icontains=search))
            if date_from:
                qs = qs.filter(created_at__date__gte=date_from)
            if date_to:
                qs = qs.filter(created_at__date__lte=date_to)
        return qs.order_by("-created_at", "-internal_id").prefetch_related("items")[:limit]


def as_uuid(value) -> Optional[uuid.UUID]:
    """Parse an identifier, returning None for anything that is not a UUID."""
    if value is None:
        return None
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        return None


def address_to_dict(address: Optional[DeliveryAddress]) -> Optional[dict]:
    if address is None:
        return None
    return {
        "line1": address.line1,
        "line2": address.line2,
        "postal_code": address.postal_code,
        "notes": address.notes,
    }


def address_from_dict(data: Optional[dict]) -> Optional[DeliveryAddress]:
    if not data:
        return None
    return DeliveryAddress(
        line1=data["line1"],
        postal_code=data["postal_code"],
        line2=data.get("line2"),
        notes=data.get("notes"),
    )
