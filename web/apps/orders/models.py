import uuid
from django.db import models, transaction
from django.db.models import F

from .domain import DeliveryMethod, OrderStatus, PaymentStatus, SessionStatus


def _choices(enum):
    return [(m.value, m.value) for m in enum]


class MerchantModel(models.Model):
    # Owned by merchant management; read-mostly here
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner_id = models.CharField(max_length=64, db_index=True)
    business_name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    delivery_enabled = models.BooleanField(default=False)
    pickup_enabled = models.BooleanField(default=True)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    minimum_order = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    postal_code = models.CharField(max_length=6, blank=True, default="")
    preparation_time = models.PositiveIntegerField(default=30)  # minutes

    # Payment display info
    paynow_number = models.CharField(max_length=32, blank=True, default="")
    paynow_qr_code = models.CharField(max_length=500, blank=True, default="")

    class Meta:
        db_table = "merchants"


class ProductModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    merchant = models.ForeignKey(MerchantModel, on_delete=models.PROTECT, related_name="products")
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    # Only ever decremented through a conditional update
    inventory = models.PositiveIntegerField(default=0)
    track_inventory = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "products"


class CheckoutSessionModel(models.Model):
    session_id = models.CharField(max_length=64, primary_key=True)
    merchant = models.ForeignKey(MerchantModel, on_delete=models.PROTECT, related_name="checkout_sessions")
    customer_id = models.CharField(max_length=64, null=True, blank=True)

    items = models.JSONField(default=list)
    delivery_method = models.CharField(max_length=16, choices=_choices(DeliveryMethod), null=True, blank=True)
    delivery_address = models.JSONField(null=True, blank=True)

    subtotal = models.DecimalField(max_digits=10, decimal_places=2)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    merchant_delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2)
    payment_reference = models.CharField(max_length=32, unique=True)

    status = models.CharField(max_length=16, choices=_choices(SessionStatus), default=SessionStatus.PENDING.value)
    order_id = models.UUIDField(null=True, blank=True)

    created_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "checkout_sessions"


class CounterModel(models.Model):
    """Named monotonic counters (one row per counter)."""

    name = models.CharField(max_length=32, primary_key=True)
    value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "counters"

    @classmethod
    def next_value(cls, name: str) -> int:
        """Increment and return the counter.

        The row stays locked until the caller's transaction ends, so
        concurrent allocations queue on it instead of reading the same
        value.
        """
        with transaction.atomic():
            cls.objects.select_for_update().get_or_create(name=name)
            cls.objects.filter(name=name).update(value=F("value") + 1)
            return cls.objects.values_list("value", flat=True).get(name=name)


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter, source of the display number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)
    order_number = models.CharField(max_length=32, unique=True, editable=False)

    merchant = models.ForeignKey(MerchantModel, on_delete=models.PROTECT, related_name="orders")
    customer_id = models.CharField(max_length=64, null=True, blank=True)
    customer_name = models.CharField(max_length=200)
    customer_email = models.CharField(max_length=254)
    customer_phone = models.CharField(max_length=32)

    delivery_method = models.CharField(max_length=16, choices=_choices(DeliveryMethod))
    delivery_address = models.JSONField(null=True, blank=True)
    delivery_notes = models.TextField(blank=True, default="")
    notes = models.TextField(blank=True, default="")

    subtotal = models.DecimalField(max_digits=10, decimal_places=2)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    tax = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2)

    status = models.CharField(max_length=32, choices=_choices(OrderStatus), default=OrderStatus.PENDING.value)
    payment_status = models.CharField(max_length=16, choices=_choices(PaymentStatus), default=PaymentStatus.PENDING.value)
    payment_reference = models.CharField(max_length=32, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)

    estimated_ready = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    prepared_at = models.DateTimeField(null=True, blank=True)
    ready_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` and the display number only on creation
        with transaction.atomic():
            if self.internal_id is None:
                self.internal_id = CounterModel.next_value("orders")
                if not self.order_number:
                    self.order_number = f"ORD-{self.internal_id:06d}"
            super().save(*args, **kwargs)


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(ProductModel, on_delete=models.PROTECT, related_name="+")
    product_name = models.CharField(max_length=200)
    product_price = models.DecimalField(max_digits=10, decimal_places=2)
    quantity = models.PositiveIntegerField()
    total = models.DecimalField(max_digits=10, decimal_places=2)
    variant = models.CharField(max_length=200, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class PaymentModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(OrderModel, on_delete=models.CASCADE, related_name="payment")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="SGD")
    method = models.CharField(max_length=16, default="PAYNOW")
    status = models.CharField(max_length=16, choices=_choices(PaymentStatus), default=PaymentStatus.PENDING.value)
    payment_reference = models.CharField(max_length=32, blank=True, default="")
    proof_url = models.CharField(max_length=500, blank=True, default="")

    verified_by = models.CharField(max_length=64, null=True, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    verification_notes = models.TextField(blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "payments"


class PaymentProofModel(models.Model):
    # Append-only
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment = models.ForeignKey(PaymentModel, on_delete=models.CASCADE, related_name="proofs")
    file_url = models.CharField(max_length=500)
    file_name = models.CharField(max_length=255)
    file_size = models.PositiveIntegerField()
    mime_type = models.CharField(max_length=64)
    uploaded_by = models.CharField(max_length=64, null=True, blank=True)
    uploaded_at = models.DateTimeField()

    class Meta:
        db_table = "payment_proofs"
        ordering = ["uploaded_at"]


class OrderEventModel(models.Model):
    # Append-only audit trail
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="events")
    event = models.CharField(max_length=64)
    actor = models.CharField(max_length=64, null=True, blank=True)
    data = models.JSONField(default=dict)
    created_at = models.DateTimeField()

    class Meta:
        db_table = "order_events"
        ordering = ["created_at", "id"]
