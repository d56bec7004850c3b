"""Pydantic schemas for the checkout, order and payment API.

Input schemas validate request bodies before anything reaches the
services; read schemas shape responses. Money is carried as ``Decimal``
and dumps to a two-place string in JSON mode.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.conf import settings
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import DeliveryMethod, OrderStatus

POSTAL_CODE_RE = re.compile(r"^\d{6}$")
PHONE_RE = re.compile(r"^[689]\d{7}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://\S+$")

BULK_LIMIT = 100
EXPORT_LIMIT = 1000


# ---- Inputs ----
class CartItemIn(BaseModel):
    """A requested cart line.

    Attributes:
        product_id: Product identifier.
        quantity: Units requested, at least 1.
        variant: Optional variant label.
        notes: Optional notes for the kitchen.
    """

    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(ge=1, le=999)
    variant: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=500)


class CreateSessionDTO(BaseModel):
    """Schema for creating a checkout session.

    An empty ``items`` list passes validation so the service can reject
    it with its own ``EMPTY_CART`` error.
    """

    merchant_id: str = Field(min_length=1, max_length=64)
    items: list[CartItemIn]
    delivery_method: Optional[DeliveryMethod] = None


class AddressIn(BaseModel):
    line1: str = Field(min_length=1, max_length=200)
    line2: Optional[str] = Field(default=None, max_length=200)
    postal_code: str
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("postal_code")
    @classmethod
    def validate_postal_code(cls, v: str) -> str:
        v2 = v.strip()
        if not POSTAL_CODE_RE.match(v2):
            raise ValueError("Postal code must be 6 digits")
        return v2


class SelectDeliveryDTO(BaseModel):
    delivery_method: DeliveryMethod
    delivery_address: Optional[AddressIn] = None


class ContactIn(BaseModel):
    """Customer contact details captured on the order.

    Attributes:
        name: Customer name.
        email: Email address; lowercased.
        phone: Local 8-digit mobile or landline number.
    """

    name: str = Field(min_length=1, max_length=200)
    email: str = Field(max_length=254)
    phone: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email address")
        return v2

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Strip spaces, dashes and a +65 prefix before matching.

        Raises:
            ValueError: When the number is not 8 digits starting with 6, 8 or 9.
        """
        v2 = re.sub(r"[\s-]", "", v)
        if v2.startswith("+65"):
            v2 = v2[3:]
        if not PHONE_RE.match(v2):
            raise ValueError("Invalid phone number")
        return v2


class CompleteCheckoutDTO(BaseModel):
    contact: ContactIn
    delivery_address: Optional[AddressIn] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    delivery_notes: Optional[str] = Field(default=None, max_length=500)


class DeliveryFeeQuery(BaseModel):
    merchant_id: str = Field(min_length=1, max_length=64)
    postal_code: str

    @field_validator("postal_code")
    @classmethod
    def validate_postal_code(cls, v: str) -> str:
        v2 = v.strip()
        if not POSTAL_CODE_RE.match(v2):
            raise ValueError("Postal code must be 6 digits")
        return v2


class OrderExportQuery(BaseModel):
    """Filters of a CSV export; ``order_ids`` overrides the rest."""

    order_ids: list[UUID] = Field(default_factory=list, max_length=EXPORT_LIMIT)
    status: list[OrderStatus] = Field(default_factory=list)
    search: Optional[str] = Field(default=None, max_length=100)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="after")
    def check_date_range(self):
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self


class StatusUpdateDTO(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class BulkStatusDTO(BaseModel):
    order_ids: list[UUID] = Field(min_length=1, max_length=BULK_LIMIT)
    status: OrderStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class ProofUploadDTO(BaseModel):
    """Metadata of an uploaded proof of payment.

    The file itself is stored by the upload service; only its URL and
    metadata reach this API. Size cap and accepted types come from
    ``PAYMENT_PROOF_MAX_BYTES`` and ``PAYMENT_PROOF_MIME_TYPES``.
    """

    file_url: str = Field(max_length=500)
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(gt=0)
    mime_type: str

    @field_validator("file_url")
    @classmethod
    def validate_file_url(cls, v: str) -> str:
        if not URL_RE.match(v):
            raise ValueError("file_url must be an http(s) URL")
        return v

    @field_validator("file_size")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        cap = getattr(settings, "PAYMENT_PROOF_MAX_BYTES", 5 * 1024 * 1024)
        if v > cap:
            raise ValueError(f"File too large (max {cap} bytes)")
        return v

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        v2 = v.strip().lower()
        allowed = getattr(settings, "PAYMENT_PROOF_MIME_TYPES", ("image/jpeg", "image/png", "image/webp"))
        if v2 not in allowed:
            raise ValueError("Unsupported file type")
        return v2


class VerifyPaymentDTO(BaseModel):
    verified: bool
    notes: Optional[str] = Field(default=None, max_length=500)


# ---- Reads ----
class _ReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AddressOut(_ReadModel):
    line1: str
    line2: Optional[str] = None
    postal_code: str
    notes: Optional[str] = None


class SessionLineOut(_ReadModel):
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    total: Decimal
    variant: Optional[str] = None
    notes: Optional[str] = None


class PaymentInfoOut(BaseModel):
    """Merchant details the customer needs to make the manual payment."""

    merchant_name: str
    paynow_number: str = ""
    paynow_qr_code: str = ""
    paynow_payload: str = ""


class SessionReadDTO(_ReadModel):
    session_id: str
    merchant_id: str
    status: str
    items: list[SessionLineOut]
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    payment_reference: str
    delivery_method: Optional[DeliveryMethod] = None
    delivery_address: Optional[AddressOut] = None
    order_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    payment_info: Optional[PaymentInfoOut] = None


class DeliveryFeeOut(BaseModel):
    delivery_fee: Decimal
    estimated_minutes: int


class OrderReceiptOut(_ReadModel):
    order_id: str
    order_number: str
    total: Decimal
    estimated_ready: datetime
    payment_reference: str


class OrderItemOut(_ReadModel):
    product_id: UUID
    product_name: str
    product_price: Decimal
    quantity: int
    total: Decimal
    variant: str = ""
    notes: str = ""


class ProofOut(_ReadModel):
    id: UUID
    file_url: str
    file_name: str
    file_size: int
    mime_type: str
    uploaded_at: datetime


class PaymentReadDTO(_ReadModel):
    id: UUID
    amount: Decimal
    currency: str
    method: str
    status: str
    payment_reference: str
    proof_url: str = ""
    verified_at: Optional[datetime] = None
    verification_notes: str = ""
    proofs: list[ProofOut] = []


class OrderEventOut(_ReadModel):
    event: str
    actor: Optional[str] = None
    data: dict
    created_at: datetime


class OrderSummaryDTO(_ReadModel):
    id: UUID
    order_number: str
    status: str
    payment_status: str
    delivery_method: str
    customer_name: str
    total: Decimal
    created_at: datetime


class OrderDetailDTO(OrderSummaryDTO):
    customer_email: str
    customer_phone: str
    delivery_address: Optional[AddressOut] = None
    delivery_notes: str = ""
    notes: str = ""
    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    tax: Decimal
    payment_reference: str = ""
    metadata: dict = {}
    estimated_ready: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    prepared_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: list[OrderItemOut] = []
    payment: Optional[PaymentReadDTO] = None
    events: list[OrderEventOut] = []


class PendingPaymentOut(_ReadModel):
    id: UUID
    order_id: UUID
    order_number: str
    customer_name: str
    amount: Decimal
    status: str
    payment_reference: str
    proof_count: int
    created_at: datetime
