"""Manual payment review: proof upload, merchant verification and reads.

Payments are manual transfers (PayNow): the customer uploads proof of
payment, the merchant reviews it and either verifies (order confirmed) or
rejects it. Every write path locks the payment row first so the proof cap
and the accept-once rule hold under concurrent requests.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from .domain import NotificationPort, OrderStatus, PaymentStatus, ProofUpload
from .errors import BadRequest, Forbidden, NotFound, PreconditionFailed, Unauthorized
from .models import OrderModel, PaymentModel, PaymentProofModel
from .notifications import notify_on_commit
from .pricing import ZERO, money
from .repository import OrderRepository, as_uuid
from .state_machine import OrderStatusStateMachine, can_transition

logger = logging.getLogger("orders.payments")

UPLOAD_MESSAGE = "Payment proof uploaded successfully. The merchant will verify your payment shortly."
VERIFIED_MESSAGE = "Payment verified successfully. Order confirmed."
REJECTED_MESSAGE = "Payment rejected. Customer has been notified."
DEFAULT_REJECTION_REASON = "Payment could not be verified"


@dataclass(frozen=True)
class ProofReceipt:
    proof_id: str
    upload_number: int
    message: str


@dataclass(frozen=True)
class VerificationResult:
    payment: PaymentModel
    message: str


@dataclass(frozen=True)
class PaymentStats:
    pending: int
    processing: int
    completed: int
    failed: int
    revenue: Decimal


class PaymentVerificationWorkflow:
    """Proof-of-payment upload and merchant verification.

    Args:
        state_machine: Used for the PENDING -> CONFIRMED (and optional
            cancel) transitions so events and timestamps stay uniform.
        orders: Repository for audit events.
        notifier: Optional notification port.
        max_proofs: Per-payment proof cap.
        rejection_cancels_order: When true, a rejection also cancels an
            order that is still cancellable.
        clock: Callable returning the current aware datetime.
    """

    def __init__(
        self,
        state_machine: Optional[OrderStatusStateMachine] = None,
        orders: Optional[OrderRepository] = None,
        notifier: Optional[NotificationPort] = None,
        max_proofs: int = 3,
        rejection_cancels_order: bool = False,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.orders = orders or OrderRepository()
        self.notifier = notifier
        self.state_machine = state_machine or OrderStatusStateMachine(self.orders, notifier, clock)
        self.max_proofs = max_proofs
        self.rejection_cancels_order = rejection_cancels_order
        self.clock = clock

    def upload_proof(self, order_id, upload: ProofUpload, uploaded_by: Optional[str] = None) -> ProofReceipt:
        """Attach a proof of payment to an order's payment.

        The first proof becomes the payment's primary proof and moves the
        payment to PROCESSING. A proof uploaded after a rejection moves a
        FAILED payment back to PROCESSING for another review.

        Raises:
            NotFound: Unknown order or order without a payment.
            BadRequest: Payment already verified, or the cap is reached.
        """
        now = self.clock()
        with transaction.atomic():
            payment = self._lock_payment_for_order(order_id)
            if payment.status == PaymentStatus.COMPLETED.value:
                raise BadRequest("Payment has already been verified", "PAYMENT_ALREADY_VERIFIED")

            count = payment.proofs.count()
            if count >= self.max_proofs:
                raise BadRequest(
                    f"Maximum number of payment proofs ({self.max_proofs}) already uploaded.",
                    "MAX_PAYMENT_PROOFS",
                )

            proof = PaymentProofModel.objects.create(
                payment=payment,
                file_url=upload.file_url,
                file_name=upload.file_name,
                file_size=upload.file_size,
                mime_type=upload.mime_type,
                uploaded_by=uploaded_by,
                uploaded_at=now,
            )

            fields = []
            if count == 0:
                payment.proof_url = upload.file_url
                fields.append("proof_url")
            if count == 0 or payment.status == PaymentStatus.FAILED.value:
                payment.status = PaymentStatus.PROCESSING.value
                fields.append("status")
            if fields:
                payment.save(update_fields=fields + ["updated_at"])
                if "status" in fields:
                    OrderModel.objects.filter(pk=payment.order_id).update(
                        payment_status=PaymentStatus.PROCESSING.value, updated_at=now
                    )

            order = payment.order
            self.orders.record_event(order, "payment_proof_uploaded", uploaded_by, {
                "proof_id": str(proof.id),
                "file_name": upload.file_name,
                "upload_number": count + 1,
            }, now)
            notify_on_commit(self.notifier, "payment.proof_uploaded", {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "merchant_id": str(order.merchant_id),
                "proof_id": str(proof.id),
            })

        logger.info(
            "payment proof uploaded",
            extra={"order_id": str(payment.order_id), "payment_id": str(payment.id), "upload_number": count + 1},
        )
        return ProofReceipt(proof_id=str(proof.id), upload_number=count + 1, message=UPLOAD_MESSAGE)

    def verify(
        self,
        payment_id,
        verified: bool,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        merchant_id=None,
    ) -> VerificationResult:
        """Accept or reject a payment, once.

        Verification confirms a PENDING order through the state machine.
        An order that has already moved past CONFIRMED keeps its status; a
        cancelled or refunded order cannot have its payment verified.

        Raises:
            Unauthorized: Caller is not acting for a merchant.
            NotFound: Unknown payment.
            Forbidden: Payment belongs to another merchant's order.
            BadRequest: Payment already verified.
            PreconditionFailed: Order was cancelled or refunded.
        """
        if not merchant_id:
            raise Unauthorized("Only merchants can verify payments", "MERCHANT_REQUIRED")

        now = self.clock()
        with transaction.atomic():
            payment = self._lock_payment(payment_id)
            order = OrderModel.objects.select_for_update().get(pk=payment.order_id)
            if as_uuid(merchant_id) != order.merchant_id:
                raise Forbidden("You don't have permission to verify this payment", "FORBIDDEN")
            if payment.status == PaymentStatus.COMPLETED.value:
                raise BadRequest("Payment has already been verified", "PAYMENT_ALREADY_VERIFIED")

            if verified:
                self._accept(payment, order, notes, actor_id, now)
            else:
                self._reject(payment, order, notes, actor_id, now)

        logger.info(
            "payment verified" if verified else "payment rejected",
            extra={"payment_id": str(payment.id), "order_id": str(order.id), "actor": actor_id},
        )
        return VerificationResult(payment=payment, message=VERIFIED_MESSAGE if verified else REJECTED_MESSAGE)

    def _accept(self, payment, order, notes, actor_id, now) -> None:
        status = OrderStatus(order.status)
        if status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise PreconditionFailed(
                f"Cannot verify payment for a {status.value.lower()} order", "ORDER_NOT_PAYABLE"
            )

        payment.status = PaymentStatus.COMPLETED.value
        payment.verified_by = actor_id
        payment.verified_at = now
        payment.paid_at = now
        payment.verification_notes = notes or ""
        payment.save(update_fields=["status", "verified_by", "verified_at", "paid_at", "verification_notes", "updated_at"])

        order.payment_status = PaymentStatus.COMPLETED.value
        order.save(update_fields=["payment_status", "updated_at"])
        if status == OrderStatus.PENDING:
            self.state_machine.transition(order, OrderStatus.CONFIRMED, actor=actor_id, source="payment")

        self.orders.record_event(order, "payment_verified", actor_id, {
            "payment_id": str(payment.id),
            "amount": str(payment.amount),
            "notes": notes,
        }, now)
        notify_on_commit(self.notifier, "payment.verified", {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "payment_id": str(payment.id),
            "customer_email": order.customer_email,
        })

    def _reject(self, payment, order, notes, actor_id, now) -> None:
        reason = notes or DEFAULT_REJECTION_REASON
        payment.status = PaymentStatus.FAILED.value
        payment.verified_by = actor_id
        payment.verified_at = now
        payment.verification_notes = reason
        payment.save(update_fields=["status", "verified_by", "verified_at", "verification_notes", "updated_at"])

        order.payment_status = PaymentStatus.FAILED.value
        order.save(update_fields=["payment_status", "updated_at"])

        self.orders.record_event(order, "payment_rejected", actor_id, {
            "payment_id": str(payment.id),
            "reason": reason,
        }, now)
        notify_on_commit(self.notifier, "payment.rejected", {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "payment_id": str(payment.id),
            "reason": reason,
            "customer_email": order.customer_email,
        })

        if self.rejection_cancels_order and can_transition(order.status, order.delivery_method, OrderStatus.CANCELLED):
            self.state_machine.transition(order, OrderStatus.CANCELLED, reason=reason, actor=actor_id, source="payment")

    # ---- reads ----
    def get_by_order(self, order_ref) -> PaymentModel:
        """Payment of an order looked up by order id or order number.

        Raises:
            NotFound: No such order, or the order has no payment.
        """
        order_uuid = as_uuid(order_ref)
        lookup = Q(order_id=order_uuid) if order_uuid else Q(order__order_number=str(order_ref))
        payment = (
            PaymentModel.objects.select_related("order", "order__merchant")
            .prefetch_related("proofs")
            .filter(lookup)
            .first()
        )
        if payment is None:
            raise NotFound("Payment not found", "PAYMENT_NOT_FOUND")
        return payment

    def list_pending(self, merchant_id, limit: int = 50):
        """PENDING/PROCESSING payments of the merchant's orders, newest first."""
        merchant_id = as_uuid(merchant_id)
        if merchant_id is None:
            return []
        return list(
            PaymentModel.objects.select_related("order")
            .filter(
                order__merchant_id=merchant_id,
                status__in=[PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value],
            )
            .annotate(proof_count=Count("proofs"))
            .order_by("-created_at")[:limit]
        )

    def stats(self, merchant_id) -> PaymentStats:
        merchant_id = as_uuid(merchant_id)
        qs = PaymentModel.objects.filter(order__merchant_id=merchant_id)
        agg = qs.aggregate(
            pending=Count("id", filter=Q(status=PaymentStatus.PENDING.value)),
            processing=Count("id", filter=Q(status=PaymentStatus.PROCESSING.value)),
            completed=Count("id", filter=Q(status=PaymentStatus.COMPLETED.value)),
            failed=Count("id", filter=Q(status=PaymentStatus.FAILED.value)),
            revenue=Sum("amount", filter=Q(status=PaymentStatus.COMPLETED.value)),
        )
        return PaymentStats(
            pending=agg["pending"],
            processing=agg["processing"],
            completed=agg["completed"],
            failed=agg["failed"],
            revenue=money(agg["revenue"] or ZERO),
        )

    def _lock_payment_for_order(self, order_id) -> PaymentModel:
        order_uuid = as_uuid(order_id)
        payment = None
        if order_uuid is not None:
            payment = PaymentModel.objects.select_for_update().filter(order_id=order_uuid).first()
        if payment is None:
            raise NotFound("Order not found", "ORDER_NOT_FOUND")
        return payment

    def _lock_payment(self, payment_id) -> PaymentModel:
        payment_uuid = as_uuid(payment_id)
        payment = None
        if payment_uuid is not None:
            payment = PaymentModel.objects.select_for_update().filter(pk=payment_uuid).first()
        if payment is None:
            raise NotFound("Payment not found", "PAYMENT_NOT_FOUND")
        return payment
