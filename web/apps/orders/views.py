"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via
Pydantic), map them to domain values, delegate to a service obtained from
``providers`` and shape the response with a read schema.

Errors: ``DomainError`` subclasses become ``{"detail": code, "message":
message}`` with the error's HTTP status; Pydantic validation failures
become 400 with the field errors. Anything else propagates to Django.
"""

import json
import logging

from django.core.paginator import Paginator
from django.http import HttpResponse
from django.utils import timezone
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from gateway.authentication import IsMerchant, caller_of

from .domain import CartItem, CheckoutSession, ContactInfo, DeliveryAddress, ProofUpload
from .errors import DomainError, NotFound
from .export import write_orders_csv
from .models import OrderModel
from .providers import (
    get_checkout_manager,
    get_order_factory,
    get_payment_workflow,
    get_state_machine,
)
from .repository import OrderRepository
from .schemas import (
    BulkStatusDTO,
    CompleteCheckoutDTO,
    CreateSessionDTO,
    DeliveryFeeOut,
    DeliveryFeeQuery,
    EXPORT_LIMIT,
    OrderDetailDTO,
    OrderEventOut,
    OrderExportQuery,
    OrderItemOut,
    OrderReceiptOut,
    OrderSummaryDTO,
    PaymentInfoOut,
    PaymentReadDTO,
    PendingPaymentOut,
    ProofOut,
    ProofUploadDTO,
    SelectDeliveryDTO,
    SessionReadDTO,
    StatusUpdateDTO,
    VerifyPaymentDTO,
)

logger = logging.getLogger("orders.api")

MAX_PAGE_SIZE = 100


class OrdersAPIView(APIView):
    """Base view translating domain and validation errors to responses."""

    def handle_exception(self, exc):
        if isinstance(exc, DomainError):
            return Response({"detail": exc.code, "message": exc.message}, status=exc.status_code)
        if isinstance(exc, ValidationError):
            return Response(
                {"detail": "VALIDATION_ERROR", "errors": json.loads(exc.json(include_url=False))},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return super().handle_exception(exc)


def _address(dto):
    if dto is None:
        return None
    return DeliveryAddress(line1=dto.line1, postal_code=dto.postal_code, line2=dto.line2, notes=dto.notes)


def _session_body(session: CheckoutSession, payment_info=None) -> dict:
    addr = session.delivery_address
    dto = SessionReadDTO(
        session_id=session.session_id,
        merchant_id=session.merchant_id,
        status=session.status.value,
        items=[
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "unit_price": line.unit_price,
                "quantity": line.quantity,
                "total": line.total,
                "variant": line.variant,
                "notes": line.notes,
            }
            for line in session.items
        ],
        subtotal=session.subtotal,
        delivery_fee=session.delivery_fee,
        total=session.total,
        payment_reference=session.payment_reference,
        delivery_method=session.delivery_method,
        delivery_address=(
            {"line1": addr.line1, "line2": addr.line2, "postal_code": addr.postal_code, "notes": addr.notes}
            if addr else None
        ),
        order_id=session.order_id,
        created_at=session.created_at,
        expires_at=session.expires_at,
        payment_info=payment_info,
    )
    return dto.model_dump(mode="json")


def _session_payment_info(manager, session: CheckoutSession):
    return manager.payment_info(
        session.merchant_id,
        amount=session.total,
        reference=session.payment_reference,
        issued_at=session.created_at,
    )


def _payment_body(payment) -> dict:
    proofs = [ProofOut.model_validate(p) for p in payment.proofs.all()]
    return PaymentReadDTO.model_validate({
        "id": payment.id,
        "amount": payment.amount,
        "currency": payment.currency,
        "method": payment.method,
        "status": payment.status,
        "payment_reference": payment.payment_reference,
        "proof_url": payment.proof_url,
        "verified_at": payment.verified_at,
        "verification_notes": payment.verification_notes,
        "proofs": proofs,
    }).model_dump(mode="json")


def _order_detail_body(order: OrderModel) -> dict:
    summary = OrderSummaryDTO.model_validate(order).model_dump()
    payment = getattr(order, "payment", None)
    dto = OrderDetailDTO.model_validate({
        **summary,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "delivery_address": order.delivery_address,
        "delivery_notes": order.delivery_notes,
        "notes": order.notes,
        "subtotal": order.subtotal,
        "delivery_fee": order.delivery_fee,
        "discount": order.discount,
        "tax": order.tax,
        "payment_reference": order.payment_reference,
        "metadata": order.metadata or {},
        "estimated_ready": order.estimated_ready,
        "confirmed_at": order.confirmed_at,
        "prepared_at": order.prepared_at,
        "ready_at": order.ready_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
        "completed_at": order.completed_at,
        "items": [OrderItemOut.model_validate(i) for i in order.items.all()],
        "events": [OrderEventOut.model_validate(e) for e in order.events.all()],
    })
    body = dto.model_dump(mode="json")
    body["payment"] = _payment_body(payment) if payment else None
    return body


# ---------------- Checkout ---------------- #

class CheckoutSessionsView(OrdersAPIView):
    """Create a checkout session from a cart."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout_create"

    def post(self, request):
        """Validate the cart and open a price-locked session.

        Returns:
            Response: 201 with the session snapshot and the merchant's
                payment display info.
        """
        dto = CreateSessionDTO.model_validate(request.data)
        caller = caller_of(request)
        manager = get_checkout_manager()
        session = manager.create(
            dto.merchant_id,
            [CartItem(i.product_id, i.quantity, i.variant, i.notes) for i in dto.items],
            delivery_method=dto.delivery_method,
            customer_id=caller.user_id if caller else None,
        )
        body = _session_body(session, _session_payment_info(manager, session))
        return Response(body, status=status.HTTP_201_CREATED)


class CheckoutSessionDetailView(OrdersAPIView):
    def get(self, request, sid: str):
        manager = get_checkout_manager()
        session = manager.get(sid)
        return Response(_session_body(session, _session_payment_info(manager, session)))


class CheckoutDeliveryView(OrdersAPIView):
    def post(self, request, sid: str):
        dto = SelectDeliveryDTO.model_validate(request.data)
        manager = get_checkout_manager()
        session = manager.select_delivery(sid, dto.delivery_method, _address(dto.delivery_address))
        return Response(_session_body(session, _session_payment_info(manager, session)))


class CheckoutCompleteView(OrdersAPIView):
    """Turn a session into an order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout_complete"

    def post(self, request, sid: str):
        """Complete the session.

        Returns:
            Response: 201 with order id, number, total, estimated ready time
                and payment reference. A replay answers 409.
        """
        dto = CompleteCheckoutDTO.model_validate(request.data)
        receipt = get_order_factory().complete(
            sid,
            ContactInfo(name=dto.contact.name, email=dto.contact.email, phone=dto.contact.phone),
            delivery_address=_address(dto.delivery_address),
            notes=dto.notes,
            delivery_notes=dto.delivery_notes,
        )
        body = OrderReceiptOut.model_validate(receipt).model_dump(mode="json")
        return Response(body, status=status.HTTP_201_CREATED)


class DeliveryFeeView(OrdersAPIView):
    def get(self, request):
        query = DeliveryFeeQuery.model_validate({
            "merchant_id": request.GET.get("merchant_id", ""),
            "postal_code": request.GET.get("postal_code", ""),
        })
        quote = get_checkout_manager().quote_delivery_fee(query.merchant_id, query.postal_code)
        body = DeliveryFeeOut(delivery_fee=quote.fee, estimated_minutes=quote.estimated_minutes)
        return Response(body.model_dump(mode="json"))


# ---------------- Orders (merchant) ---------------- #

class OrdersCollectionView(OrdersAPIView):
    """Paginated list of the calling merchant's orders."""

    permission_classes = [IsMerchant]

    def get(self, request):
        caller = caller_of(request)
        qs = OrderRepository().list_for_merchant(
            caller.merchant_id,
            status=request.GET.get("status") or None,
            search=request.GET.get("search") or None,
        )
        try:
            page = int(request.GET.get("page", 1))
            page_size = min(max(int(request.GET.get("page_size", 20)), 1), MAX_PAGE_SIZE)
        except ValueError:
            return Response({"detail": "INVALID_PAGINATION"}, status=status.HTTP_400_BAD_REQUEST)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        results = [OrderSummaryDTO.model_validate(o).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )


def _multi(request, name: str) -> list:
    """Values of a repeated or comma-separated query parameter."""
    values = []
    for raw in request.GET.getlist(name):
        values.extend(v.strip() for v in raw.split(",") if v.strip())
    return values


class OrdersExportView(OrdersAPIView):
    """CSV download of the calling merchant's orders.

    Query params: ``ids`` (explicit orders), or ``status``, ``search``,
    ``date_from`` and ``date_to`` (inclusive ISO dates). At most
    ``EXPORT_LIMIT`` orders, newest first.
    """

    permission_classes = [IsMerchant]

    def get(self, request):
        query = OrderExportQuery.model_validate({
            "order_ids": _multi(request, "ids"),
            "status": _multi(request, "status"),
            "search": request.GET.get("search") or None,
            "date_from": request.GET.get("date_from") or None,
            "date_to": request.GET.get("date_to") or None,
        })
        caller = caller_of(request)
        orders = OrderRepository().export_for_merchant(
            caller.merchant_id,
            order_ids=query.order_ids,
            statuses=[s.value for s in query.status],
            search=query.search,
            date_from=query.date_from,
            date_to=query.date_to,
            limit=EXPORT_LIMIT,
        )
        if not orders:
            raise NotFound("No orders found to export", "NO_ORDERS_TO_EXPORT")

        response = HttpResponse(content_type="text/csv; charset=utf-8")
        filename = f"orders-{timezone.localdate():%Y%m%d}.csv"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        count = write_orders_csv(orders, response)
        logger.info("orders exported", extra={"merchant_id": caller.merchant_id, "count": count})
        return response


class OrderDetailView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def get(self, request, oid):
        order = OrderRepository().get_for_merchant(oid, caller_of(request).merchant_id)
        return Response(_order_detail_body(order))


class OrderStatusView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def post(self, request, oid):
        dto = StatusUpdateDTO.model_validate(request.data)
        caller = caller_of(request)
        order = get_state_machine().update_status(
            oid, caller.merchant_id, dto.status, reason=dto.reason, actor=caller.user_id
        )
        return Response(_order_detail_body(order))


class BulkStatusView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def post(self, request):
        dto = BulkStatusDTO.model_validate(request.data)
        caller = caller_of(request)
        result = get_state_machine().bulk_update_status(
            dto.order_ids, caller.merchant_id, dto.status, reason=dto.reason, actor=caller.user_id
        )
        return Response({
            "success_count": result.success_count,
            "skipped_count": result.skipped_count,
            "total_count": result.total_count,
            "order_ids": result.order_ids,
        })


# ---------------- Payments ---------------- #

class OrderPaymentView(OrdersAPIView):
    """Public payment lookup by order id or order number."""

    def get(self, request, order_ref: str):
        payment = get_payment_workflow().get_by_order(order_ref)
        order = payment.order
        body = _payment_body(payment)
        body["order"] = {
            "id": str(order.id),
            "order_number": order.order_number,
            "status": order.status,
            "total": str(order.total),
        }
        body["payment_info"] = PaymentInfoOut.model_validate(
            get_checkout_manager().payment_info(
                order.merchant_id,
                amount=payment.amount,
                reference=payment.payment_reference,
                issued_at=order.created_at,
            )
        ).model_dump()
        return Response(body)


class PaymentProofsView(OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payment_proofs"

    def post(self, request, oid):
        dto = ProofUploadDTO.model_validate(request.data)
        caller = caller_of(request)
        receipt = get_payment_workflow().upload_proof(
            oid,
            ProofUpload(file_url=dto.file_url, file_name=dto.file_name, file_size=dto.file_size, mime_type=dto.mime_type),
            uploaded_by=caller.user_id if caller else None,
        )
        return Response(
            {"proof_id": receipt.proof_id, "upload_number": receipt.upload_number, "message": receipt.message},
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def post(self, request, pid):
        dto = VerifyPaymentDTO.model_validate(request.data)
        caller = caller_of(request)
        result = get_payment_workflow().verify(
            pid, dto.verified, notes=dto.notes, actor_id=caller.user_id, merchant_id=caller.merchant_id
        )
        return Response({"payment": _payment_body(result.payment), "message": result.message})


class PendingPaymentsView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def get(self, request):
        try:
            limit = min(max(int(request.GET.get("limit", 50)), 1), MAX_PAGE_SIZE)
        except ValueError:
            return Response({"detail": "INVALID_LIMIT"}, status=status.HTTP_400_BAD_REQUEST)
        payments = get_payment_workflow().list_pending(caller_of(request).merchant_id, limit=limit)
        results = [
            PendingPaymentOut(
                id=p.id,
                order_id=p.order_id,
                order_number=p.order.order_number,
                customer_name=p.order.customer_name,
                amount=p.amount,
                status=p.status,
                payment_reference=p.payment_reference,
                proof_count=p.proof_count,
                created_at=p.created_at,
            ).model_dump(mode="json")
            for p in payments
        ]
        return Response({"count": len(results), "results": results})


class PaymentStatsView(OrdersAPIView):
    permission_classes = [IsMerchant]

    def get(self, request):
        stats = get_payment_workflow().stats(caller_of(request).merchant_id)
        return Response({
            "pending": stats.pending,
            "processing": stats.processing,
            "completed": stats.completed,
            "failed": stats.failed,
            "revenue": str(stats.revenue),
        })
