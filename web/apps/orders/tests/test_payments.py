"""Tests for proof-of-payment upload and merchant verification."""

from decimal import Decimal

import pytest

from apps.orders.checkout import CheckoutSessionManager
from apps.orders.domain import CartItem, DeliveryMethod, OrderStatus, ProofUpload
from apps.orders.errors import BadRequest, Forbidden, NotFound, PreconditionFailed, Unauthorized
from apps.orders.factory import OrderFactory
from apps.orders.models import OrderModel, PaymentModel
from apps.orders.payments import PaymentVerificationWorkflow
from apps.orders.sessions import DjangoSessionStore
from apps.orders.state_machine import OrderStatusStateMachine


def _proof(n=1):
    return ProofUpload(
        file_url=f"https://files.example.com/proofs/{n}.png",
        file_name=f"transfer-{n}.png",
        file_size=120_000,
        mime_type="image/png",
    )


@pytest.fixture
def place_order(clock, contact, merchant, product):
    store = DjangoSessionStore()
    manager = CheckoutSessionManager(store, clock=clock)
    factory = OrderFactory(store, clock=clock)

    def _place(method=DeliveryMethod.PICKUP):
        session = manager.create(merchant.id, [CartItem(str(product.id), 2)], method)
        receipt = factory.complete(session.session_id, contact)
        return OrderModel.objects.get(pk=receipt.order_id)

    return _place


@pytest.fixture
def workflow(sink, clock):
    return PaymentVerificationWorkflow(notifier=sink, clock=clock)


@pytest.mark.django_db
def test_first_proof_moves_payment_to_processing(place_order, workflow):
    order = place_order()
    receipt = workflow.upload_proof(order.id, _proof(), uploaded_by="cust-1")

    assert receipt.upload_number == 1
    assert receipt.message == "Payment proof uploaded successfully. The merchant will verify your payment shortly."
    payment = PaymentModel.objects.get(order=order)
    assert payment.status == "PROCESSING"
    assert payment.proof_url == "https://files.example.com/proofs/1.png"
    order.refresh_from_db()
    assert order.payment_status == "PROCESSING"
    event = order.events.get(event="payment_proof_uploaded")
    assert event.data["upload_number"] == 1
    assert event.data["proof_id"] == receipt.proof_id


@pytest.mark.django_db
def test_later_proofs_keep_primary_reference(place_order, workflow):
    order = place_order()
    workflow.upload_proof(order.id, _proof(1))
    workflow.upload_proof(order.id, _proof(2))
    payment = PaymentModel.objects.get(order=order)
    assert payment.proof_url.endswith("/1.png")
    assert payment.proofs.count() == 2


@pytest.mark.django_db
def test_fourth_proof_rejected(place_order, workflow):
    order = place_order()
    for n in range(1, 4):
        workflow.upload_proof(order.id, _proof(n))
    with pytest.raises(BadRequest) as e:
        workflow.upload_proof(order.id, _proof(4))
    assert e.value.message == "Maximum number of payment proofs (3) already uploaded."
    assert PaymentModel.objects.get(order=order).proofs.count() == 3


@pytest.mark.django_db
def test_upload_to_unknown_order(workflow):
    with pytest.raises(NotFound):
        workflow.upload_proof("0f8fad5b-d9cb-469f-a165-70867728950e", _proof())
    with pytest.raises(NotFound):
        workflow.upload_proof("ORD-000001", _proof())


@pytest.mark.django_db
def test_verify_confirms_pending_order(place_order, workflow, merchant, clock, sink, django_capture_on_commit_callbacks):
    order = place_order()
    workflow.upload_proof(order.id, _proof())
    payment = order.payment

    with django_capture_on_commit_callbacks(execute=True):
        result = workflow.verify(payment.id, True, notes="matched bank app", actor_id="staff-1", merchant_id=merchant.id)

    assert result.message == "Payment verified successfully. Order confirmed."
    payment.refresh_from_db()
    assert payment.status == "COMPLETED"
    assert payment.verified_by == "staff-1"
    assert payment.verified_at == clock.now
    order.refresh_from_db()
    assert order.status == "CONFIRMED"
    assert order.payment_status == "COMPLETED"
    assert order.confirmed_at == clock.now
    assert set(order.events.values_list("event", flat=True)) >= {"payment_verified", "status_changed"}
    assert "payment.verified" in sink.names()
    assert "order.status_changed" in sink.names()


@pytest.mark.django_db
def test_verify_is_accept_once(place_order, workflow, merchant):
    order = place_order()
    workflow.verify(order.payment.id, True, merchant_id=str(merchant.id))
    with pytest.raises(BadRequest) as e:
        workflow.verify(order.payment.id, True, merchant_id=str(merchant.id))
    assert e.value.message == "Payment has already been verified"
    with pytest.raises(BadRequest):
        workflow.upload_proof(order.id, _proof())


@pytest.mark.django_db
def test_verify_keeps_status_of_order_already_in_progress(place_order, workflow, merchant):
    order = place_order()
    sm = OrderStatusStateMachine()
    sm.transition(order, OrderStatus.CONFIRMED)
    sm.transition(order, OrderStatus.PREPARING)
    workflow.verify(order.payment.id, True, merchant_id=merchant.id)
    order.refresh_from_db()
    assert order.status == "PREPARING"
    assert order.payment_status == "COMPLETED"


@pytest.mark.django_db
def test_verify_refused_for_cancelled_order(place_order, workflow, merchant):
    order = place_order()
    OrderStatusStateMachine().transition(order, OrderStatus.CANCELLED, reason="customer left")
    with pytest.raises(PreconditionFailed):
        workflow.verify(order.payment.id, True, merchant_id=merchant.id)
    assert PaymentModel.objects.get(order=order).status == "PENDING"


@pytest.mark.django_db
def test_reject_leaves_order_status(place_order, workflow, merchant, sink, django_capture_on_commit_callbacks):
    order = place_order()
    workflow.upload_proof(order.id, _proof())
    with django_capture_on_commit_callbacks(execute=True):
        result = workflow.verify(order.payment.id, False, actor_id="staff-1", merchant_id=merchant.id)

    assert result.message == "Payment rejected. Customer has been notified."
    order.refresh_from_db()
    assert order.status == "PENDING"
    assert order.payment_status == "FAILED"
    payment = PaymentModel.objects.get(order=order)
    assert payment.status == "FAILED"
    assert payment.verification_notes == "Payment could not be verified"
    assert order.events.get(event="payment_rejected").data["reason"] == "Payment could not be verified"
    assert "payment.rejected" in sink.names()


@pytest.mark.django_db
def test_reject_can_cancel_order_when_configured(place_order, merchant, sink):
    order = place_order()
    workflow = PaymentVerificationWorkflow(notifier=sink, rejection_cancels_order=True)
    workflow.verify(order.payment.id, False, notes="amount mismatch", merchant_id=merchant.id)
    order.refresh_from_db()
    assert order.status == "CANCELLED"
    assert order.metadata["cancellation_reason"] == "amount mismatch"


@pytest.mark.django_db
def test_resubmission_after_rejection_returns_to_processing(place_order, workflow, merchant):
    order = place_order()
    workflow.upload_proof(order.id, _proof(1))
    workflow.verify(order.payment.id, False, merchant_id=merchant.id)
    workflow.upload_proof(order.id, _proof(2))

    payment = PaymentModel.objects.get(order=order)
    assert payment.status == "PROCESSING"
    assert payment.proof_url.endswith("/1.png")
    order.refresh_from_db()
    assert order.payment_status == "PROCESSING"


@pytest.mark.django_db
def test_verify_requires_owning_merchant(place_order, workflow, make_merchant):
    order = place_order()
    with pytest.raises(Unauthorized):
        workflow.verify(order.payment.id, True, actor_id="cust-1", merchant_id=None)
    other = make_merchant(business_name="Other")
    with pytest.raises(Forbidden) as e:
        workflow.verify(order.payment.id, True, merchant_id=other.id)
    assert e.value.message == "You don't have permission to verify this payment"
    with pytest.raises(NotFound):
        workflow.verify("0f8fad5b-d9cb-469f-a165-70867728950e", True, merchant_id=other.id)


@pytest.mark.django_db
def test_lookup_by_order_id_or_number(place_order, workflow):
    order = place_order()
    assert workflow.get_by_order(order.id).pk == order.payment.pk
    assert workflow.get_by_order(str(order.id)).pk == order.payment.pk
    assert workflow.get_by_order(order.order_number).pk == order.payment.pk
    with pytest.raises(NotFound):
        workflow.get_by_order("ORD-999999")


@pytest.mark.django_db
def test_pending_list_and_stats(place_order, workflow, merchant, make_merchant):
    first = place_order()
    second = place_order()
    third = place_order()
    workflow.upload_proof(second.id, _proof())
    workflow.verify(third.payment.id, True, merchant_id=merchant.id)

    pending = workflow.list_pending(merchant.id)
    assert {p.order_id for p in pending} == {first.id, second.id}
    assert {p.order_id: p.proof_count for p in pending}[second.id] == 1
    assert workflow.list_pending(make_merchant(business_name="Other").id) == []

    stats = workflow.stats(merchant.id)
    assert (stats.pending, stats.processing, stats.completed, stats.failed) == (1, 1, 1, 0)
    assert stats.revenue == Decimal("10.00")
