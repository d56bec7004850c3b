"""Service provider helpers wiring the orders services with their ports.

Each ``get_*`` function returns a service configured from Django
settings. The session store is the durable table by default; the
in-memory map is a process-wide singleton so every request of a single
process sees the same sessions. The notification sink is the HTTP client
when ``settings.USE_HTTP_ADAPTERS`` is truthy, the logging stub otherwise.
"""

from datetime import timedelta

from django.conf import settings

from .adapters import InMemorySessionStore, LoggingNotificationSink
from .checkout import CheckoutSessionManager
from .domain import NotificationPort, SessionStore
from .factory import OrderFactory
from .http_adapters import HttpNotificationSink
from .payments import PaymentVerificationWorkflow
from .pricing import DeliveryFeeCalculator, PricingEngine, parse_surcharge_tiers
from .sessions import DjangoSessionStore
from .state_machine import OrderStatusStateMachine

_memory_store = InMemorySessionStore()


def get_session_store() -> SessionStore:
    backend = getattr(settings, "CHECKOUT_SESSION_BACKEND", "db")
    if backend == "memory":
        return _memory_store
    if backend == "db":
        return DjangoSessionStore()
    raise ValueError(f"Unknown checkout session backend: {backend}")


def get_notification_sink() -> NotificationPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpNotificationSink()
    return LoggingNotificationSink()


def get_checkout_manager() -> CheckoutSessionManager:
    return CheckoutSessionManager(
        sessions=get_session_store(),
        pricing=PricingEngine(getattr(settings, "MINIMUM_ORDER_BASE", "subtotal")),
        fee_calculator=DeliveryFeeCalculator(
            tiers=parse_surcharge_tiers(getattr(settings, "DELIVERY_SURCHARGE_TIERS", "10:3,5:2,2:1")),
            base_minutes=getattr(settings, "DELIVERY_BASE_MINUTES", 30),
            minutes_per_zone=getattr(settings, "DELIVERY_MINUTES_PER_ZONE", 2),
        ),
        ttl=timedelta(minutes=getattr(settings, "CHECKOUT_SESSION_TTL_MINUTES", 30)),
        paynow_valid_days=getattr(settings, "PAYNOW_QR_VALID_DAYS", 7),
    )


def get_order_factory() -> OrderFactory:
    return OrderFactory(
        sessions=get_session_store(),
        notifier=get_notification_sink(),
        currency=getattr(settings, "CURRENCY", "SGD"),
    )


def get_state_machine() -> OrderStatusStateMachine:
    return OrderStatusStateMachine(notifier=get_notification_sink())


def get_payment_workflow() -> PaymentVerificationWorkflow:
    notifier = get_notification_sink()
    return PaymentVerificationWorkflow(
        state_machine=OrderStatusStateMachine(notifier=notifier),
        notifier=notifier,
        max_proofs=getattr(settings, "MAX_PAYMENT_PROOFS", 3),
        rejection_cancels_order=getattr(settings, "PAYMENT_REJECTION_CANCELS_ORDER", False),
    )
