from django.urls import path

from .views import (
    BulkStatusView,
    CheckoutCompleteView,
    CheckoutDeliveryView,
    CheckoutSessionDetailView,
    CheckoutSessionsView,
    DeliveryFeeView,
    OrderDetailView,
    OrdersExportView,
    OrderPaymentView,
    OrdersCollectionView,
    OrderStatusView,
    PaymentProofsView,
    PaymentStatsView,
    PendingPaymentsView,
    VerifyPaymentView,
)

app_name = "orders"

urlpatterns = [
    # checkout (public)
    path("checkout/sessions/", CheckoutSessionsView.as_view(), name="checkout-sessions"),
    path("checkout/sessions/<str:sid>/", CheckoutSessionDetailView.as_view(), name="checkout-session-detail"),
    path("checkout/sessions/<str:sid>/delivery/", CheckoutDeliveryView.as_view(), name="checkout-delivery"),
    path("checkout/sessions/<str:sid>/complete/", CheckoutCompleteView.as_view(), name="checkout-complete"),
    path("checkout/delivery-fee/", DeliveryFeeView.as_view(), name="checkout-delivery-fee"),
    # orders (merchant)
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),
    path("orders/bulk-status/", BulkStatusView.as_view(), name="orders-bulk-status"),
    path("orders/export/", OrdersExportView.as_view(), name="orders-export"),
    path("orders/<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),
    path("orders/<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    # payments
    path("orders/<uuid:oid>/payment/proofs/", PaymentProofsView.as_view(), name="payment-proofs"),
    path("orders/<str:order_ref>/payment/", OrderPaymentView.as_view(), name="order-payment"),
    path("payments/pending/", PendingPaymentsView.as_view(), name="payments-pending"),
    path("payments/stats/", PaymentStatsView.as_view(), name="payments-stats"),
    path("payments/<uuid:pid>/verify/", VerifyPaymentView.as_view(), name="payments-verify"),
]
