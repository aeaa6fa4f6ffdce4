"""
URL configuration for the escrow app.

All routes are prefixed with /api/v1/escrow/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("escrow/", include("escrow.urls")),
    ]
"""

from django.urls import path

from escrow.views import (
    CancelOrderView,
    CheckoutView,
    ConfirmReceiptView,
    MarkSentView,
    OperatorCaptureView,
    OrderStatusView,
    ReleaseCronView,
    ReportIssueView,
)
from escrow.webhooks.views import stripe_webhook

app_name = "escrow"

urlpatterns = [
    # Checkout
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    # Orders
    path("orders/<str:reference>/", OrderStatusView.as_view(), name="order-status"),
    path("orders/<str:reference>/confirm/", ConfirmReceiptView.as_view(), name="order-confirm"),
    path(
        "orders/<str:reference>/report-issue/",
        ReportIssueView.as_view(),
        name="order-report-issue",
    ),
    path("orders/<str:reference>/cancel/", CancelOrderView.as_view(), name="order-cancel"),
    path("orders/<str:reference>/mark-sent/", MarkSentView.as_view(), name="order-mark-sent"),
    # Operator
    path(
        "orders/<str:reference>/capture/",
        OperatorCaptureView.as_view(),
        name="order-operator-capture",
    ),
    # Scheduler
    path("cron/release/", ReleaseCronView.as_view(), name="cron-release"),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
