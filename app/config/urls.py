"""
URL configuration for the ticket escrow service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface (listings, orders)
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/escrow/                - Escrow endpoints
        checkout/                  - Create an escrowed checkout (POST)
        orders/{ref}/              - Order status by order id, cs_ or pi_ reference
        orders/{ref}/confirm/      - Buyer confirms receipt, funds captured
        orders/{ref}/report-issue/ - Buyer disputes, order put on hold
        orders/{ref}/cancel/       - Buyer cancels before tickets are sent
        orders/{ref}/mark-sent/    - Seller marks tickets as sent
        cron/release/              - Release sweep trigger (shared secret)
        webhooks/stripe/           - Stripe webhook endpoint (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

api_v1_patterns = [
    path("escrow/", include("escrow.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Ticket Escrow Admin"
admin.site.site_title = "Escrow Admin"
admin.site.index_title = "Listings, orders and webhook events"
