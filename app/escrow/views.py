"""
DRF views for the escrow API.

Endpoints:
    POST /api/v1/escrow/checkout/                  - Start an escrowed checkout
    GET  /api/v1/escrow/orders/{ref}/              - Order status (syncs pending orders)
    POST /api/v1/escrow/orders/{ref}/confirm/      - Buyer confirms receipt
    POST /api/v1/escrow/orders/{ref}/report-issue/ - Buyer disputes the order
    POST /api/v1/escrow/orders/{ref}/cancel/       - Buyer cancels before tickets are sent
    POST /api/v1/escrow/orders/{ref}/mark-sent/    - Seller marks tickets as sent
    POST /api/v1/escrow/orders/{ref}/capture/      - Operator capture, full or partial (cron secret)
    GET|POST /api/v1/escrow/cron/release/          - Release sweep (cron secret)

{ref} is an order UUID, Checkout Session ID (cs_...) or PaymentIntent ID (pi_...).

Error responses share one body, {"error", "error_code", "details"?}:
    400 validation, 404 not found, 409 state precondition,
    502 Stripe error, 503 retryable Stripe error ("retryable": true),
    500 configuration error
"""

from __future__ import annotations

import logging

from django.conf import settings
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import (
    BaseApplicationError,
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from core.services import ServiceResult
from escrow.exceptions import StripeError
from escrow.permissions import CronSecretPermission
from escrow.serializers import (
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    ErrorResponseSerializer,
    OperatorCaptureRequestSerializer,
    OrderStatusSerializer,
    ReportIssueRequestSerializer,
    SweepReportSerializer,
    TransitionResponseSerializer,
)
from escrow.services import EscrowService, TransitionResult
from escrow.workers import ReleaseScheduler

logger = logging.getLogger(__name__)


# Failure codes returned by EscrowService that are not state conflicts
VALIDATION_ERROR_CODES = {
    "VALIDATION_ERROR",
    "ESCROW_VALIDATION_ERROR",
    "INVALID_QUANTITY",
    "PRICE_CAP_EXCEEDED",
    "FACE_VALUE_REQUIRED",
    "FEES_EXCEED_TOTAL",
    "INVALID_PRICE",
    "INVALID_CAPTURE_AMOUNT",
}
NOT_FOUND_ERROR_CODES = {"NOT_FOUND", "ORDER_NOT_FOUND", "LISTING_NOT_FOUND"}

REFERENCE_PARAMETER = OpenApiParameter(
    name="reference",
    type=OpenApiTypes.STR,
    location=OpenApiParameter.PATH,
    description="Order UUID, Checkout Session ID (cs_...) or PaymentIntent ID (pi_...)",
)

ERROR_RESPONSES = {
    404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
    409: OpenApiResponse(
        response=ErrorResponseSerializer,
        description="Order is not in a state that allows this action",
    ),
    502: OpenApiResponse(response=ErrorResponseSerializer, description="Stripe rejected the request"),
    503: OpenApiResponse(
        response=ErrorResponseSerializer,
        description="Stripe unavailable or timed out; safe to retry",
    ),
}


def failure_status(result: ServiceResult) -> int:
    """HTTP status for a failed ServiceResult, chosen from its error code."""
    if result.error_code in VALIDATION_ERROR_CODES:
        return status.HTTP_400_BAD_REQUEST
    if result.error_code in NOT_FOUND_ERROR_CODES:
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_409_CONFLICT


def transition_payload(transition: TransitionResult) -> dict:
    order = transition.order
    return {
        "order_id": str(order.id),
        "status": order.status,
        "already_captured": transition.already_captured,
        "already_canceled": transition.already_canceled,
        "already_on_hold": transition.already_on_hold,
        "already_sent": transition.already_sent,
        "warnings": list(transition.warnings),
        "version": order.version,
    }


class EscrowAPIView(APIView):
    """
    Base view translating escrow exceptions into JSON error responses.

    Services return failures for expected outcomes; what reaches
    handle_exception here is a Stripe error or a misconfiguration.
    """

    def handle_exception(self, exc):
        if not isinstance(exc, BaseApplicationError):
            return super().handle_exception(exc)

        body = exc.to_dict()
        if isinstance(exc, StripeError):
            body["retryable"] = exc.is_retryable
            response_status = (
                status.HTTP_503_SERVICE_UNAVAILABLE
                if exc.is_retryable
                else status.HTTP_502_BAD_GATEWAY
            )
            logger.warning(
                f"Stripe error in {self.__class__.__name__}: {exc.message}",
                extra={"error_code": exc.error_code, "is_retryable": exc.is_retryable},
            )
        elif isinstance(exc, ConfigurationError):
            response_status = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error(
                f"Escrow misconfigured: {exc.message}",
                extra={"error_code": exc.error_code},
            )
        elif isinstance(exc, ValidationError):
            response_status = status.HTTP_400_BAD_REQUEST
        elif isinstance(exc, NotFoundError):
            response_status = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, ConflictError):
            response_status = status.HTTP_409_CONFLICT
        elif isinstance(exc, ExternalServiceError):
            response_status = status.HTTP_502_BAD_GATEWAY
        else:
            response_status = status.HTTP_500_INTERNAL_SERVER_ERROR

        return Response(body, status=response_status)

    @staticmethod
    def failure_response(result: ServiceResult) -> Response:
        return Response(result.to_response(), status=failure_status(result))


class CheckoutView(EscrowAPIView):
    """
    Start an escrowed checkout.

    POST /api/v1/escrow/checkout/

    Request body:
        {"listing_id": "lst_42", "quantity": 2, "buyer_email": "a@example.com"}

    Response:
        201 Created: {order_id, session_id, checkout_url, quantity, fees}
        400 Bad Request: Invalid quantity, price above cap, fees exceed total
        404 Not Found: Unknown listing
    """

    @extend_schema(
        operation_id="create_escrow_checkout",
        summary="Create escrowed checkout",
        description=(
            "Freezes the fee breakdown, creates a pending order and opens a "
            "Stripe Checkout Session with manual capture. The buyer's card is "
            "only authorized; funds are captured on confirmation or auto-release."
        ),
        request=CheckoutRequestSerializer,
        responses={
            201: CheckoutResponseSerializer,
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Validation error"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Listing not found"),
            502: ERROR_RESPONSES[502],
            503: ERROR_RESPONSES[503],
        },
        tags=["Escrow - Checkout"],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        base_url = settings.APP_BASE_URL or request.headers.get("Origin", "")
        result = EscrowService.authorize(
            listing_id=serializer.validated_data["listing_id"],
            quantity=serializer.validated_data["quantity"],
            buyer_email=serializer.validated_data.get("buyer_email") or None,
            base_url=base_url,
        )
        if not result.success:
            return self.failure_response(result)

        checkout = result.data
        output = CheckoutResponseSerializer(
            {
                "order_id": checkout.order.id,
                "session_id": checkout.session_id,
                "checkout_url": checkout.checkout_url,
                "quantity": checkout.order.quantity,
                "fees": checkout.fees.to_dict(),
            }
        )
        return Response(output.data, status=status.HTTP_201_CREATED)


class OrderStatusView(EscrowAPIView):
    """
    Read an order's escrow status.

    GET /api/v1/escrow/orders/{ref}/

    A pending order is synced with its Checkout Session first, so a buyer
    returning from Stripe sees the authorization before the webhook lands.
    """

    @extend_schema(
        operation_id="get_escrow_order",
        summary="Get order status",
        parameters=[REFERENCE_PARAMETER],
        responses={200: OrderStatusSerializer, 404: ERROR_RESPONSES[404]},
        tags=["Escrow - Orders"],
    )
    def get(self, request, reference: str):
        result = EscrowService.get_status(reference, sync=True)
        if not result.success:
            return self.failure_response(result)
        return Response(OrderStatusSerializer(result.data.to_dict()).data)


class ConfirmReceiptView(EscrowAPIView):
    """
    Buyer confirms the tickets arrived; funds are captured and the seller paid.

    POST /api/v1/escrow/orders/{ref}/confirm/

    Confirming an already captured order returns 200 with already_captured.
    """

    @extend_schema(
        operation_id="confirm_escrow_receipt",
        summary="Confirm receipt",
        parameters=[REFERENCE_PARAMETER],
        request=None,
        responses={200: TransitionResponseSerializer, **ERROR_RESPONSES},
        tags=["Escrow - Buyer"],
    )
    def post(self, request, reference: str):
        result = EscrowService.confirm_receipt(reference)
        if not result.success:
            return self.failure_response(result)
        return Response(TransitionResponseSerializer(transition_payload(result.data)).data)


class ReportIssueView(EscrowAPIView):
    """
    Buyer reports a problem; the order goes on hold.

    POST /api/v1/escrow/orders/{ref}/report-issue/

    Request body:
        {"reason": "Tickets never arrived"}  # optional
    """

    @extend_schema(
        operation_id="report_escrow_issue",
        summary="Report an issue",
        description=(
            "Places the order on hold. Held orders cannot be confirmed or "
            "released and are canceled when the confirmation window closes."
        ),
        parameters=[REFERENCE_PARAMETER],
        request=ReportIssueRequestSerializer,
        responses={200: TransitionResponseSerializer, **ERROR_RESPONSES},
        tags=["Escrow - Buyer"],
    )
    def post(self, request, reference: str):
        serializer = ReportIssueRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EscrowService.report_issue(reference, reason=serializer.validated_data["reason"])
        if not result.success:
            return self.failure_response(result)
        return Response(TransitionResponseSerializer(transition_payload(result.data)).data)


class CancelOrderView(EscrowAPIView):
    """
    Buyer cancels before the seller sends the tickets.

    POST /api/v1/escrow/orders/{ref}/cancel/
    """

    @extend_schema(
        operation_id="cancel_escrow_order",
        summary="Cancel order",
        parameters=[REFERENCE_PARAMETER],
        request=None,
        responses={200: TransitionResponseSerializer, **ERROR_RESPONSES},
        tags=["Escrow - Buyer"],
    )
    def post(self, request, reference: str):
        result = EscrowService.buyer_cancel(reference)
        if not result.success:
            return self.failure_response(result)
        return Response(TransitionResponseSerializer(transition_payload(result.data)).data)


class MarkSentView(EscrowAPIView):
    """
    Seller marks the tickets as sent.

    POST /api/v1/escrow/orders/{ref}/mark-sent/
    """

    @extend_schema(
        operation_id="mark_escrow_order_sent",
        summary="Mark tickets as sent",
        parameters=[REFERENCE_PARAMETER],
        request=None,
        responses={
            200: TransitionResponseSerializer,
            404: ERROR_RESPONSES[404],
            409: ERROR_RESPONSES[409],
        },
        tags=["Escrow - Seller"],
    )
    def post(self, request, reference: str):
        result = EscrowService.mark_sent(reference)
        if not result.success:
            return self.failure_response(result)
        return Response(TransitionResponseSerializer(transition_payload(result.data)).data)


class ReleaseCronView(EscrowAPIView):
    """
    Run one release sweep.

    GET|POST /api/v1/escrow/cron/release/?key=<secret>

    Authenticated by ESCROW_CRON_SECRET (?key=, Bearer token or
    X-Cron-Secret header). Meant for external schedulers; celery-beat runs
    the same sweep on its own.
    """

    authentication_classes = []
    permission_classes = [CronSecretPermission]

    @extend_schema(
        operation_id="run_escrow_release_sweep",
        summary="Run release sweep",
        parameters=[
            OpenApiParameter(
                name="key",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description="Cron secret (or use Authorization: Bearer / X-Cron-Secret)",
                required=False,
            ),
        ],
        request=None,
        responses={
            200: SweepReportSerializer,
            403: OpenApiResponse(description="Invalid cron secret"),
            500: OpenApiResponse(response=ErrorResponseSerializer, description="Cron secret not configured"),
        },
        tags=["Escrow - Scheduler"],
    )
    def get(self, request):
        report = ReleaseScheduler.sweep()
        return Response(SweepReportSerializer(report.to_dict()).data)

    @extend_schema(
        operation_id="run_escrow_release_sweep_post",
        summary="Run release sweep",
        request=None,
        responses={200: SweepReportSerializer},
        tags=["Escrow - Scheduler"],
    )
    def post(self, request):
        return self.get(request)


class OperatorCaptureView(EscrowAPIView):
    """
    Capture an authorized order on an operator's decision.

    POST /api/v1/escrow/orders/{ref}/capture/

    Request body:
        {"amount_to_capture": 8000}  # optional, cents; full amount if omitted

    Authenticated like the cron endpoint. A partial capture reduces the
    seller payout by the uncaptured amount.
    """

    authentication_classes = []
    permission_classes = [CronSecretPermission]

    @extend_schema(
        operation_id="operator_capture_escrow_order",
        summary="Capture order (operator)",
        parameters=[REFERENCE_PARAMETER],
        request=OperatorCaptureRequestSerializer,
        responses={
            200: TransitionResponseSerializer,
            400: OpenApiResponse(
                response=ErrorResponseSerializer,
                description="amount_to_capture is not positive or exceeds the capturable amount",
            ),
            403: OpenApiResponse(description="Invalid cron secret"),
            **ERROR_RESPONSES,
        },
        tags=["Escrow - Operator"],
    )
    def post(self, request, reference: str):
        serializer = OperatorCaptureRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = EscrowService.operator_capture(
            reference,
            amount_to_capture=serializer.validated_data["amount_to_capture"],
        )
        if not result.success:
            return self.failure_response(result)
        return Response(TransitionResponseSerializer(transition_payload(result.data)).data)
