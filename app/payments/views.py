"""
DRF views for payments app.

This module provides API views for:
- Payment initialization, verification and status
- Synchronous provider callbacks (return/notify URLs)
- Refunds and retries
- Gateway listing and transaction history

Related files:
    - services/payment_orchestrator.py: PaymentOrchestrator
    - serializers.py: Request/response serializers
    - filters.py: TransactionFilter
    - permissions.py: IsTransactionOwnerOrStaff
    - webhooks/views.py: Asynchronous webhook endpoint
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/initialize/ - Start a payment
    GET|POST /api/v1/payments/verify/{reference}/ - Re-check status with the provider
    GET /api/v1/payments/status/{reference}/ - Stored status
    POST /api/v1/payments/callback/{gateway}/ - Provider callback, processed inline
    POST /api/v1/payments/refund/{reference}/ - Full or partial refund
    POST /api/v1/payments/retry/{reference}/ - Schedule a failed payment for retry
    GET /api/v1/payments/gateways/ - Available gateways
    GET /api/v1/payments/history/ - Transaction history (filtered, paginated)

Security:
    - Refund, retry and history require authentication
    - Refund and retry are limited to the payment's owner and staff (permissions.py)
    - Callback relies on the provider signature, not on request auth
"""

from __future__ import annotations

import logging

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import ConflictError
from core.services import ServiceResult

from payments.filters import TransactionFilter
from payments.models import Transaction
from payments.permissions import IsTransactionOwnerOrStaff
from payments.serializers import (
    GatewayInfoSerializer,
    InitializePaymentSerializer,
    RefundRequestSerializer,
    TransactionSerializer,
)
from payments.services import PaymentOrchestrator
from payments.webhooks.views import payload_from_request

logger = logging.getLogger(__name__)


# error_code -> HTTP status; unlisted codes answer 400
ERROR_STATUS = {
    "TRANSACTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PAYMENT_VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "AMOUNT_OUT_OF_RANGE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "UNSUPPORTED_CURRENCY": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "REFUND_AMOUNT_EXCEEDED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "TRANSACTION_NOT_REFUNDABLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "RETRY_NOT_ALLOWED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "INVALID_SIGNATURE": status.HTTP_401_UNAUTHORIZED,
    "CARD_DECLINED": status.HTTP_402_PAYMENT_REQUIRED,
    "GATEWAY_CONFIGURATION_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
    "GATEWAY_ERROR": status.HTTP_502_BAD_GATEWAY,
    "PAYMENT_PROCESSING_ERROR": status.HTTP_502_BAD_GATEWAY,
    "GATEWAY_TIMEOUT": status.HTTP_504_GATEWAY_TIMEOUT,
}


def error_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult with the status its error_code maps to."""
    status_code = ERROR_STATUS.get(result.error_code or "", status.HTTP_400_BAD_REQUEST)
    return Response(result.to_response(), status=status_code)


def conflict_response(exc: ConflictError) -> Response:
    return Response(
        {"success": False, "error": exc.message, "error_code": exc.error_code},
        status=status.HTTP_409_CONFLICT,
    )


class TransactionAccessMixin:
    """Object permission check for views addressed by transaction reference."""

    def check_transaction_access(self, request, reference: str) -> None:
        # Unknown references fall through to the orchestrator's 404
        txn = Transaction.objects.filter(reference=reference).first()
        if txn is not None:
            self.check_object_permissions(request, txn)


class InitializePaymentView(APIView):
    """
    Start a payment with a gateway.

    POST /api/v1/payments/initialize/

    Request body:
        {
            "gateway": "payfast",
            "amount": "100.00",
            "currency": "ZAR",
            "description": "Order #1001",
            "customer_email": "buyer@example.com",
            "return_url": "https://shop.example.com/thanks"
        }

    Returns:
        201 with redirect details and the pending transaction
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="initialize_payment",
        summary="Initialize payment",
        request=InitializePaymentSerializer,
        responses={
            201: OpenApiResponse(description="Payment initialized"),
            400: OpenApiResponse(description="Invalid request or gateway"),
            422: OpenApiResponse(description="Amount or currency rejected by the gateway"),
            502: OpenApiResponse(description="Provider error"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = InitializePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = request.user if request.user.is_authenticated else None
        result = PaymentOrchestrator().initialize(
            serializer.validated_data.get("gateway"),
            serializer.to_payment_request(),
            user=user,
        )
        if not result.success:
            return error_response(result)

        return Response(
            {"success": True, "data": result.data.to_dict()},
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(APIView):
    """
    Ask the provider for the latest status of a payment.

    GET|POST /api/v1/payments/verify/{reference}/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="verify_payment",
        summary="Verify payment",
        request=None,
        responses={200: TransactionSerializer, 404: OpenApiResponse(description="Unknown reference")},
        tags=["Payments"],
    )
    def get(self, request, reference):
        try:
            result = PaymentOrchestrator().verify(reference)
        except ConflictError as e:
            return conflict_response(e)
        if not result.success:
            return error_response(result)

        outcome = result.data
        return Response(
            {
                "success": True,
                "data": {
                    "transaction": TransactionSerializer(outcome.transaction).data,
                    "changed": outcome.changed,
                    "awaiting_webhook": outcome.verify_result.awaiting_webhook,
                    "manual_verification": outcome.verify_result.manual_verification,
                    "message": outcome.verify_result.message,
                },
            }
        )

    @extend_schema(
        operation_id="verify_payment_post",
        summary="Verify payment",
        request=None,
        responses={200: TransactionSerializer, 404: OpenApiResponse(description="Unknown reference")},
        tags=["Payments"],
    )
    def post(self, request, reference):
        return self.get(request, reference)


class PaymentStatusView(APIView):
    """
    Stored status of a payment, without calling the provider.

    GET /api/v1/payments/status/{reference}/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="payment_status",
        summary="Get payment status",
        responses={200: TransactionSerializer, 404: OpenApiResponse(description="Unknown reference")},
        tags=["Payments"],
    )
    def get(self, request, reference):
        result = PaymentOrchestrator().get_status(reference)
        if not result.success:
            return error_response(result)
        return Response({"success": True, "data": TransactionSerializer(result.data).data})


class PaymentCallbackView(APIView):
    """
    Provider callback processed inline.

    POST /api/v1/payments/callback/{gateway}/

    Used as the notify URL by providers that expect the outcome in the
    response. Callbacks that match no transaction are still acknowledged.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    @extend_schema(
        operation_id="payment_callback",
        summary="Provider callback",
        request=None,
        responses={
            200: OpenApiResponse(description="Callback acknowledged"),
            401: OpenApiResponse(description="Invalid signature"),
        },
        tags=["Payments"],
    )
    def post(self, request, gateway):
        payload = payload_from_request(request._request)
        try:
            result = PaymentOrchestrator().process_callback(gateway.lower(), payload)
        except ConflictError as e:
            return conflict_response(e)

        if not result.success:
            logger.warning(
                "Callback rejected",
                extra={"gateway": gateway, "error_code": result.error_code},
            )
            return error_response(result)

        outcome = result.data
        return Response(
            {
                "success": True,
                "data": {
                    "acknowledged": outcome.acknowledged,
                    "reference": outcome.transaction.reference if outcome.transaction else None,
                    "status": outcome.transaction.status if outcome.transaction else None,
                    "changed": outcome.changed,
                },
            }
        )


class RefundView(TransactionAccessMixin, APIView):
    """
    Refund all or part of a completed payment.

    POST /api/v1/payments/refund/{reference}/

    Request body:
        {
            "amount": "25.00",   // optional, full refundable balance when omitted
            "reason": "Customer request"
        }

    Returns:
        Parent and refund transactions; manual_action is set when the
        provider has no refund API and an operator has to pay out.
    """

    permission_classes = [IsAuthenticated, IsTransactionOwnerOrStaff]

    @extend_schema(
        operation_id="refund_payment",
        summary="Refund payment",
        request=RefundRequestSerializer,
        responses={
            200: OpenApiResponse(description="Refund recorded"),
            403: OpenApiResponse(description="Not the payment's owner"),
            404: OpenApiResponse(description="Unknown reference"),
            409: OpenApiResponse(description="Another refund is in progress"),
            422: OpenApiResponse(description="Not refundable or amount exceeded"),
        },
        tags=["Payments"],
    )
    def post(self, request, reference):
        self.check_transaction_access(request, reference)
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = PaymentOrchestrator().refund(
                reference,
                amount=serializer.validated_data.get("amount"),
                reason=serializer.validated_data.get("reason"),
            )
        except ConflictError as e:
            return conflict_response(e)
        if not result.success:
            return error_response(result)

        record = result.data
        return Response(
            {
                "success": True,
                "data": {
                    "transaction": TransactionSerializer(record.transaction).data,
                    "refund": TransactionSerializer(record.refund_transaction).data,
                    "requires_manual_action": record.requires_manual_action,
                    "manual_action": record.manual_action,
                },
            }
        )


class RetryView(TransactionAccessMixin, APIView):
    """
    Make a failed payment eligible for its next attempt now.

    POST /api/v1/payments/retry/{reference}/
    """

    permission_classes = [IsAuthenticated, IsTransactionOwnerOrStaff]

    @extend_schema(
        operation_id="retry_payment",
        summary="Retry failed payment",
        request=None,
        responses={
            200: TransactionSerializer,
            403: OpenApiResponse(description="Not the payment's owner"),
            404: OpenApiResponse(description="Unknown reference"),
            422: OpenApiResponse(description="Retry not allowed"),
        },
        tags=["Payments"],
    )
    def post(self, request, reference):
        self.check_transaction_access(request, reference)
        result = PaymentOrchestrator().retry(reference)
        if not result.success:
            return error_response(result)
        return Response({"success": True, "data": TransactionSerializer(result.data).data})


class GatewayListView(APIView):
    """
    List gateways a client can pay with.

    GET /api/v1/payments/gateways/?all=true includes disabled gateways.
    """

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="list_gateways",
        summary="List gateways",
        parameters=[
            OpenApiParameter(
                name="all",
                type=bool,
                required=False,
                description="Include disabled gateways",
            ),
        ],
        responses={200: GatewayInfoSerializer(many=True)},
        tags=["Payments"],
    )
    def get(self, request):
        include_all = request.query_params.get("all", "").lower() in ("1", "true", "yes")
        gateways = PaymentOrchestrator().list_gateways(enabled_only=not include_all)
        return Response({"success": True, "data": GatewayInfoSerializer(gateways, many=True).data})


@extend_schema(
    operation_id="transaction_history",
    summary="Transaction history",
    description=(
        "Paginated transactions, newest first. Staff see all transactions; "
        "other users see their own and those sent to their email."
    ),
    tags=["Payments"],
)
class TransactionHistoryView(generics.ListAPIView):
    """
    GET /api/v1/payments/history/

    Query parameters:
        status, gateway, transaction_type, customer_email, reference,
        start_date, end_date, is_subscription
    """

    serializer_class = TransactionSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = TransactionFilter

    def get_queryset(self):
        return (
            Transaction.objects.visible_to(self.request.user)
            .select_related("parent_transaction")
            .order_by("-created_at")
        )
