import logging

from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .gateways.factory import get_gateway
from .gateways.registry import get_registry
from .serializers import (
    InitiatePaymentSerializer,
    VerifyPaymentSerializer,
    PaymentIntentSerializer,
)
from .services import (
    PaymentOrchestrator,
    PaymentException,
    EXHAUSTED,
    PAYMENT_IN_PROGRESS,
    ALREADY_FINALIZED,
    ORDER_CONFLICT,
    INTENT_NOT_FOUND,
    INVALID_STATE,
    UNKNOWN_GATEWAY,
)

logger = logging.getLogger(__name__)


ERROR_STATUS = {
    EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    PAYMENT_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ALREADY_FINALIZED: status.HTTP_409_CONFLICT,
    ORDER_CONFLICT: status.HTTP_409_CONFLICT,
    INVALID_STATE: status.HTTP_409_CONFLICT,
    INTENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    UNKNOWN_GATEWAY: status.HTTP_404_NOT_FOUND,
}


def get_orchestrator():
    """Orchestrator wired to the process-wide registry and configured gateways"""
    return PaymentOrchestrator(registry=get_registry(), gateway_factory=get_gateway)


def error_response(exc: PaymentException):
    """
    Stable error payload for the UI layer.

    The UI maps ``error_code`` to a localized message and uses ``retryable``
    to decide between a retry button and a contact-support message.
    """
    return Response(
        {
            'error_code': exc.error_code,
            'retryable': exc.retryable,
            'order_id': exc.order_id,
        },
        status=ERROR_STATUS.get(exc.error_code, status.HTTP_400_BAD_REQUEST)
    )


class InitiatePaymentView(views.APIView):
    """
    Start a payment for an order.

    POST /api/payments/initiate/
    Request body:
        - order_id (str): External order identifier
        - amount (int): Amount in the given currency
        - currency (str): 'IRR' or 'IRT'
        - description (str, optional): Text shown by the gateway

    Response:
        - redirect_url (str): URL to send the customer to
        - gateway (str): Gateway that accepted the payment
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = get_orchestrator().initiate(
                order_id=data['order_id'],
                amount=data['amount_irr'],
                currency=data['currency'],
                description=data.get('description', '')
            )
        except PaymentException as e:
            logger.info(f"Initiate for order {data['order_id']} refused: {e.error_code}")
            return error_response(e)

        return Response(
            {
                'order_id': result.order_id,
                'redirect_url': result.redirect_url,
                'gateway': result.gateway,
                'status': result.status,
            },
            status=status.HTTP_200_OK if result.resumed else status.HTTP_201_CREATED
        )


class VerifyPaymentView(views.APIView):
    """
    Verify a payment callback relayed by the UI layer.

    POST /api/payments/verify/
    Request body:
        - gateway_id (str): Gateway the callback came from
        - provider_reference (str): Authority/token from the callback
        - order_id (str): External order identifier
        - amount (int, optional): Amount the callback claims, in Rial

    Response:
        - verdict (str): confirmed, amountMismatch, referenceMismatch,
          gatewayRejected or alreadyFinalized
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            outcome = get_orchestrator().verify(
                order_id=data['order_id'],
                gateway_id=data['gateway_id'],
                provider_reference=data['provider_reference'],
                claimed_amount=data.get('amount')
            )
        except PaymentException as e:
            return error_response(e)

        return Response(
            {
                'order_id': outcome.order_id,
                'verdict': outcome.verdict,
                'status': outcome.status,
            },
            status=status.HTTP_200_OK
        )


class PaymentStatusView(views.APIView):
    """
    Get the payment for an order with its attempt audit trail.

    GET /api/payments/<order_id>/
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, order_id):
        try:
            intent = get_orchestrator().get_status(order_id)
        except PaymentException as e:
            return error_response(e)

        return Response(PaymentIntentSerializer(intent).data, status=status.HTTP_200_OK)


class GatewayHealthView(views.APIView):
    """
    Availability of each gateway in failover order.

    GET /api/payments/gateways/
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        registry = get_registry()
        return Response(
            {
                'priority': registry.priority,
                'gateways': registry.snapshot(),
            },
            status=status.HTTP_200_OK
        )
