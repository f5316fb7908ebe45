import logging
from urllib.parse import urlencode

from django.conf import settings
from django.http import HttpResponseBadRequest, HttpResponseRedirect
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .gateways.factory import get_gateway
from .gateways.registry import get_registry
from .services import PaymentOrchestrator, PaymentException, INTENT_NOT_FOUND

logger = logging.getLogger(__name__)


def result_url(**params) -> str:
    base = getattr(settings, 'PAYMENT_RESULT_URL', '/payments/result/')
    return f"{base}?{urlencode({k: v for k, v in params.items() if v is not None})}"


@csrf_exempt
@require_http_methods(["GET", "POST"])
def handle_gateway_callback(request, gateway_name):
    """
    Handle the customer returning from a gateway.

    URL: /api/payments/callback/<gateway_name>/

    ZarinPal and Pay.ir redirect with GET; NextPay may POST. Each gateway's
    parameters are parsed by its adapter, the payment is verified, and the
    browser is sent on to PAYMENT_RESULT_URL with the verdict.
    """
    params = request.GET.dict() if request.method == 'GET' else request.POST.dict()
    gateway_name = gateway_name.lower()

    logger.info(f"Received {gateway_name} callback", extra={'gateway': gateway_name, 'params': params})

    orchestrator = PaymentOrchestrator(registry=get_registry(), gateway_factory=get_gateway)
    try:
        outcome = orchestrator.handle_callback(gateway_name, params)
    except PaymentException as e:
        if e.error_code == INTENT_NOT_FOUND:
            logger.warning(f"{gateway_name} callback for unknown payment: {e.message}")
            return HttpResponseRedirect(result_url(error_code=e.error_code))
        logger.error(f"Rejected {gateway_name} callback: {e.message}")
        return HttpResponseBadRequest(e.error_code)

    return HttpResponseRedirect(
        result_url(order_id=outcome.order_id, verdict=outcome.verdict, status=outcome.status)
    )
