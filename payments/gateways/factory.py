"""
Payment gateway factory.

Provides a centralized way to get configured gateway adapters by name.
Supports adding new gateways without changing orchestration logic.
"""

from typing import Optional
from django.conf import settings
from .base import BasePaymentGateway, GatewayException
from .zarinpal_gateway import ZarinpalGateway
from .payir_gateway import PayirGateway
from .nextpay_gateway import NextpayGateway


# Gateway registry - maps gateway names to their classes
GATEWAY_REGISTRY = {
    'zarinpal': ZarinpalGateway,
    'payir': PayirGateway,
    'nextpay': NextpayGateway,
}


def get_gateway(gateway_name: Optional[str] = None) -> BasePaymentGateway:
    """
    Get a configured payment gateway instance.

    Args:
        gateway_name: Name of the gateway ('zarinpal', 'payir', 'nextpay').
                     If None, uses the first entry of PAYMENT_GATEWAY_PRIORITY

    Returns:
        Configured payment gateway instance

    Raises:
        GatewayException: If gateway is not supported or configuration is missing

    Example:
        >>> gateway = get_gateway('zarinpal')
        >>> response = gateway.request_payment(150000, 'AS123', 'Order AS123', callback_url)
    """
    if gateway_name is None:
        gateway_name = list(getattr(settings, 'PAYMENT_GATEWAY_PRIORITY', ['zarinpal']))[0]

    gateway_name = gateway_name.lower().strip()

    if gateway_name not in GATEWAY_REGISTRY:
        supported = ', '.join(GATEWAY_REGISTRY.keys())
        raise GatewayException(
            message=f"Unsupported payment gateway: {gateway_name}. Supported gateways: {supported}",
            error_code='unsupported_gateway'
        )

    gateway_class = GATEWAY_REGISTRY[gateway_name]

    config = getattr(settings, 'PAYMENT_GATEWAYS', {}).get(gateway_name)
    if not config or not config.get('API_KEY'):
        raise GatewayException(
            message=f"Missing configuration for {gateway_name}: API_KEY is not set",
            error_code='gateway_config_missing'
        )

    return gateway_class(
        api_key=config['API_KEY'],
        sandbox=bool(config.get('SANDBOX', False)),
        unit=config.get('UNIT'),
        timeout=getattr(settings, 'PAYMENT_GATEWAY_TIMEOUT', None)
    )


def register_gateway(name: str, gateway_class: type):
    """
    Register a new payment gateway.

    Args:
        name: Gateway identifier (e.g., 'sadad')
        gateway_class: Gateway class that extends BasePaymentGateway
    """
    if not issubclass(gateway_class, BasePaymentGateway):
        raise GatewayException(
            message="Gateway class must extend BasePaymentGateway",
            error_code='invalid_gateway_class'
        )

    GATEWAY_REGISTRY[name.lower()] = gateway_class


def list_available_gateways():
    """
    List all registered payment gateways.

    Returns:
        List of gateway names
    """
    return list(GATEWAY_REGISTRY.keys())
