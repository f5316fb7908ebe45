"""
Payment gateway abstraction layer.

Provides a unified interface for ZarinPal, Pay.ir and NextPay, plus the
registry that orders them for failover.
"""

from .base import BasePaymentGateway, GatewayResponse, GatewayException
from .zarinpal_gateway import ZarinpalGateway
from .payir_gateway import PayirGateway
from .nextpay_gateway import NextpayGateway
from .factory import get_gateway, register_gateway, list_available_gateways
from .registry import GatewayRegistry, get_registry

__all__ = [
    'BasePaymentGateway',
    'GatewayResponse',
    'GatewayException',
    'ZarinpalGateway',
    'PayirGateway',
    'NextpayGateway',
    'get_gateway',
    'register_gateway',
    'list_available_gateways',
    'GatewayRegistry',
    'get_registry',
]
