"""
URL configuration for payments app.

Defines API endpoints for:
- Initiating a payment (with gateway failover)
- Verifying a relayed callback
- Payment status and attempt audit trail
- Gateway availability
- Gateway callbacks
"""

from django.urls import path
from .views import (
    InitiatePaymentView,
    VerifyPaymentView,
    PaymentStatusView,
    GatewayHealthView,
)
from .callbacks import handle_gateway_callback


urlpatterns = [
    path(
        'initiate/',
        InitiatePaymentView.as_view(),
        name='payment-initiate'
    ),
    path(
        'verify/',
        VerifyPaymentView.as_view(),
        name='payment-verify'
    ),
    path(
        'gateways/',
        GatewayHealthView.as_view(),
        name='payment-gateways'
    ),

    # Gateway callback endpoints
    path(
        'callback/<str:gateway_name>/',
        handle_gateway_callback,
        name='payment-callback'
    ),

    path(
        '<str:order_id>/',
        PaymentStatusView.as_view(),
        name='payment-status'
    ),
]
