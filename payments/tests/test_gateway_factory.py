"""
Tests for payment gateway factory.

Tests cover:
- Gateway selection based on configuration
- Gateway registration
- Error handling for unsupported gateways
- Configuration validation
"""

import pytest

from payments.gateways.factory import (
    get_gateway,
    register_gateway,
    list_available_gateways,
    GATEWAY_REGISTRY
)
from payments.gateways.base import BasePaymentGateway, GatewayException
from payments.gateways.zarinpal_gateway import ZarinpalGateway
from payments.gateways.payir_gateway import PayirGateway
from payments.gateways.nextpay_gateway import NextpayGateway


class TestGetGateway:
    """Tests for get_gateway function"""

    def test_get_each_configured_gateway(self):
        """Test getting every built-in gateway by name"""
        assert isinstance(get_gateway('zarinpal'), ZarinpalGateway)
        assert isinstance(get_gateway('payir'), PayirGateway)
        assert isinstance(get_gateway('nextpay'), NextpayGateway)

    def test_gateway_receives_configuration(self):
        """Test API key, sandbox flag and unit come from PAYMENT_GATEWAYS"""
        gateway = get_gateway('zarinpal')

        assert gateway.api_key == 'zp-test-merchant'
        assert gateway.sandbox is True
        assert gateway.unit == 'IRR'

        nextpay = get_gateway('nextpay')
        assert nextpay.unit == 'IRT'

    def test_gateway_receives_timeout(self, settings):
        settings.PAYMENT_GATEWAY_TIMEOUT = 3

        gateway = get_gateway('payir')

        assert gateway.timeout == 3

    def test_get_gateway_case_insensitive(self):
        """Test gateway name is case-insensitive and trimmed"""
        gateways = [get_gateway('ZARINPAL'), get_gateway('ZarinPal'), get_gateway('  zarinpal  ')]

        assert all(isinstance(g, ZarinpalGateway) for g in gateways)

    def test_get_gateway_uses_primary(self, settings):
        """Test getting gateway without a name uses the first priority entry"""
        settings.PAYMENT_GATEWAY_PRIORITY = ['payir', 'zarinpal']

        assert isinstance(get_gateway(), PayirGateway)

    def test_get_unsupported_gateway(self):
        """Test error when requesting unsupported gateway"""
        with pytest.raises(GatewayException) as exc_info:
            get_gateway('sadad')

        assert 'Unsupported payment gateway' in str(exc_info.value)
        assert exc_info.value.error_code == 'unsupported_gateway'
        assert 'zarinpal' in str(exc_info.value)

    def test_get_gateway_missing_config(self, settings):
        """Test error when the gateway has no API key configured"""
        settings.PAYMENT_GATEWAYS = {'zarinpal': {'API_KEY': ''}}

        with pytest.raises(GatewayException) as exc_info:
            get_gateway('zarinpal')

        assert 'Missing configuration' in str(exc_info.value)
        assert exc_info.value.error_code == 'gateway_config_missing'

        with pytest.raises(GatewayException):
            get_gateway('payir')


class TestRegisterGateway:
    """Tests for register_gateway function"""

    def test_register_custom_gateway(self, settings):
        """Test registering a new gateway"""
        class SadadGateway(BasePaymentGateway):
            gateway_id = 'sadad'

            def request_payment(self, amount, order_id, description, callback_url):
                pass

            def verify_payment(self, provider_reference, claimed_amount):
                pass

            def parse_callback(self, params):
                pass

        settings.PAYMENT_GATEWAYS = {'sadad': {'API_KEY': 'sadad-key'}}
        try:
            register_gateway('Sadad', SadadGateway)

            assert 'sadad' in list_available_gateways()
            assert isinstance(get_gateway('sadad'), SadadGateway)
        finally:
            GATEWAY_REGISTRY.pop('sadad', None)

    def test_register_invalid_gateway_class(self):
        """Test registering a class that does not extend BasePaymentGateway"""
        class NotAGateway:
            pass

        with pytest.raises(GatewayException) as exc_info:
            register_gateway('invalid', NotAGateway)

        assert exc_info.value.error_code == 'invalid_gateway_class'
        assert 'invalid' not in GATEWAY_REGISTRY


class TestListAvailableGateways:
    """Tests for list_available_gateways function"""

    def test_lists_builtin_gateways(self):
        gateways = list_available_gateways()

        assert {'zarinpal', 'payir', 'nextpay'} <= set(gateways)
