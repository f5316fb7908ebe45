"""
Tests for ZarinPal payment gateway implementation.

All tests use mocked HTTP calls to ensure:
- Fast test execution
- No dependency on external API
- Consistent test results
"""

import pytest
import requests
from unittest.mock import Mock, patch

from payments.gateways.zarinpal_gateway import ZarinpalGateway
from payments.gateways.base import (
    GatewayException,
    NETWORK_ERROR,
    GATEWAY_ERROR,
    PROTOCOL_ERROR,
)


def http_response(body, status_code=200):
    response = Mock(status_code=status_code)
    response.json.return_value = body
    return response


@pytest.fixture
def mock_post():
    """Fixture for mocked requests.post"""
    with patch('payments.gateways.base.requests.post') as post:
        yield post


@pytest.fixture
def zarinpal_gateway():
    """Fixture for a production ZarinPal gateway"""
    return ZarinpalGateway(api_key='zp-merchant-id', timeout=5)


class TestRequestPayment:
    """Tests for payment/request.json"""

    def test_request_payment_success(self, zarinpal_gateway, mock_post):
        """Test successful request returns StartPay URL and authority"""
        mock_post.return_value = http_response({
            'data': {'code': 100, 'message': 'Success', 'authority': 'A0000000000000000000000000000wwOGYpd'},
            'errors': [],
        })

        response = zarinpal_gateway.request_payment(
            amount=150000,
            order_id='AS123',
            description='Order AS123',
            callback_url='https://shop.example.com/api/payments/callback/zarinpal/'
        )

        assert response.success is True
        assert response.data['provider_reference'] == 'A0000000000000000000000000000wwOGYpd'
        assert response.data['redirect_url'] == (
            'https://www.zarinpal.com/pg/StartPay/A0000000000000000000000000000wwOGYpd'
        )

        url = mock_post.call_args[0][0]
        payload = mock_post.call_args[1]['json']
        assert url == 'https://payment.zarinpal.com/pg/v4/payment/request.json'
        assert payload['merchant_id'] == 'zp-merchant-id'
        assert payload['amount'] == 150000
        assert payload['currency'] == 'IRR'
        assert payload['metadata'] == {'order_id': 'AS123'}
        assert mock_post.call_args[1]['timeout'] == 5

    def test_request_payment_sandbox_endpoints(self, mock_post):
        """Test sandbox gateway talks to the sandbox host"""
        gateway = ZarinpalGateway(api_key='zp-merchant-id', sandbox=True)
        mock_post.return_value = http_response({'data': {'code': 100, 'authority': 'S123'}, 'errors': []})

        response = gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert mock_post.call_args[0][0] == 'https://sandbox.zarinpal.com/pg/v4/payment/request.json'
        assert response.data['redirect_url'] == 'https://sandbox.zarinpal.com/pg/StartPay/S123'

    def test_request_payment_in_toman(self, mock_post):
        """Test Toman-configured gateway sends amount divided by ten"""
        gateway = ZarinpalGateway(api_key='zp-merchant-id', unit='IRT')
        mock_post.return_value = http_response({'data': {'code': 100, 'authority': 'A1'}, 'errors': []})

        gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        payload = mock_post.call_args[1]['json']
        assert payload['amount'] == 15000
        assert payload['currency'] == 'IRT'

    def test_request_payment_declined(self, zarinpal_gateway, mock_post):
        """Test provider error code maps to GATEWAY_ERROR"""
        mock_post.return_value = http_response({
            'data': [],
            'errors': {'code': -9, 'message': 'The input params invalid, validation error.'},
        })

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.success is False
        assert response.error_code == GATEWAY_ERROR
        assert response.retryable is True
        assert 'code=-9' in response.error_message

    def test_request_payment_errors_as_list(self, zarinpal_gateway, mock_post):
        """Test errors member given as a list of objects"""
        mock_post.return_value = http_response({
            'data': [],
            'errors': [{'code': -12, 'message': 'Too many attempts'}],
        })

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == GATEWAY_ERROR
        assert 'code=-12' in response.error_message

    def test_request_payment_timeout(self, zarinpal_gateway, mock_post):
        """Test timeout maps to a retryable NETWORK_ERROR"""
        mock_post.side_effect = requests.Timeout('read timed out')

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.success is False
        assert response.error_code == NETWORK_ERROR
        assert response.retryable is True
        assert response.timed_out is True

    def test_request_payment_connection_error(self, zarinpal_gateway, mock_post):
        """Test connection failure maps to NETWORK_ERROR without timeout flag"""
        mock_post.side_effect = requests.ConnectionError('connection refused')

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == NETWORK_ERROR
        assert response.timed_out is False

    def test_request_payment_server_error(self, zarinpal_gateway, mock_post):
        """Test HTTP 5xx is treated as the provider being unreachable"""
        mock_post.return_value = http_response({}, status_code=502)

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == NETWORK_ERROR
        assert response.status_code == 502

    def test_request_payment_non_json(self, zarinpal_gateway, mock_post):
        """Test HTML error page maps to PROTOCOL_ERROR"""
        response_mock = Mock(status_code=200)
        response_mock.json.side_effect = ValueError('No JSON object could be decoded')
        mock_post.return_value = response_mock

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == PROTOCOL_ERROR
        assert response.retryable is False

    def test_request_payment_without_authority(self, zarinpal_gateway, mock_post):
        """Test code 100 without authority is a protocol violation"""
        mock_post.return_value = http_response({'data': {'code': 100}, 'errors': []})

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == PROTOCOL_ERROR

    def test_request_payment_without_code(self, zarinpal_gateway, mock_post):
        """Test body with neither data nor errors"""
        mock_post.return_value = http_response({'unexpected': True})

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.error_code == PROTOCOL_ERROR

    def test_request_payment_success_code_without_data_block(self, zarinpal_gateway, mock_post):
        """Test code 100 under errors with an empty data list"""
        mock_post.return_value = http_response({'data': [], 'errors': {'code': 100}})

        response = zarinpal_gateway.request_payment(150000, 'AS123', 'Order AS123', 'https://shop.example.com/cb/')

        assert response.success is False
        assert response.error_code == PROTOCOL_ERROR


class TestVerifyPayment:
    """Tests for payment/verify.json"""

    def test_verify_success(self, zarinpal_gateway, mock_post):
        """Test code 100 confirms and carries ref_id"""
        mock_post.return_value = http_response({
            'data': {'code': 100, 'message': 'Verified', 'ref_id': 201, 'card_pan': '502229******5995'},
            'errors': [],
        })

        response = zarinpal_gateway.verify_payment('A0000000000000000000000000000wwOGYpd', 150000)

        assert response.success is True
        assert response.data['verdict'] == 'confirmed'
        assert response.data['provider_transaction_id'] == '201'

        payload = mock_post.call_args[1]['json']
        assert payload['amount'] == 150000
        assert payload['authority'] == 'A0000000000000000000000000000wwOGYpd'

    def test_verify_already_verified(self, zarinpal_gateway, mock_post):
        """Test code 101 is still a confirmation"""
        mock_post.return_value = http_response({'data': {'code': 101, 'ref_id': 201}, 'errors': []})

        response = zarinpal_gateway.verify_payment('A1', 150000)

        assert response.data['verdict'] == 'confirmed'

    def test_verify_amount_mismatch(self, zarinpal_gateway, mock_post):
        """Test code -50 reports an amount mismatch"""
        mock_post.return_value = http_response({
            'data': [],
            'errors': {'code': -50, 'message': 'Session is not valid, amounts values is not the same.'},
        })

        response = zarinpal_gateway.verify_payment('A1', 150000)

        assert response.success is True
        assert response.data['verdict'] == 'amountMismatch'

    def test_verify_unknown_authority(self, zarinpal_gateway, mock_post):
        """Test code -54 reports a reference mismatch"""
        mock_post.return_value = http_response({'data': [], 'errors': {'code': -54, 'message': 'Invalid authority.'}})

        response = zarinpal_gateway.verify_payment('A-forged', 150000)

        assert response.data['verdict'] == 'referenceMismatch'

    def test_verify_rejected(self, zarinpal_gateway, mock_post):
        """Test any other code is a gateway rejection"""
        mock_post.return_value = http_response({'data': [], 'errors': {'code': -51, 'message': 'Session is not active.'}})

        response = zarinpal_gateway.verify_payment('A1', 150000)

        assert response.data['verdict'] == 'gatewayRejected'
        assert response.data['provider_transaction_id'] is None

    def test_verify_success_code_without_data_block(self, zarinpal_gateway, mock_post):
        mock_post.return_value = http_response({'errors': {'code': 100, 'message': 'Verified'}})

        response = zarinpal_gateway.verify_payment('A1', 150000)

        assert response.success is False
        assert response.error_code == PROTOCOL_ERROR

    def test_verify_timeout(self, zarinpal_gateway, mock_post):
        """Test verify timeout is a retryable network failure"""
        mock_post.side_effect = requests.Timeout()

        response = zarinpal_gateway.verify_payment('A1', 150000)

        assert response.success is False
        assert response.error_code == NETWORK_ERROR


class TestParseCallback:
    """Tests for callback parsing"""

    def test_parse_callback_ok(self, zarinpal_gateway):
        callback = zarinpal_gateway.parse_callback({'Authority': 'A1', 'Status': 'OK'})

        assert callback == {
            'provider_reference': 'A1',
            'order_id': None,
            'succeeded': True,
            'claimed_amount': None,
        }

    def test_parse_callback_cancelled(self, zarinpal_gateway):
        callback = zarinpal_gateway.parse_callback({'Authority': 'A1', 'Status': 'NOK'})

        assert callback['succeeded'] is False

    def test_parse_callback_missing_authority(self, zarinpal_gateway):
        with pytest.raises(GatewayException) as exc_info:
            zarinpal_gateway.parse_callback({'Status': 'OK'})

        assert exc_info.value.error_code == PROTOCOL_ERROR
