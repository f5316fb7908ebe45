"""
Pay.ir payment gateway implementation.

Pay.ir works in Rial only: ``/pg/send`` issues a token, the customer is sent
to ``/pg/<token>`` and ``/pg/verify`` reports the paid amount.
"""

import logging
from typing import Dict, Any

from .base import (
    BasePaymentGateway,
    GatewayResponse,
    GatewayException,
    PROTOCOL_ERROR,
    UNIT_RIAL,
    VERDICT_GATEWAY_REJECTED,
)

logger = logging.getLogger(__name__)


BASE_URL = 'https://pay.ir/pg'


class PayirGateway(BasePaymentGateway):
    """
    Pay.ir gateway implementation.

    Responses carry ``status`` 1 on success and ``status`` 0 together with
    ``errorCode``/``errorMessage`` otherwise. The sandbox is selected with
    the ``test`` api key rather than a different host.
    """

    gateway_id = 'payir'
    default_unit = UNIT_RIAL

    def __init__(self, api_key: str, sandbox: bool = False, unit=None, timeout=None):
        # Pay.ir only accepts Rial amounts
        super().__init__('test' if sandbox else api_key, sandbox, UNIT_RIAL, timeout)

    @staticmethod
    def status_of(raw: Dict[str, Any]):
        try:
            return int(raw.get('status'))
        except (TypeError, ValueError):
            return None

    def request_payment(
        self,
        amount: int,
        order_id: str,
        description: str,
        callback_url: str
    ) -> GatewayResponse:
        payload = {
            'api': self.api_key,
            'amount': self.native_amount(amount),
            'redirect': callback_url,
            'factorNumber': str(order_id),
            'description': description,
        }

        raw, failure = self.call_provider('request', f'{BASE_URL}/send', payload)
        if failure:
            return failure

        status = self.status_of(raw)
        if status is None:
            return self.protocol_error('Pay.ir response carries no status', raw=raw)

        if status != 1:
            logger.info(
                "Pay.ir declined payment request",
                extra={'order_id': order_id, 'code': raw.get('errorCode'), 'message': raw.get('errorMessage')}
            )
            return self.gateway_error(
                f"Pay.ir request failed: {raw.get('errorMessage') or 'unknown'} (code={raw.get('errorCode')})",
                raw=raw
            )

        token = raw.get('token')
        if not token:
            return self.protocol_error('Pay.ir accepted the request without a token', raw=raw)

        token = str(token)
        return GatewayResponse(
            success=True,
            data={
                'redirect_url': f'{BASE_URL}/{token}',
                'provider_reference': token,
            },
            status_code=200,
            gateway_response=raw
        )

    def verify_payment(self, provider_reference: str, claimed_amount: int) -> GatewayResponse:
        """
        Verify a token with Pay.ir and compare the reported amount.
        """
        payload = {'api': self.api_key, 'token': provider_reference}

        raw, failure = self.call_provider('verify', f'{BASE_URL}/verify', payload)
        if failure:
            return failure

        status = self.status_of(raw)
        if status is None:
            return self.protocol_error('Pay.ir verify response carries no status', raw=raw)

        if status != 1:
            logger.info(
                "Pay.ir rejected verification",
                extra={'token': provider_reference, 'code': raw.get('errorCode'), 'message': raw.get('errorMessage')}
            )
            return self.verdict(VERDICT_GATEWAY_REJECTED, raw)

        try:
            reported = int(raw.get('amount'))
        except (TypeError, ValueError):
            return self.protocol_error('Pay.ir verify response carries no amount', raw=raw)

        trans_id = raw.get('transId')
        return self.verdict(
            self.compare_amount(reported, claimed_amount),
            raw,
            provider_transaction_id=str(trans_id) if trans_id is not None else None,
            reported_amount=self.rial_amount(reported),
        )

    def parse_callback(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Pay.ir redirects with ``?token=...&status=1|0``.
        """
        token = (params.get('token') or '').strip()
        if not token:
            raise GatewayException(
                message='Pay.ir callback is missing token',
                error_code=PROTOCOL_ERROR
            )

        return {
            'provider_reference': token,
            'order_id': None,
            'succeeded': str(params.get('status', '')).strip() == '1',
            'claimed_amount': None,
        }
