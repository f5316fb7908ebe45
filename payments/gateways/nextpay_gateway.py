"""
NextPay payment gateway implementation.

NextPay issues a ``trans_id`` from ``/nx/gateway/token`` (code -1 means the
token was created) and reports code 0 from ``/nx/gateway/verify`` once the
payment is settled. Amounts default to Toman unless ``currency`` is IRR.
"""

import logging
from typing import Dict, Any

from .base import (
    BasePaymentGateway,
    GatewayResponse,
    GatewayException,
    PROTOCOL_ERROR,
    UNIT_TOMAN,
    VERDICT_REFERENCE_MISMATCH,
    VERDICT_GATEWAY_REJECTED,
)

logger = logging.getLogger(__name__)


BASE_URL = 'https://nextpay.org/nx/gateway'

TOKEN_CREATED_CODE = -1
VERIFIED_CODE = 0
UNKNOWN_TRANSACTION_CODES = (-24, -25)


class NextpayGateway(BasePaymentGateway):
    """
    NextPay gateway implementation.
    """

    gateway_id = 'nextpay'
    default_unit = UNIT_TOMAN

    @staticmethod
    def code_of(raw: Dict[str, Any]):
        try:
            return int(raw.get('code'))
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
            'api_key': self.api_key,
            'amount': self.native_amount(amount),
            'order_id': str(order_id),
            'callback_uri': callback_url,
            'currency': self.unit,
            'payer_desc': description,
        }

        raw, failure = self.call_provider('request', f'{BASE_URL}/token', payload)
        if failure:
            return failure

        code = self.code_of(raw)
        if code is None:
            return self.protocol_error('NextPay response carries no code', raw=raw)

        if code != TOKEN_CREATED_CODE:
            logger.info(
                "NextPay declined payment request",
                extra={'order_id': order_id, 'code': code}
            )
            return self.gateway_error(f'NextPay request failed (code={code})', raw=raw)

        trans_id = raw.get('trans_id')
        if not trans_id:
            return self.protocol_error('NextPay accepted the request without a trans_id', raw=raw)

        trans_id = str(trans_id)
        return GatewayResponse(
            success=True,
            data={
                'redirect_url': f'{BASE_URL}/payment/{trans_id}',
                'provider_reference': trans_id,
            },
            status_code=200,
            gateway_response=raw
        )

    def verify_payment(self, provider_reference: str, claimed_amount: int) -> GatewayResponse:
        """
        Verify a trans_id with NextPay and compare the reported amount.
        """
        payload = {
            'api_key': self.api_key,
            'trans_id': provider_reference,
            'amount': self.native_amount(claimed_amount),
            'currency': self.unit,
        }

        raw, failure = self.call_provider('verify', f'{BASE_URL}/verify', payload)
        if failure:
            return failure

        code = self.code_of(raw)
        if code is None:
            return self.protocol_error('NextPay verify response carries no code', raw=raw)

        if code in UNKNOWN_TRANSACTION_CODES:
            return self.verdict(VERDICT_REFERENCE_MISMATCH, raw)

        if code != VERIFIED_CODE:
            logger.info(
                "NextPay rejected verification",
                extra={'trans_id': provider_reference, 'code': code}
            )
            return self.verdict(VERDICT_GATEWAY_REJECTED, raw)

        reported = raw.get('amount')
        try:
            reported = int(reported) if reported is not None else None
        except (TypeError, ValueError):
            return self.protocol_error('NextPay verify response carries a malformed amount', raw=raw)

        shaparak_ref = raw.get('Shaparak_Ref_Id')
        return self.verdict(
            self.compare_amount(reported, claimed_amount),
            raw,
            provider_transaction_id=str(shaparak_ref) if shaparak_ref is not None else None,
            reported_amount=self.rial_amount(reported) if reported is not None else None,
        )

    def parse_callback(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        NextPay redirects with ``?trans_id=...&order_id=...&amount=...``.

        The amount is echoed in the provider's unit and converted to Rial.
        """
        trans_id = (params.get('trans_id') or '').strip()
        if not trans_id:
            raise GatewayException(
                message='NextPay callback is missing trans_id',
                error_code=PROTOCOL_ERROR
            )

        claimed_amount = None
        if params.get('amount') not in (None, ''):
            try:
                claimed_amount = self.rial_amount(int(params['amount']))
            except (TypeError, ValueError):
                raise GatewayException(
                    message='NextPay callback carries a malformed amount',
                    error_code=PROTOCOL_ERROR
                )

        return {
            'provider_reference': trans_id,
            'order_id': (params.get('order_id') or '').strip() or None,
            'succeeded': (params.get('np_status') or 'OK').strip().upper() == 'OK',
            'claimed_amount': claimed_amount,
        }
