"""
ZarinPal payment gateway implementation.

Implements the BasePaymentGateway interface on top of the ZarinPal v4 REST
API (payment/request.json, payment/verify.json and the StartPay redirect).
"""

import logging
from typing import Optional, Dict, Any, Tuple

from .base import (
    BasePaymentGateway,
    GatewayResponse,
    GatewayException,
    PROTOCOL_ERROR,
    UNIT_RIAL,
    VERDICT_CONFIRMED,
    VERDICT_AMOUNT_MISMATCH,
    VERDICT_REFERENCE_MISMATCH,
    VERDICT_GATEWAY_REJECTED,
)

logger = logging.getLogger(__name__)


SUCCESS_CODE = 100
ALREADY_VERIFIED_CODE = 101
AMOUNT_MISMATCH_CODES = (-50,)
UNKNOWN_AUTHORITY_CODES = (-54, -55)


class ZarinpalGateway(BasePaymentGateway):
    """
    ZarinPal gateway implementation.

    ZarinPal answers with either ``{"data": {"code": ...}, "errors": []}`` or
    ``{"data": [], "errors": {"code": ..., "message": ...}}``; the errors
    member is sometimes a list of such objects.
    """

    gateway_id = 'zarinpal'
    default_unit = UNIT_RIAL

    def endpoints(self) -> Tuple[str, str, str]:
        """
        Returns: (REQUEST_URL, VERIFY_URL, STARTPAY_BASE)
        """
        if self.sandbox:
            base = 'https://sandbox.zarinpal.com'
            return (
                f'{base}/pg/v4/payment/request.json',
                f'{base}/pg/v4/payment/verify.json',
                f'{base}/pg/StartPay/',
            )

        return (
            'https://payment.zarinpal.com/pg/v4/payment/request.json',
            'https://payment.zarinpal.com/pg/v4/payment/verify.json',
            'https://www.zarinpal.com/pg/StartPay/',
        )

    @staticmethod
    def extract_code_and_message(raw: Dict[str, Any]) -> Tuple[Optional[int], str]:
        data = raw.get('data')
        errors = raw.get('errors')

        if isinstance(data, dict) and isinstance(data.get('code'), int):
            msg = data.get('message') if isinstance(data.get('message'), str) else ''
            return data['code'], msg

        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            errors = errors[0]

        if isinstance(errors, dict):
            code = errors.get('code') if isinstance(errors.get('code'), int) else None
            msg = errors.get('message') if isinstance(errors.get('message'), str) else ''
            return code, msg

        return None, ''

    def request_payment(
        self,
        amount: int,
        order_id: str,
        description: str,
        callback_url: str
    ) -> GatewayResponse:
        """
        Create a ZarinPal payment session and return its StartPay URL.
        """
        request_url, _, startpay = self.endpoints()
        payload = {
            'merchant_id': self.api_key,
            'amount': self.native_amount(amount),
            'currency': self.unit,
            'callback_url': callback_url,
            'description': description,
            'metadata': {'order_id': str(order_id)},
        }

        raw, failure = self.call_provider('request', request_url, payload)
        if failure:
            return failure

        code, msg = self.extract_code_and_message(raw)
        if code is None:
            return self.protocol_error('ZarinPal response carries no status code', raw=raw)

        if code != SUCCESS_CODE:
            logger.info(
                "ZarinPal declined payment request",
                extra={'order_id': order_id, 'code': code, 'message': msg}
            )
            return self.gateway_error(f'ZarinPal request failed: {msg or "unknown"} (code={code})', raw=raw)

        data = raw.get('data')
        if not isinstance(data, dict):
            return self.protocol_error('ZarinPal accepted the request without a data block', raw=raw)

        authority = data.get('authority')
        if not isinstance(authority, str) or not authority:
            return self.protocol_error('ZarinPal accepted the request without an authority', raw=raw)

        return GatewayResponse(
            success=True,
            data={
                'redirect_url': f'{startpay}{authority}',
                'provider_reference': authority,
            },
            status_code=200,
            gateway_response=raw
        )

    def verify_payment(self, provider_reference: str, claimed_amount: int) -> GatewayResponse:
        """
        Verify an authority with ZarinPal.

        ZarinPal checks the amount itself and reports -50 on a mismatch, so
        the stored amount is sent along with the authority.
        """
        _, verify_url, _ = self.endpoints()
        payload = {
            'merchant_id': self.api_key,
            'amount': self.native_amount(claimed_amount),
            'authority': provider_reference,
        }

        raw, failure = self.call_provider('verify', verify_url, payload)
        if failure:
            return failure

        code, msg = self.extract_code_and_message(raw)
        if code is None:
            return self.protocol_error('ZarinPal verify response carries no status code', raw=raw)

        if code in (SUCCESS_CODE, ALREADY_VERIFIED_CODE):
            data = raw.get('data')
            if not isinstance(data, dict):
                return self.protocol_error('ZarinPal verify response carries no data block', raw=raw)
            ref_id = data.get('ref_id') if data.get('ref_id') is not None else data.get('refId')
            return self.verdict(
                VERDICT_CONFIRMED,
                raw,
                provider_transaction_id=str(ref_id) if ref_id is not None else None,
            )

        if code in AMOUNT_MISMATCH_CODES:
            return self.verdict(VERDICT_AMOUNT_MISMATCH, raw)

        if code in UNKNOWN_AUTHORITY_CODES:
            return self.verdict(VERDICT_REFERENCE_MISMATCH, raw)

        logger.info(
            "ZarinPal rejected verification",
            extra={'authority': provider_reference, 'code': code, 'message': msg}
        )
        return self.verdict(VERDICT_GATEWAY_REJECTED, raw)

    def parse_callback(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        ZarinPal redirects with ``?Authority=...&Status=OK|NOK``.
        """
        authority = (params.get('Authority') or '').strip()
        if not authority:
            raise GatewayException(
                message='ZarinPal callback is missing Authority',
                error_code=PROTOCOL_ERROR
            )

        return {
            'provider_reference': authority,
            'order_id': None,
            'succeeded': (params.get('Status') or '').strip().upper() == 'OK',
            'claimed_amount': None,
        }
