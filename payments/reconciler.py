"""
Verification reconciler.

Decides whether a callback may be trusted before any provider call is made,
and turns the provider's verification answer into the final verdict. The
stored intent is the only source of truth for the amount.
"""

import logging
from typing import Optional, Tuple

from django.conf import settings

from .gateways.base import (
    GatewayResponse,
    UNIT_RIAL,
    to_native_amount,
    to_rial_amount,
    VERDICT_CONFIRMED,
    VERDICT_AMOUNT_MISMATCH,
    VERDICT_REFERENCE_MISMATCH,
    VERDICT_GATEWAY_REJECTED,
)
from .models import PaymentIntent, AttemptRecord

logger = logging.getLogger(__name__)


KNOWN_VERDICTS = (
    VERDICT_CONFIRMED,
    VERDICT_AMOUNT_MISMATCH,
    VERDICT_REFERENCE_MISMATCH,
    VERDICT_GATEWAY_REJECTED,
)


class VerificationReconciler:
    """
    Validates callbacks against the stored payment record.
    """

    def __init__(self, amount_tolerance: Optional[int] = None):
        if amount_tolerance is None:
            amount_tolerance = getattr(settings, 'PAYMENT_AMOUNT_TOLERANCE', 0)
        self.amount_tolerance = max(0, int(amount_tolerance))

    def amounts_match(self, stored_amount: int, other_amount: int) -> bool:
        return abs(int(stored_amount) - int(other_amount)) <= self.amount_tolerance

    def check_callback(
        self,
        intent: PaymentIntent,
        attempt: Optional[AttemptRecord],
        gateway_id: str,
        provider_reference: str,
        claimed_amount: Optional[int] = None,
        claimed_unit: str = UNIT_RIAL
    ) -> Optional[str]:
        """
        Pre-verification checks on a callback for a redirected intent.

        A claimed amount is compared with what the gateway was actually asked
        to charge, so Toman rounding of the stored Rial amount is not a mismatch.

        Returns a failing verdict, or None when the callback may be verified
        with the gateway.
        """
        if gateway_id != intent.current_gateway:
            logger.warning(
                f"Callback for {intent.order_id} names gateway {gateway_id}, "
                f"payment is in flight on {intent.current_gateway}",
                extra={'order_id': intent.order_id, 'gateway': gateway_id}
            )
            return VERDICT_REFERENCE_MISMATCH

        if attempt is None or attempt.gateway != gateway_id or attempt.provider_reference != provider_reference:
            logger.warning(
                f"Callback reference does not match the in-flight attempt of {intent.order_id}",
                extra={'order_id': intent.order_id, 'gateway': gateway_id, 'provider_reference': provider_reference}
            )
            return VERDICT_REFERENCE_MISMATCH

        charged = to_rial_amount(to_native_amount(intent.amount, claimed_unit), claimed_unit)
        if claimed_amount is not None and not self.amounts_match(charged, claimed_amount):
            logger.warning(
                f"Callback for {intent.order_id} claims {claimed_amount}, stored amount is {intent.amount}",
                extra={'order_id': intent.order_id, 'claimed_amount': claimed_amount, 'amount': intent.amount}
            )
            return VERDICT_AMOUNT_MISMATCH

        return None

    def reconcile(self, intent: PaymentIntent, response: GatewayResponse) -> Tuple[str, str]:
        """
        Turn a gateway verification response into (verdict, error_code).

        Adapters compare amounts exactly in their native unit. A mismatch
        whose reported amount lies within the configured tolerance of the
        stored amount is accepted here.
        """
        if not response.success:
            logger.error(
                f"Verification of {intent.order_id} could not complete: {response.error_message}",
                extra={'order_id': intent.order_id, 'error_code': response.error_code}
            )
            return VERDICT_GATEWAY_REJECTED, response.error_code or ''

        verdict = response.data.get('verdict')
        if verdict not in KNOWN_VERDICTS:
            logger.error(
                f"Gateway returned unknown verdict {verdict!r} for {intent.order_id}",
                extra={'order_id': intent.order_id}
            )
            return VERDICT_GATEWAY_REJECTED, 'PROTOCOL_ERROR'

        reported = response.data.get('reported_amount')
        if verdict == VERDICT_AMOUNT_MISMATCH and reported is not None and self.amounts_match(intent.amount, reported):
            verdict = VERDICT_CONFIRMED

        if verdict == VERDICT_AMOUNT_MISMATCH:
            logger.warning(
                f"Gateway reports {reported} for {intent.order_id}, stored amount is {intent.amount}",
                extra={'order_id': intent.order_id, 'reported_amount': reported, 'amount': intent.amount}
            )

        return verdict, ''
