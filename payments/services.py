"""
Payment orchestration.

``PaymentOrchestrator`` owns the payment lifecycle:

    created -> attempting -> redirected -> verifying -> confirmed | failed
                     \\-> exhausted

It drives ordered failover across the gateway registry on initiate and
reconciles callbacks against the stored record on verify.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.urls import reverse

from .gateways.base import (
    BasePaymentGateway,
    GatewayException,
    GatewayResponse,
    NETWORK_ERROR,
    PROTOCOL_ERROR,
    UNIT_RIAL,
    VERDICT_ALREADY_FINALIZED,
    VERDICT_AMOUNT_MISMATCH,
    VERDICT_CONFIRMED,
    VERDICT_GATEWAY_REJECTED,
    VERDICT_REFERENCE_MISMATCH,
)
from .gateways.factory import get_gateway
from .gateways.registry import GatewayRegistry, get_registry
from .models import PaymentIntent, AttemptRecord
from .reconciler import VerificationReconciler
from .signals import payment_confirmed, payment_failed
from .store import DjangoPaymentRecordStore, PaymentRecordStore

logger = logging.getLogger(__name__)


# Orchestrator error codes
EXHAUSTED = 'EXHAUSTED'
AMOUNT_MISMATCH = 'AMOUNT_MISMATCH'
REFERENCE_MISMATCH = 'REFERENCE_MISMATCH'
PAYMENT_IN_PROGRESS = 'PAYMENT_IN_PROGRESS'
ALREADY_FINALIZED = 'ALREADY_FINALIZED'
ORDER_CONFLICT = 'ORDER_CONFLICT'
INTENT_NOT_FOUND = 'INTENT_NOT_FOUND'
INVALID_STATE = 'INVALID_STATE'
UNKNOWN_GATEWAY = 'UNKNOWN_GATEWAY'

VERDICT_ERROR_CODES = {
    VERDICT_AMOUNT_MISMATCH: AMOUNT_MISMATCH,
    VERDICT_REFERENCE_MISMATCH: REFERENCE_MISMATCH,
}


class PaymentException(GatewayException):
    """
    Raised when a payment operation cannot proceed.

    ``retryable`` tells the caller whether offering a retry makes sense;
    it never depends on which gateway was involved.
    """
    def __init__(self, message: str, error_code: str, retryable: bool = False, order_id: Optional[str] = None):
        self.retryable = retryable
        self.order_id = order_id
        super().__init__(message=message, error_code=error_code)


class PaymentExhausted(PaymentException):
    """Every gateway failed or is cooling down."""
    def __init__(self, order_id: str):
        super().__init__(
            message=f"No payment gateway could take order {order_id}",
            error_code=EXHAUSTED,
            retryable=False,
            order_id=order_id
        )


@dataclass
class InitiateResult:
    order_id: str
    redirect_url: str
    gateway: str
    status: str
    resumed: bool = False


@dataclass
class VerificationOutcome:
    order_id: str
    gateway: str
    provider_reference: str
    verdict: str
    status: str

    @property
    def confirmed(self):
        return self.verdict == VERDICT_CONFIRMED


def callback_url_for(gateway_id: str) -> str:
    """Absolute URL the gateway sends the customer back to."""
    base = getattr(settings, 'PAYMENT_CALLBACK_BASE_URL', 'http://localhost:8000').rstrip('/')
    return f"{base}{reverse('payment-callback', kwargs={'gateway_name': gateway_id})}"


class PaymentOrchestrator:
    """
    Single entry point for initiating and verifying payments.

    Collaborators are injected so tests can run with fake gateways, an
    isolated registry and no backoff delays.
    """

    def __init__(
        self,
        registry: Optional[GatewayRegistry] = None,
        store: Optional[PaymentRecordStore] = None,
        gateway_factory: Callable[[str], BasePaymentGateway] = get_gateway,
        reconciler: Optional[VerificationReconciler] = None,
        sleep: Callable[[float], None] = time.sleep,
        verify_max_attempts: Optional[int] = None,
        verify_backoff_seconds: Optional[float] = None
    ):
        self.registry = registry or get_registry()
        self.store = store or DjangoPaymentRecordStore()
        self.gateway_factory = gateway_factory
        self.reconciler = reconciler or VerificationReconciler()
        self.sleep = sleep
        if verify_max_attempts is None:
            verify_max_attempts = getattr(settings, 'PAYMENT_VERIFY_MAX_ATTEMPTS', 3)
        if verify_backoff_seconds is None:
            verify_backoff_seconds = getattr(settings, 'PAYMENT_VERIFY_BACKOFF_SECONDS', 0.5)
        self.verify_max_attempts = max(1, int(verify_max_attempts))
        self.verify_backoff_seconds = verify_backoff_seconds

    # Initiate

    def initiate(self, order_id: str, amount: int, currency: str = 'IRR', description: str = '') -> InitiateResult:
        """
        Start a payment, failing over through the registry until a gateway accepts.

        Args:
            order_id: External order identifier
            amount: Amount in Rial
            currency: Currency the caller submitted ('IRR' or 'IRT'), for the record
            description: Text shown by the gateway

        Returns:
            InitiateResult with the redirect URL of the accepting gateway

        Raises:
            PaymentExhausted: No gateway accepted the payment
            PaymentException: The order already has a payment in another state
        """
        intent, created = self.store.create_intent(order_id, amount, currency, description)
        if not created:
            return self._resume(intent, amount)

        tried = []
        while True:
            gateway_id = self.registry.next_candidate(excluding=tried)
            if gateway_id is None:
                break
            tried.append(gateway_id)

            self.store.transition(
                order_id,
                [PaymentIntent.STATUS_CREATED, PaymentIntent.STATUS_ATTEMPTING],
                PaymentIntent.STATUS_ATTEMPTING,
                current_gateway=gateway_id
            )
            attempt = self.store.append_attempt(intent, gateway_id)
            response = self._request_payment(gateway_id, intent)

            if response.success:
                return self._accept(intent, attempt, gateway_id, response)

            outcome = AttemptRecord.OUTCOME_TIMED_OUT if response.timed_out else AttemptRecord.OUTCOME_FAILED
            self.store.resolve_attempt(attempt, outcome, error_code=response.error_code)
            self.registry.record_failure(gateway_id, retryable=response.retryable)

            log = logger.error if response.error_code == PROTOCOL_ERROR else logger.warning
            log(
                f"Gateway {gateway_id} failed for order {order_id}, failing over: {response.error_message}",
                extra={
                    'order_id': order_id,
                    'gateway': gateway_id,
                    'error_code': response.error_code,
                    'outcome': outcome,
                }
            )

        self.store.transition(
            order_id,
            [PaymentIntent.STATUS_CREATED, PaymentIntent.STATUS_ATTEMPTING],
            PaymentIntent.STATUS_EXHAUSTED,
            current_gateway=''
        )
        logger.error(
            f"All gateways exhausted for order {order_id}",
            extra={'order_id': order_id, 'tried': tried}
        )
        raise PaymentExhausted(order_id)

    def _request_payment(self, gateway_id: str, intent: PaymentIntent) -> GatewayResponse:
        """Call the adapter; whatever happens, return a response so the attempt is resolved."""
        try:
            gateway = self.gateway_factory(gateway_id)
            return gateway.request_payment(
                amount=intent.amount,
                order_id=intent.order_id,
                description=intent.description or f"Order {intent.order_id}",
                callback_url=callback_url_for(gateway_id),
            )
        except GatewayException as e:
            return GatewayResponse(
                success=False,
                error_message=e.message,
                error_code=PROTOCOL_ERROR,
                retryable=False,
            )
        except Exception as e:
            logger.error(
                f"Unexpected error from gateway {gateway_id}",
                extra={'order_id': intent.order_id, 'gateway': gateway_id, 'error': str(e)},
                exc_info=True
            )
            return GatewayResponse(
                success=False,
                error_message=str(e),
                error_code=PROTOCOL_ERROR,
                retryable=False,
            )

    def _accept(self, intent, attempt, gateway_id, response) -> InitiateResult:
        reference = response.data['provider_reference']
        redirect_url = response.data['redirect_url']

        self.store.resolve_attempt(attempt, AttemptRecord.OUTCOME_REDIRECTED, provider_reference=reference)
        self.registry.record_success(gateway_id)

        moved = self.store.transition(
            intent.order_id,
            [PaymentIntent.STATUS_ATTEMPTING],
            PaymentIntent.STATUS_REDIRECTED,
            current_gateway=gateway_id,
            redirect_url=redirect_url
        )
        if not moved:
            # The reaper expired the intent while the gateway was answering
            raise PaymentException(
                message=f"Payment for order {intent.order_id} was closed while redirecting",
                error_code=ALREADY_FINALIZED,
                order_id=intent.order_id
            )

        logger.info(
            f"Order {intent.order_id} redirected to {gateway_id}",
            extra={'order_id': intent.order_id, 'gateway': gateway_id, 'provider_reference': reference}
        )
        return InitiateResult(
            order_id=intent.order_id,
            redirect_url=redirect_url,
            gateway=gateway_id,
            status=PaymentIntent.STATUS_REDIRECTED,
        )

    def _resume(self, intent: PaymentIntent, amount: int) -> InitiateResult:
        """Answer a repeated initiate for an order that already has an intent."""
        if intent.amount != amount:
            raise PaymentException(
                message=f"Order {intent.order_id} already has a payment for a different amount",
                error_code=ORDER_CONFLICT,
                order_id=intent.order_id
            )

        if intent.status == PaymentIntent.STATUS_REDIRECTED and intent.redirect_url:
            logger.info(f"Reusing redirect for order {intent.order_id}")
            return InitiateResult(
                order_id=intent.order_id,
                redirect_url=intent.redirect_url,
                gateway=intent.current_gateway,
                status=intent.status,
                resumed=True,
            )

        if intent.status in (
            PaymentIntent.STATUS_CREATED,
            PaymentIntent.STATUS_ATTEMPTING,
            PaymentIntent.STATUS_REDIRECTED,
            PaymentIntent.STATUS_VERIFYING,
        ):
            raise PaymentException(
                message=f"Payment for order {intent.order_id} is already in progress",
                error_code=PAYMENT_IN_PROGRESS,
                retryable=True,
                order_id=intent.order_id
            )

        raise PaymentException(
            message=f"Payment for order {intent.order_id} is already {intent.status}",
            error_code=ALREADY_FINALIZED,
            order_id=intent.order_id
        )

    # Verify

    def verify(
        self,
        order_id: str,
        gateway_id: str,
        provider_reference: str,
        claimed_amount: Optional[int] = None,
        callback_succeeded: bool = True,
        claimed_unit: Optional[str] = None
    ) -> VerificationOutcome:
        """
        Reconcile a callback against the stored payment and finalize it.

        Args:
            order_id: External order identifier
            gateway_id: Gateway the callback claims to come from
            provider_reference: Reference carried by the callback
            claimed_amount: Amount carried by the callback, in Rial, if any
            callback_succeeded: False when the gateway reported a cancelled payment
            claimed_unit: Unit the gateway charged in; defaults to the gateway's configured unit

        Returns:
            VerificationOutcome; ``alreadyFinalized`` for replays

        Raises:
            PaymentException: Unknown order or an intent that was never redirected
        """
        intent = self.store.get_intent(order_id)
        if intent is None:
            raise PaymentException(
                message=f"No payment found for order {order_id}",
                error_code=INTENT_NOT_FOUND,
                order_id=order_id
            )

        if self.store.get_verification(gateway_id, provider_reference) is not None:
            logger.info(
                f"Replayed callback {gateway_id}:{provider_reference} for order {order_id}",
                extra={'order_id': order_id, 'gateway': gateway_id}
            )
            return self._already_finalized(intent, gateway_id, provider_reference)

        if intent.is_terminal() or intent.status == PaymentIntent.STATUS_VERIFYING:
            return self._already_finalized(intent, gateway_id, provider_reference)

        if intent.status != PaymentIntent.STATUS_REDIRECTED:
            raise PaymentException(
                message=f"Payment for order {order_id} is {intent.status}, not awaiting a callback",
                error_code=INVALID_STATE,
                retryable=True,
                order_id=order_id
            )

        if claimed_amount is not None and claimed_unit is None:
            claimed_unit = self._gateway_unit(gateway_id)

        verdict = self.reconciler.check_callback(
            intent,
            intent.in_flight_attempt(),
            gateway_id,
            provider_reference,
            claimed_amount,
            claimed_unit or UNIT_RIAL
        )
        if verdict is None and not callback_succeeded:
            verdict = VERDICT_GATEWAY_REJECTED
        if verdict is not None:
            return self._finalize(intent, PaymentIntent.STATUS_REDIRECTED, gateway_id, provider_reference, verdict)

        if not self.store.transition(order_id, [PaymentIntent.STATUS_REDIRECTED], PaymentIntent.STATUS_VERIFYING):
            return self._already_finalized(intent, gateway_id, provider_reference)

        response = self._verify_with_retries(gateway_id, provider_reference, intent)
        verdict, error_code = self.reconciler.reconcile(intent, response)

        return self._finalize(
            intent,
            PaymentIntent.STATUS_VERIFYING,
            gateway_id,
            provider_reference,
            verdict,
            provider_transaction_id=response.data.get('provider_transaction_id') or '',
            error_code=error_code
        )

    def _gateway_unit(self, gateway_id: str) -> str:
        try:
            return self.gateway_factory(gateway_id).unit
        except GatewayException:
            return UNIT_RIAL

    def _verify_with_retries(self, gateway_id: str, provider_reference: str, intent: PaymentIntent) -> GatewayResponse:
        """
        Verify against the gateway that issued the reference.

        Only transport failures are retried, with exponential backoff; the
        reference is gateway specific so there is no failover here.
        """
        response = None
        for attempt_number in range(1, self.verify_max_attempts + 1):
            try:
                gateway = self.gateway_factory(gateway_id)
                response = gateway.verify_payment(provider_reference, intent.amount)
            except Exception as e:
                logger.error(
                    f"Unexpected error verifying order {intent.order_id} with {gateway_id}",
                    extra={'order_id': intent.order_id, 'gateway': gateway_id, 'error': str(e)},
                    exc_info=True
                )
                response = GatewayResponse(
                    success=False,
                    error_message=str(e),
                    error_code=PROTOCOL_ERROR,
                )

            if response.success or response.error_code != NETWORK_ERROR:
                return response

            if attempt_number < self.verify_max_attempts:
                delay = self.verify_backoff_seconds * (2 ** (attempt_number - 1))
                logger.warning(
                    f"Verify attempt {attempt_number} for order {intent.order_id} failed, retrying in {delay}s",
                    extra={'order_id': intent.order_id, 'gateway': gateway_id}
                )
                self.sleep(delay)

        return response

    def _finalize(
        self,
        intent: PaymentIntent,
        from_status: str,
        gateway_id: str,
        provider_reference: str,
        verdict: str,
        provider_transaction_id: str = '',
        error_code: str = ''
    ) -> VerificationOutcome:
        to_status = PaymentIntent.STATUS_CONFIRMED if verdict == VERDICT_CONFIRMED else PaymentIntent.STATUS_FAILED
        verification = {
            'gateway': gateway_id,
            'provider_reference': provider_reference,
            'claimed_amount': intent.amount,
            'verdict': verdict,
            'provider_transaction_id': provider_transaction_id,
            'error_code': error_code or VERDICT_ERROR_CODES.get(verdict, ''),
        }

        if not self.store.finalize(intent.order_id, from_status, to_status, verification):
            return self._already_finalized(intent, gateway_id, provider_reference)

        intent.refresh_from_db()
        if to_status == PaymentIntent.STATUS_CONFIRMED:
            logger.info(
                f"Payment for order {intent.order_id} confirmed via {gateway_id}",
                extra={'order_id': intent.order_id, 'gateway': gateway_id}
            )
            payment_confirmed.send(sender=PaymentIntent, intent=intent, verification=verification)
        else:
            logger.warning(
                f"Payment for order {intent.order_id} failed verification: {verdict}",
                extra={'order_id': intent.order_id, 'gateway': gateway_id, 'verdict': verdict}
            )
            payment_failed.send(sender=PaymentIntent, intent=intent, verification=verification)

            from .tasks import send_payment_review_alert
            send_payment_review_alert.delay(intent.order_id, verdict, gateway_id, provider_reference)

        return VerificationOutcome(
            order_id=intent.order_id,
            gateway=gateway_id,
            provider_reference=provider_reference,
            verdict=verdict,
            status=intent.status,
        )

    def _already_finalized(self, intent, gateway_id, provider_reference) -> VerificationOutcome:
        intent.refresh_from_db()
        return VerificationOutcome(
            order_id=intent.order_id,
            gateway=gateway_id,
            provider_reference=provider_reference,
            verdict=VERDICT_ALREADY_FINALIZED,
            status=intent.status,
        )

    # Callbacks

    def handle_callback(self, gateway_id: str, params: Dict[str, Any]) -> VerificationOutcome:
        """
        Parse a gateway redirect in that gateway's dialect and verify it.

        Raises:
            PaymentException: Unknown gateway, unreadable callback or unknown reference
        """
        try:
            gateway = self.gateway_factory(gateway_id)
        except GatewayException as e:
            raise PaymentException(message=e.message, error_code=UNKNOWN_GATEWAY)

        try:
            callback = gateway.parse_callback(params)
        except GatewayException as e:
            raise PaymentException(message=e.message, error_code=PROTOCOL_ERROR)

        reference = callback['provider_reference']
        intent = self.store.find_intent_by_reference(gateway_id, reference)
        if intent is None and callback.get('order_id'):
            intent = self.store.get_intent(callback['order_id'])
        if intent is None:
            raise PaymentException(
                message=f"No payment found for {gateway_id} reference {reference}",
                error_code=INTENT_NOT_FOUND
            )

        return self.verify(
            intent.order_id,
            gateway_id,
            reference,
            claimed_amount=callback.get('claimed_amount'),
            callback_succeeded=callback.get('succeeded', True),
            claimed_unit=gateway.unit
        )

    # Queries

    def get_status(self, order_id: str) -> PaymentIntent:
        intent = self.store.get_intent(order_id)
        if intent is None:
            raise PaymentException(
                message=f"No payment found for order {order_id}",
                error_code=INTENT_NOT_FOUND,
                order_id=order_id
            )
        return intent
