"""
Payment record store.

``PaymentRecordStore`` is the persistence contract the orchestrator relies
on; ``DjangoPaymentRecordStore`` implements it with the ORM. Every status
change is a conditional update, so two workers racing on the same intent
cannot both win a transition.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.utils import timezone

from .models import PaymentIntent, AttemptRecord, VerificationResult

logger = logging.getLogger(__name__)

VERIFY_INTERRUPTED = 'VERIFY_INTERRUPTED'


class PaymentRecordStore(ABC):
    """
    Persistence contract for payment intents, attempts and verifications.
    """

    @abstractmethod
    def create_intent(self, order_id: str, amount: int, currency: str, description: str) -> Tuple[PaymentIntent, bool]:
        """Create an intent, or return the existing one. Returns (intent, created)."""
        pass

    @abstractmethod
    def get_intent(self, order_id: str) -> Optional[PaymentIntent]:
        pass

    @abstractmethod
    def find_intent_by_reference(self, gateway: str, provider_reference: str) -> Optional[PaymentIntent]:
        pass

    @abstractmethod
    def append_attempt(self, intent: PaymentIntent, gateway: str) -> AttemptRecord:
        """Append a pending attempt at the end of the intent's sequence."""
        pass

    @abstractmethod
    def resolve_attempt(
        self,
        attempt: AttemptRecord,
        outcome: str,
        provider_reference: str = '',
        error_code: str = ''
    ) -> bool:
        """Set the outcome of a pending attempt. Returns False if it was already resolved."""
        pass

    @abstractmethod
    def transition(self, order_id: str, from_statuses: Iterable[str], to_status: str, **fields) -> bool:
        """Move an intent to ``to_status`` only if it is currently in ``from_statuses``."""
        pass

    @abstractmethod
    def finalize(self, order_id: str, from_status: str, to_status: str, verification: Dict) -> bool:
        """
        Atomically move an intent to a terminal status and record the verification.
        Returns False if the intent left ``from_status`` or the reference was already verified.
        """
        pass

    @abstractmethod
    def get_verification(self, gateway: str, provider_reference: str) -> Optional[VerificationResult]:
        pass

    @abstractmethod
    def expire_stale(self, cutoff: datetime) -> List[str]:
        """Fail open intents not touched since ``cutoff``. Returns their order ids."""
        pass

    @abstractmethod
    def expire_stale_verifications(self, cutoff: datetime) -> List[Dict]:
        """Fail intents stuck in verifying since ``cutoff``. Returns the recorded verifications."""
        pass


class DjangoPaymentRecordStore(PaymentRecordStore):
    """
    ORM-backed store. Conditional transitions are single UPDATE statements;
    finalization runs under ``select_for_update`` in one transaction.
    """

    def create_intent(self, order_id, amount, currency, description):
        try:
            with transaction.atomic():
                intent = PaymentIntent.objects.create(
                    order_id=order_id,
                    amount=amount,
                    currency=currency,
                    description=description,
                )
            return intent, True
        except IntegrityError:
            logger.info(f"Payment intent for order {order_id} already exists")
            return PaymentIntent.objects.get(order_id=order_id), False

    def get_intent(self, order_id):
        return PaymentIntent.objects.filter(order_id=order_id).first()

    def find_intent_by_reference(self, gateway, provider_reference):
        attempt = (
            AttemptRecord.objects.filter(gateway=gateway, provider_reference=provider_reference)
            .select_related('intent')
            .order_by('-requested_at')
            .first()
        )
        return attempt.intent if attempt else None

    @transaction.atomic
    def append_attempt(self, intent, gateway):
        # Lock the intent so sequence numbers stay gapless
        locked = PaymentIntent.objects.select_for_update().get(pk=intent.pk)
        last = locked.attempts.order_by('-sequence').values_list('sequence', flat=True).first()
        return AttemptRecord.objects.create(
            intent=locked,
            sequence=(last or 0) + 1,
            gateway=gateway,
            outcome=AttemptRecord.OUTCOME_PENDING,
        )

    def resolve_attempt(self, attempt, outcome, provider_reference='', error_code=''):
        now = timezone.now()
        updated = AttemptRecord.objects.filter(
            pk=attempt.pk,
            outcome=AttemptRecord.OUTCOME_PENDING
        ).update(
            outcome=outcome,
            provider_reference=provider_reference,
            error_code=error_code or '',
            responded_at=now,
        )
        if updated:
            attempt.outcome = outcome
            attempt.provider_reference = provider_reference
            attempt.error_code = error_code or ''
            attempt.responded_at = now
        return bool(updated)

    def transition(self, order_id, from_statuses, to_status, **fields):
        now = timezone.now()
        if to_status in PaymentIntent.TERMINAL_STATUSES:
            fields.setdefault('finalized_at', now)

        updated = PaymentIntent.objects.filter(
            order_id=order_id,
            status__in=list(from_statuses)
        ).update(status=to_status, updated_at=now, **fields)

        if updated:
            logger.info(
                f"Payment {order_id} -> {to_status}",
                extra={'order_id': order_id, 'status': to_status}
            )
        return bool(updated)

    def finalize(self, order_id, from_status, to_status, verification):
        try:
            with transaction.atomic():
                intent = PaymentIntent.objects.select_for_update().filter(order_id=order_id).first()
                if intent is None or intent.status != from_status:
                    return False

                now = timezone.now()
                PaymentIntent.objects.filter(pk=intent.pk).update(
                    status=to_status,
                    updated_at=now,
                    finalized_at=now,
                )
                VerificationResult.objects.create(intent=intent, **verification)
        except IntegrityError:
            logger.warning(
                f"Verification for {verification.get('gateway')}:{verification.get('provider_reference')} "
                f"already recorded, keeping the first verdict"
            )
            return False

        logger.info(
            f"Payment {order_id} finalized as {to_status}",
            extra={'order_id': order_id, 'status': to_status, 'verdict': verification.get('verdict')}
        )
        return True

    def get_verification(self, gateway, provider_reference):
        return VerificationResult.objects.filter(
            gateway=gateway,
            provider_reference=provider_reference
        ).first()

    def expire_stale(self, cutoff):
        expired = []
        stale = PaymentIntent.objects.filter(
            status__in=PaymentIntent.OPEN_STATUSES,
            updated_at__lt=cutoff
        ).values_list('order_id', flat=True)

        for order_id in list(stale):
            with transaction.atomic():
                if not self.transition(order_id, PaymentIntent.OPEN_STATUSES, PaymentIntent.STATUS_FAILED):
                    continue
                AttemptRecord.objects.filter(
                    intent__order_id=order_id,
                    outcome=AttemptRecord.OUTCOME_PENDING
                ).update(
                    outcome=AttemptRecord.OUTCOME_TIMED_OUT,
                    error_code='ABANDONED',
                    responded_at=timezone.now(),
                )
            expired.append(order_id)

        return expired

    def expire_stale_verifications(self, cutoff):
        expired = []
        stale = PaymentIntent.objects.filter(
            status=PaymentIntent.STATUS_VERIFYING,
            updated_at__lt=cutoff
        )

        for intent in list(stale):
            attempt = intent.in_flight_attempt()
            verification = {
                'gateway': intent.current_gateway,
                'provider_reference': attempt.provider_reference if attempt else '',
                'claimed_amount': intent.amount,
                'verdict': 'gatewayRejected',
                'provider_transaction_id': '',
                'error_code': VERIFY_INTERRUPTED,
            }
            if self.finalize(intent.order_id, PaymentIntent.STATUS_VERIFYING, PaymentIntent.STATUS_FAILED, verification):
                expired.append(dict(verification, order_id=intent.order_id))

        return expired
