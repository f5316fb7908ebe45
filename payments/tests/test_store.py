"""
Test cases for the ORM payment record store.

Tests for:
- Idempotent intent creation
- Gapless attempt sequencing
- Conditional transitions and finalization
- Expiry of abandoned intents and interrupted verifications
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from payments.models import PaymentIntent, AttemptRecord, VerificationResult
from payments.store import DjangoPaymentRecordStore


def verification(verdict='confirmed', reference='A1', gateway='zarinpal'):
    return {
        'gateway': gateway,
        'provider_reference': reference,
        'claimed_amount': 150000,
        'verdict': verdict,
        'provider_transaction_id': '201' if verdict == 'confirmed' else '',
        'error_code': '',
    }


class DjangoPaymentRecordStoreTest(TestCase):

    def setUp(self):
        self.store = DjangoPaymentRecordStore()
        self.intent, _ = self.store.create_intent('AS123', 150000, 'IRR', 'Order AS123')

    def test_create_intent_is_idempotent(self):
        intent, created = self.store.create_intent('AS123', 150000, 'IRR', 'Order AS123')

        self.assertFalse(created)
        self.assertEqual(intent.pk, self.intent.pk)
        self.assertEqual(PaymentIntent.objects.count(), 1)

    def test_get_intent(self):
        self.assertEqual(self.store.get_intent('AS123'), self.intent)
        self.assertIsNone(self.store.get_intent('missing'))

    def test_append_attempt_sequences(self):
        first = self.store.append_attempt(self.intent, 'zarinpal')
        second = self.store.append_attempt(self.intent, 'payir')

        self.assertEqual((first.sequence, second.sequence), (1, 2))
        self.assertEqual(first.outcome, AttemptRecord.OUTCOME_PENDING)

    def test_resolve_attempt_once(self):
        attempt = self.store.append_attempt(self.intent, 'zarinpal')

        self.assertTrue(self.store.resolve_attempt(attempt, AttemptRecord.OUTCOME_REDIRECTED, provider_reference='A1'))
        self.assertFalse(self.store.resolve_attempt(attempt, AttemptRecord.OUTCOME_FAILED, error_code='GATEWAY_ERROR'))

        attempt.refresh_from_db()
        self.assertEqual(attempt.outcome, AttemptRecord.OUTCOME_REDIRECTED)
        self.assertEqual(attempt.provider_reference, 'A1')
        self.assertIsNotNone(attempt.responded_at)

    def test_find_intent_by_reference(self):
        attempt = self.store.append_attempt(self.intent, 'payir')
        self.store.resolve_attempt(attempt, AttemptRecord.OUTCOME_REDIRECTED, provider_reference='tok123')

        self.assertEqual(self.store.find_intent_by_reference('payir', 'tok123'), self.intent)
        self.assertIsNone(self.store.find_intent_by_reference('zarinpal', 'tok123'))

    def test_transition_is_conditional(self):
        self.assertTrue(self.store.transition('AS123', [PaymentIntent.STATUS_CREATED], PaymentIntent.STATUS_ATTEMPTING))
        self.assertFalse(self.store.transition('AS123', [PaymentIntent.STATUS_CREATED], PaymentIntent.STATUS_ATTEMPTING))

        self.intent.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_ATTEMPTING)

    def test_transition_to_terminal_sets_finalized_at(self):
        self.store.transition('AS123', [PaymentIntent.STATUS_CREATED], PaymentIntent.STATUS_EXHAUSTED)

        self.intent.refresh_from_db()
        self.assertIsNotNone(self.intent.finalized_at)

    def test_finalize_records_verification(self):
        PaymentIntent.objects.filter(pk=self.intent.pk).update(status=PaymentIntent.STATUS_VERIFYING)

        finalized = self.store.finalize(
            'AS123', PaymentIntent.STATUS_VERIFYING, PaymentIntent.STATUS_CONFIRMED, verification()
        )

        self.assertTrue(finalized)
        self.intent.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_CONFIRMED)
        self.assertEqual(self.store.get_verification('zarinpal', 'A1').verdict, 'confirmed')

    def test_finalize_from_wrong_status(self):
        finalized = self.store.finalize(
            'AS123', PaymentIntent.STATUS_VERIFYING, PaymentIntent.STATUS_CONFIRMED, verification()
        )

        self.assertFalse(finalized)
        self.assertEqual(VerificationResult.objects.count(), 0)

    def test_finalize_duplicate_reference(self):
        """Test a second verification of the same reference never overwrites the first"""
        other, _ = self.store.create_intent('AS124', 150000, 'IRR', '')
        VerificationResult.objects.create(intent=other, **verification('amountMismatch'))
        PaymentIntent.objects.filter(pk=self.intent.pk).update(status=PaymentIntent.STATUS_VERIFYING)

        finalized = self.store.finalize(
            'AS123', PaymentIntent.STATUS_VERIFYING, PaymentIntent.STATUS_CONFIRMED, verification()
        )

        self.assertFalse(finalized)
        self.intent.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_VERIFYING)
        self.assertEqual(self.store.get_verification('zarinpal', 'A1').verdict, 'amountMismatch')

    def test_expire_stale(self):
        attempt = self.store.append_attempt(self.intent, 'zarinpal')
        self.store.transition('AS123', [PaymentIntent.STATUS_CREATED], PaymentIntent.STATUS_ATTEMPTING)
        fresh, _ = self.store.create_intent('AS124', 150000, 'IRR', '')
        PaymentIntent.objects.filter(pk=self.intent.pk).update(updated_at=timezone.now() - timedelta(hours=1))

        expired = self.store.expire_stale(timezone.now() - timedelta(minutes=30))

        self.assertEqual(expired, ['AS123'])
        self.intent.refresh_from_db()
        attempt.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_FAILED)
        self.assertEqual(attempt.outcome, AttemptRecord.OUTCOME_TIMED_OUT)
        self.assertEqual(attempt.error_code, 'ABANDONED')
        fresh.refresh_from_db()
        self.assertEqual(fresh.status, PaymentIntent.STATUS_CREATED)

    def test_expire_stale_skips_verifying(self):
        PaymentIntent.objects.filter(pk=self.intent.pk).update(
            status=PaymentIntent.STATUS_VERIFYING,
            updated_at=timezone.now() - timedelta(hours=1)
        )

        self.assertEqual(self.store.expire_stale(timezone.now()), [])

    def test_expire_stale_verifications(self):
        attempt = self.store.append_attempt(self.intent, 'zarinpal')
        self.store.resolve_attempt(attempt, AttemptRecord.OUTCOME_REDIRECTED, provider_reference='A1')
        PaymentIntent.objects.filter(pk=self.intent.pk).update(
            status=PaymentIntent.STATUS_VERIFYING,
            current_gateway='zarinpal',
            updated_at=timezone.now() - timedelta(hours=1)
        )

        expired = self.store.expire_stale_verifications(timezone.now() - timedelta(minutes=10))

        self.assertEqual(len(expired), 1)
        self.assertEqual(expired[0]['order_id'], 'AS123')
        self.assertEqual(expired[0]['provider_reference'], 'A1')
        self.intent.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_FAILED)
        self.assertIsNotNone(self.intent.finalized_at)
        self.assertEqual(self.store.get_verification('zarinpal', 'A1').error_code, 'VERIFY_INTERRUPTED')

    def test_expire_stale_verifications_skips_recent(self):
        self.store.transition('AS123', [PaymentIntent.STATUS_CREATED], PaymentIntent.STATUS_VERIFYING)

        self.assertEqual(self.store.expire_stale_verifications(timezone.now() - timedelta(minutes=10)), [])
        self.intent.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_VERIFYING)
