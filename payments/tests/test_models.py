"""
Test cases for payments models.

Tests for:
- PaymentIntent model (amount immutability, status helpers, display)
- AttemptRecord model (sequence uniqueness)
- VerificationResult model (one row per gateway reference)
"""

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import TestCase

from payments.models import PaymentIntent, AttemptRecord, VerificationResult


class PaymentIntentModelTest(TestCase):
    """Test cases for PaymentIntent model"""

    def setUp(self):
        self.intent = PaymentIntent.objects.create(
            order_id='AS123',
            amount=150000,
            description='Order AS123',
        )

    def test_intent_creation(self):
        self.assertEqual(self.intent.status, PaymentIntent.STATUS_CREATED)
        self.assertEqual(self.intent.currency, 'IRR')
        self.assertIsNone(self.intent.finalized_at)
        self.assertFalse(self.intent.is_terminal())

    def test_amount_display(self):
        self.assertEqual(self.intent.amount_display, '150,000 IRR')

    def test_string_representation(self):
        self.assertIn('AS123', str(self.intent))
        self.assertIn('created', str(self.intent))

    def test_amount_is_immutable(self):
        """Test saving a changed amount is rejected"""
        self.intent.amount = 1000

        with self.assertRaises(ValidationError):
            self.intent.save()

        self.intent.refresh_from_db()
        self.assertEqual(self.intent.amount, 150000)

    def test_other_fields_can_change(self):
        self.intent.description = 'Updated'
        self.intent.save()

        self.intent.refresh_from_db()
        self.assertEqual(self.intent.description, 'Updated')

    def test_order_id_unique(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PaymentIntent.objects.create(order_id='AS123', amount=150000)

    def test_terminal_statuses(self):
        for status in PaymentIntent.TERMINAL_STATUSES:
            self.intent.status = status
            self.assertTrue(self.intent.is_terminal())

    def test_in_flight_attempt(self):
        AttemptRecord.objects.create(
            intent=self.intent, sequence=1, gateway='zarinpal', outcome=AttemptRecord.OUTCOME_FAILED
        )
        current = AttemptRecord.objects.create(
            intent=self.intent, sequence=2, gateway='payir', provider_reference='tok123',
            outcome=AttemptRecord.OUTCOME_REDIRECTED
        )

        self.assertEqual(self.intent.in_flight_attempt(), current)


class AttemptRecordModelTest(TestCase):
    """Test cases for AttemptRecord model"""

    def setUp(self):
        self.intent = PaymentIntent.objects.create(order_id='AS123', amount=150000)

    def test_sequence_unique_per_intent(self):
        AttemptRecord.objects.create(intent=self.intent, sequence=1, gateway='zarinpal')

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AttemptRecord.objects.create(intent=self.intent, sequence=1, gateway='payir')

    def test_default_outcome_pending(self):
        attempt = AttemptRecord.objects.create(intent=self.intent, sequence=1, gateway='zarinpal')

        self.assertEqual(attempt.outcome, AttemptRecord.OUTCOME_PENDING)
        self.assertIn('#1', str(attempt))


class VerificationResultModelTest(TestCase):
    """Test cases for VerificationResult model"""

    def setUp(self):
        self.intent = PaymentIntent.objects.create(order_id='AS123', amount=150000)

    def test_one_result_per_reference(self):
        VerificationResult.objects.create(
            intent=self.intent, gateway='zarinpal', provider_reference='A1',
            claimed_amount=150000, verdict='confirmed'
        )

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                VerificationResult.objects.create(
                    intent=self.intent, gateway='zarinpal', provider_reference='A1',
                    claimed_amount=150000, verdict='amountMismatch'
                )

    def test_same_reference_on_other_gateway(self):
        VerificationResult.objects.create(
            intent=self.intent, gateway='zarinpal', provider_reference='A1',
            claimed_amount=150000, verdict='confirmed'
        )
        other = VerificationResult.objects.create(
            intent=self.intent, gateway='payir', provider_reference='A1',
            claimed_amount=150000, verdict='referenceMismatch'
        )

        self.assertEqual(VerificationResult.objects.filter(provider_reference='A1').count(), 2)
        self.assertEqual(other.verdict, 'referenceMismatch')
