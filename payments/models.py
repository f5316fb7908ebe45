import uuid
from django.core.exceptions import ValidationError
from django.db import models


GATEWAY_CHOICES = [
    ('zarinpal', 'ZarinPal'),
    ('payir', 'Pay.ir'),
    ('nextpay', 'NextPay'),
]


class PaymentIntent(models.Model):
    """
    One attempted or completed payment for an external order.
    Amounts are always stored in Rial; the status field is owned by the
    payment orchestrator.
    """
    STATUS_CREATED = 'created'
    STATUS_ATTEMPTING = 'attempting'
    STATUS_REDIRECTED = 'redirected'
    STATUS_VERIFYING = 'verifying'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_FAILED = 'failed'
    STATUS_EXHAUSTED = 'exhausted'

    STATUS_CHOICES = [
        (STATUS_CREATED, 'Created'),
        (STATUS_ATTEMPTING, 'Attempting'),
        (STATUS_REDIRECTED, 'Redirected'),
        (STATUS_VERIFYING, 'Verifying'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_EXHAUSTED, 'Exhausted'),
    ]

    TERMINAL_STATUSES = (STATUS_CONFIRMED, STATUS_FAILED, STATUS_EXHAUSTED)
    OPEN_STATUSES = (STATUS_CREATED, STATUS_ATTEMPTING, STATUS_REDIRECTED)

    CURRENCY_CHOICES = [
        ('IRR', 'Rial'),
        ('IRT', 'Toman'),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the payment intent"
    )
    order_id = models.CharField(
        max_length=100,
        unique=True,
        help_text="External order identifier"
    )
    amount = models.PositiveBigIntegerField(
        help_text="Amount in Rial (e.g., 150000)"
    )
    currency = models.CharField(
        max_length=3,
        choices=CURRENCY_CHOICES,
        default='IRR',
        help_text="Currency the amount was submitted in; stored amount is always Rial"
    )
    description = models.CharField(
        max_length=255,
        blank=True,
        help_text="Text shown to the customer by the gateway"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_CREATED,
        help_text="Lifecycle state of the payment"
    )
    current_gateway = models.CharField(
        max_length=20,
        choices=GATEWAY_CHOICES,
        blank=True,
        help_text="Gateway the payment is currently in flight on"
    )
    redirect_url = models.URLField(
        max_length=500,
        blank=True,
        help_text="Redirect URL issued by the in-flight gateway"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    finalized_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment reached a terminal state"
    )

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Payment Intent'
        verbose_name_plural = 'Payment Intents'
        indexes = [
            models.Index(fields=['status', 'updated_at'], name='payments_pa_status_5b1f0c_idx'),
            models.Index(fields=['current_gateway', 'status'], name='payments_pa_current_8d2e41_idx'),
        ]

    def __str__(self):
        return f"{self.order_id} - {self.amount_display} ({self.status})"

    def save(self, *args, **kwargs):
        """Reject amount changes on existing intents"""
        if not self._state.adding:
            stored = PaymentIntent.objects.filter(pk=self.pk).values_list('amount', flat=True).first()
            if stored is not None and stored != self.amount:
                raise ValidationError("Payment amount is immutable after creation")
        super().save(*args, **kwargs)

    @property
    def amount_display(self):
        """Returns formatted amount (e.g., '150,000 IRR')"""
        return f"{self.amount:,} IRR"

    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def in_flight_attempt(self):
        """The attempt the intent is currently waiting on, if any"""
        return self.attempts.filter(
            outcome__in=[AttemptRecord.OUTCOME_PENDING, AttemptRecord.OUTCOME_REDIRECTED]
        ).order_by('-sequence').first()


class AttemptRecord(models.Model):
    """
    One gateway's try at processing a payment intent.
    Records are appended in failover order and form the audit trail.
    """
    OUTCOME_PENDING = 'pending'
    OUTCOME_REDIRECTED = 'redirected'
    OUTCOME_FAILED = 'failed'
    OUTCOME_TIMED_OUT = 'timedOut'

    OUTCOME_CHOICES = [
        (OUTCOME_PENDING, 'Pending'),
        (OUTCOME_REDIRECTED, 'Redirected'),
        (OUTCOME_FAILED, 'Failed'),
        (OUTCOME_TIMED_OUT, 'Timed Out'),
    ]

    intent = models.ForeignKey(
        PaymentIntent,
        on_delete=models.CASCADE,
        related_name='attempts',
        help_text="Payment this attempt belongs to"
    )
    sequence = models.PositiveIntegerField(
        help_text="Position of this attempt in the failover sequence"
    )
    gateway = models.CharField(
        max_length=20,
        choices=GATEWAY_CHOICES,
        help_text="Gateway contacted by this attempt"
    )
    provider_reference = models.CharField(
        max_length=255,
        blank=True,
        help_text="Authority/token issued by the gateway"
    )
    outcome = models.CharField(
        max_length=20,
        choices=OUTCOME_CHOICES,
        default=OUTCOME_PENDING,
        help_text="Result of the gateway request"
    )
    error_code = models.CharField(
        max_length=50,
        blank=True,
        help_text="Normalized error code when the attempt failed"
    )
    requested_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway answered or the call gave up"
    )

    class Meta:
        ordering = ['intent', 'sequence']
        verbose_name = 'Attempt Record'
        verbose_name_plural = 'Attempt Records'
        constraints = [
            models.UniqueConstraint(fields=['intent', 'sequence'], name='unique_attempt_sequence'),
        ]
        indexes = [
            models.Index(fields=['gateway', 'provider_reference'], name='payments_at_gateway_3c7a9e_idx'),
        ]

    def __str__(self):
        return f"{self.intent.order_id} #{self.sequence} {self.gateway} ({self.outcome})"


class VerificationResult(models.Model):
    """
    Outcome of reconciling a gateway callback.
    At most one row exists per gateway reference; replays never add rows.
    """
    VERDICT_CHOICES = [
        ('confirmed', 'Confirmed'),
        ('amountMismatch', 'Amount Mismatch'),
        ('referenceMismatch', 'Reference Mismatch'),
        ('gatewayRejected', 'Gateway Rejected'),
        ('alreadyFinalized', 'Already Finalized'),
    ]

    intent = models.ForeignKey(
        PaymentIntent,
        on_delete=models.CASCADE,
        related_name='verifications',
        help_text="Payment this verification finalized"
    )
    gateway = models.CharField(
        max_length=20,
        choices=GATEWAY_CHOICES,
        help_text="Gateway named by the callback"
    )
    provider_reference = models.CharField(
        max_length=255,
        help_text="Reference carried by the callback"
    )
    claimed_amount = models.PositiveBigIntegerField(
        help_text="Stored amount in Rial the verification was checked against"
    )
    verdict = models.CharField(
        max_length=20,
        choices=VERDICT_CHOICES,
        help_text="Reconciliation verdict"
    )
    provider_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Gateway transaction/reference id on success"
    )
    error_code = models.CharField(
        max_length=50,
        blank=True,
        help_text="Adapter error code when verification could not complete"
    )
    verified_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-verified_at']
        verbose_name = 'Verification Result'
        verbose_name_plural = 'Verification Results'
        constraints = [
            models.UniqueConstraint(
                fields=['gateway', 'provider_reference'],
                name='unique_verification_reference'
            ),
        ]

    def __str__(self):
        return f"{self.gateway}:{self.provider_reference} {self.verdict}"
