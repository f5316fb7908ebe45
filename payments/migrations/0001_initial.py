from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='PaymentIntent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier for the payment intent', primary_key=True, serialize=False)),
                ('order_id', models.CharField(help_text='External order identifier', max_length=100, unique=True)),
                ('amount', models.PositiveBigIntegerField(help_text='Amount in Rial (e.g., 150000)')),
                ('currency', models.CharField(choices=[('IRR', 'Rial'), ('IRT', 'Toman')], default='IRR', help_text='Currency the amount was submitted in; stored amount is always Rial', max_length=3)),
                ('description', models.CharField(blank=True, help_text='Text shown to the customer by the gateway', max_length=255)),
                ('status', models.CharField(choices=[('created', 'Created'), ('attempting', 'Attempting'), ('redirected', 'Redirected'), ('verifying', 'Verifying'), ('confirmed', 'Confirmed'), ('failed', 'Failed'), ('exhausted', 'Exhausted')], default='created', help_text='Lifecycle state of the payment', max_length=20)),
                ('current_gateway', models.CharField(blank=True, choices=[('zarinpal', 'ZarinPal'), ('payir', 'Pay.ir'), ('nextpay', 'NextPay')], help_text='Gateway the payment is currently in flight on', max_length=20)),
                ('redirect_url', models.URLField(blank=True, help_text='Redirect URL issued by the in-flight gateway', max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('finalized_at', models.DateTimeField(blank=True, help_text='When the payment reached a terminal state', null=True)),
            ],
            options={
                'verbose_name': 'Payment Intent',
                'verbose_name_plural': 'Payment Intents',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'updated_at'], name='payments_pa_status_5b1f0c_idx'),
                    models.Index(fields=['current_gateway', 'status'], name='payments_pa_current_8d2e41_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AttemptRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sequence', models.PositiveIntegerField(help_text='Position of this attempt in the failover sequence')),
                ('gateway', models.CharField(choices=[('zarinpal', 'ZarinPal'), ('payir', 'Pay.ir'), ('nextpay', 'NextPay')], help_text='Gateway contacted by this attempt', max_length=20)),
                ('provider_reference', models.CharField(blank=True, help_text='Authority/token issued by the gateway', max_length=255)),
                ('outcome', models.CharField(choices=[('pending', 'Pending'), ('redirected', 'Redirected'), ('failed', 'Failed'), ('timedOut', 'Timed Out')], default='pending', help_text='Result of the gateway request', max_length=20)),
                ('error_code', models.CharField(blank=True, help_text='Normalized error code when the attempt failed', max_length=50)),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('responded_at', models.DateTimeField(blank=True, help_text='When the gateway answered or the call gave up', null=True)),
                ('intent', models.ForeignKey(help_text='Payment this attempt belongs to', on_delete=django.db.models.deletion.CASCADE, related_name='attempts', to='payments.paymentintent')),
            ],
            options={
                'verbose_name': 'Attempt Record',
                'verbose_name_plural': 'Attempt Records',
                'ordering': ['intent', 'sequence'],
                'indexes': [
                    models.Index(fields=['gateway', 'provider_reference'], name='payments_at_gateway_3c7a9e_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('intent', 'sequence'), name='unique_attempt_sequence'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VerificationResult',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('gateway', models.CharField(choices=[('zarinpal', 'ZarinPal'), ('payir', 'Pay.ir'), ('nextpay', 'NextPay')], help_text='Gateway named by the callback', max_length=20)),
                ('provider_reference', models.CharField(help_text='Reference carried by the callback', max_length=255)),
                ('claimed_amount', models.PositiveBigIntegerField(help_text='Stored amount in Rial the verification was checked against')),
                ('verdict', models.CharField(choices=[('confirmed', 'Confirmed'), ('amountMismatch', 'Amount Mismatch'), ('referenceMismatch', 'Reference Mismatch'), ('gatewayRejected', 'Gateway Rejected'), ('alreadyFinalized', 'Already Finalized')], help_text='Reconciliation verdict', max_length=20)),
                ('provider_transaction_id', models.CharField(blank=True, help_text='Gateway transaction/reference id on success', max_length=255)),
                ('error_code', models.CharField(blank=True, help_text='Adapter error code when verification could not complete', max_length=50)),
                ('verified_at', models.DateTimeField(auto_now_add=True)),
                ('intent', models.ForeignKey(help_text='Payment this verification finalized', on_delete=django.db.models.deletion.CASCADE, related_name='verifications', to='payments.paymentintent')),
            ],
            options={
                'verbose_name': 'Verification Result',
                'verbose_name_plural': 'Verification Results',
                'ordering': ['-verified_at'],
                'constraints': [
                    models.UniqueConstraint(fields=('gateway', 'provider_reference'), name='unique_verification_reference'),
                ],
            },
        ),
    ]
