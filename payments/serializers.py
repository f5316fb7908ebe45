from rest_framework import serializers
from .gateways.factory import list_available_gateways
from .models import PaymentIntent, AttemptRecord, VerificationResult


TOMAN_TO_RIAL = 10


class AttemptRecordSerializer(serializers.ModelSerializer):
    """
    Serializer for one gateway attempt in the failover sequence.
    """
    gateway_display = serializers.CharField(
        source='get_gateway_display',
        read_only=True
    )

    class Meta:
        model = AttemptRecord
        fields = [
            'sequence',
            'gateway',
            'gateway_display',
            'provider_reference',
            'outcome',
            'error_code',
            'requested_at',
            'responded_at'
        ]
        read_only_fields = fields


class VerificationResultSerializer(serializers.ModelSerializer):
    """
    Serializer for a recorded verification verdict.
    """

    class Meta:
        model = VerificationResult
        fields = [
            'gateway',
            'provider_reference',
            'claimed_amount',
            'verdict',
            'provider_transaction_id',
            'error_code',
            'verified_at'
        ]
        read_only_fields = fields


class PaymentIntentSerializer(serializers.ModelSerializer):
    """
    Serializer for payment intent data.
    Includes the full attempt audit trail and verification results.
    """
    amount_display = serializers.ReadOnlyField()
    status_display = serializers.CharField(
        source='get_status_display',
        read_only=True
    )
    attempts = AttemptRecordSerializer(many=True, read_only=True)
    verifications = VerificationResultSerializer(many=True, read_only=True)

    class Meta:
        model = PaymentIntent
        fields = [
            'order_id',
            'amount',
            'amount_display',
            'currency',
            'description',
            'status',
            'status_display',
            'current_gateway',
            'redirect_url',
            'attempts',
            'verifications',
            'created_at',
            'updated_at',
            'finalized_at'
        ]
        read_only_fields = fields


class InitiatePaymentSerializer(serializers.Serializer):
    """
    Serializer for starting a payment.

    Toman amounts are converted to Rial here, once, before they reach the
    orchestrator; ``amount_irr`` is the value the core works with.
    """
    order_id = serializers.CharField(max_length=100)
    amount = serializers.IntegerField(min_value=1)
    currency = serializers.ChoiceField(choices=PaymentIntent.CURRENCY_CHOICES, default='IRR')
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')

    def validate_order_id(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("order_id must not be blank")
        return value

    def validate(self, attrs):
        """Convert the submitted amount to Rial"""
        if attrs['currency'] == 'IRT':
            attrs['amount_irr'] = attrs['amount'] * TOMAN_TO_RIAL
        else:
            attrs['amount_irr'] = attrs['amount']
        return attrs


class VerifyPaymentSerializer(serializers.Serializer):
    """
    Serializer for a verification request relayed by the UI layer.

    ``amount`` is optional and only ever compared against the stored amount;
    it is never used as the amount to verify.
    """
    gateway_id = serializers.CharField(max_length=20)
    provider_reference = serializers.CharField(max_length=255)
    order_id = serializers.CharField(max_length=100)
    amount = serializers.IntegerField(min_value=0, required=False)

    def validate_gateway_id(self, value):
        value = value.strip().lower()
        if value not in list_available_gateways():
            raise serializers.ValidationError(f"Unsupported payment gateway: {value}")
        return value
