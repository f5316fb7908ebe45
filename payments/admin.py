"""
Django Admin configuration for Payments app.

Provides admin interfaces for:
- Payment intents (with inline attempt audit trail and verifications)
- Verification results (for manual review of mismatches)
"""

from django.contrib import admin, messages
from django.utils.html import format_html
from .models import PaymentIntent, AttemptRecord, VerificationResult


class AttemptRecordInline(admin.TabularInline):
    """
    Read-only failover sequence of a payment.
    """
    model = AttemptRecord
    extra = 0
    fields = ['sequence', 'gateway', 'outcome', 'provider_reference', 'error_code', 'requested_at', 'responded_at']
    readonly_fields = fields
    can_delete = False
    ordering = ['sequence']

    def has_add_permission(self, request, obj=None):
        """Attempts are only written by the orchestrator"""
        return False


class VerificationResultInline(admin.TabularInline):
    model = VerificationResult
    extra = 0
    fields = ['gateway', 'provider_reference', 'verdict', 'provider_transaction_id', 'error_code', 'verified_at']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(PaymentIntent)
class PaymentIntentAdmin(admin.ModelAdmin):
    """
    Admin interface for PaymentIntent model.

    Features:
    - List view with order, amount, status and in-flight gateway
    - Filter by status, gateway, dates
    - Search by order id and gateway references
    - Inline attempt audit trail
    - Action to expire stale open payments
    """

    list_display = [
        'order_id',
        'amount_display_formatted',
        'status_display',
        'current_gateway',
        'attempt_count',
        'created_at',
        'finalized_at',
    ]

    list_filter = [
        'status',
        'current_gateway',
        'currency',
        'created_at',
    ]

    search_fields = [
        'order_id',
        'attempts__provider_reference',
    ]

    readonly_fields = [
        'id',
        'order_id',
        'amount',
        'currency',
        'description',
        'status',
        'current_gateway',
        'redirect_url',
        'created_at',
        'updated_at',
        'finalized_at',
    ]

    fieldsets = (
        ('Order', {
            'fields': ('id', 'order_id', 'amount', 'currency', 'description')
        }),
        ('State', {
            'fields': ('status', 'current_gateway', 'redirect_url')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at', 'finalized_at')
        }),
    )

    inlines = [AttemptRecordInline, VerificationResultInline]
    actions = ['expire_selected']

    def amount_display_formatted(self, obj):
        return obj.amount_display
    amount_display_formatted.short_description = 'Amount'
    amount_display_formatted.admin_order_field = 'amount'

    def status_display(self, obj):
        """Display status with color coding"""
        status_colors = {
            'created': 'gray',
            'attempting': 'orange',
            'redirected': 'blue',
            'verifying': 'purple',
            'confirmed': 'green',
            'failed': 'red',
            'exhausted': 'red',
        }
        color = status_colors.get(obj.status, 'gray')
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            color,
            obj.get_status_display()
        )
    status_display.short_description = 'Status'
    status_display.admin_order_field = 'status'

    def attempt_count(self, obj):
        return obj.attempts.count()
    attempt_count.short_description = 'Attempts'

    def expire_selected(self, request, queryset):
        """Fail selected payments that are still waiting on a gateway"""
        from .store import DjangoPaymentRecordStore

        store = DjangoPaymentRecordStore()
        expired = 0
        for intent in queryset.filter(status__in=PaymentIntent.OPEN_STATUSES):
            if store.transition(intent.order_id, PaymentIntent.OPEN_STATUSES, PaymentIntent.STATUS_FAILED):
                expired += 1

        self.message_user(
            request,
            f"Expired {expired} payment(s).",
            level=messages.SUCCESS if expired else messages.WARNING
        )
    expire_selected.short_description = "Expire selected open payments"

    def has_add_permission(self, request):
        return False


@admin.register(VerificationResult)
class VerificationResultAdmin(admin.ModelAdmin):
    """
    Admin interface for VerificationResult model.

    Mismatch verdicts are highlighted for manual review.
    """

    list_display = [
        'provider_reference',
        'order_link',
        'gateway',
        'verdict_display',
        'claimed_amount',
        'provider_transaction_id',
        'verified_at',
    ]

    list_filter = [
        'verdict',
        'gateway',
        'verified_at',
    ]

    search_fields = [
        'provider_reference',
        'provider_transaction_id',
        'intent__order_id',
    ]

    readonly_fields = [
        'intent',
        'gateway',
        'provider_reference',
        'claimed_amount',
        'verdict',
        'provider_transaction_id',
        'error_code',
        'verified_at',
    ]

    def order_link(self, obj):
        return obj.intent.order_id
    order_link.short_description = 'Order'
    order_link.admin_order_field = 'intent__order_id'

    def verdict_display(self, obj):
        """Display verdict with color coding"""
        verdict_colors = {
            'confirmed': 'green',
            'amountMismatch': 'red',
            'referenceMismatch': 'red',
            'gatewayRejected': 'orange',
        }
        color = verdict_colors.get(obj.verdict, 'gray')
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            color,
            obj.get_verdict_display()
        )
    verdict_display.short_description = 'Verdict'
    verdict_display.admin_order_field = 'verdict'

    def get_queryset(self, request):
        """Optimize queryset with select_related"""
        return super().get_queryset(request).select_related('intent')

    def has_add_permission(self, request):
        return False
