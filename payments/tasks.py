"""
Celery tasks for the payments app.

These tasks handle asynchronous operations like:
- Expiring payments the customer abandoned before the gateway called back
- Alerting admins about payments that need manual review
"""
from celery import shared_task
from django.conf import settings
from django.core.mail import mail_admins
from django.utils import timezone
from datetime import timedelta
import logging

from .models import PaymentIntent
from .store import DjangoPaymentRecordStore, VERIFY_INTERRUPTED

logger = logging.getLogger(__name__)


SECURITY_VERDICTS = ('amountMismatch', 'referenceMismatch')


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def expire_abandoned_payments(self):
    """
    Fail payments that never came back from the gateway.

    A customer who closes the browser before the redirect completes leaves
    the intent in created/attempting/redirected. This task should run
    periodically (e.g., every 5 minutes) and moves intents untouched for
    PAYMENT_INTENT_TTL_MINUTES to failed.

    Intents left in verifying for PAYMENT_VERIFY_STALE_MINUTES lost their
    worker mid-verification. They are failed too, and sent to admins for
    manual review since the gateway may have settled them.

    Returns:
        dict: Summary of the expiry run
    """
    try:
        ttl_minutes = getattr(settings, 'PAYMENT_INTENT_TTL_MINUTES', 30)
        cutoff = timezone.now() - timedelta(minutes=ttl_minutes)

        store = DjangoPaymentRecordStore()
        expired = store.expire_stale(cutoff)

        stale_minutes = getattr(settings, 'PAYMENT_VERIFY_STALE_MINUTES', 10)
        interrupted = store.expire_stale_verifications(timezone.now() - timedelta(minutes=stale_minutes))
        for verification in interrupted:
            logger.error(
                f"Verification of {verification['order_id']} was interrupted, failing it for manual review",
                extra={'order_id': verification['order_id'], 'gateway': verification['gateway']}
            )
            send_payment_review_alert.delay(
                verification['order_id'],
                verification['verdict'],
                verification['gateway'],
                verification['provider_reference'],
                error_code=verification['error_code']
            )

        result = {
            'status': 'completed',
            'expired_count': len(expired),
            'expired_orders': expired,
            'interrupted_orders': [v['order_id'] for v in interrupted],
            'message': f'Expired {len(expired)} abandoned and {len(interrupted)} interrupted payments'
        }

        logger.info(f"Abandoned payment expiry completed: {result}")
        return result

    except Exception as exc:
        logger.error(f"Critical error in expire_abandoned_payments task: {str(exc)}", exc_info=True)
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_payment_review_alert(self, order_id, verdict, gateway, provider_reference, error_code=''):
    """
    Email admins about a payment that failed verification.

    Amount and reference mismatches are flagged as possible tampering;
    other verdicts are provider-side rejections kept for reconciliation.

    Args:
        order_id (str): External order identifier
        verdict (str): Verification verdict
        gateway (str): Gateway named by the callback
        provider_reference (str): Reference carried by the callback
        error_code (str): Set when the verdict was not reached with the gateway

    Returns:
        dict: Status of the alert
    """
    try:
        intent = PaymentIntent.objects.get(order_id=order_id)

        if error_code == VERIFY_INTERRUPTED:
            subject = f"Payment for order {order_id} needs manual review: verification interrupted"
        elif verdict in SECURITY_VERDICTS:
            subject = f"Critical: Possible payment tampering on order {order_id}"
        else:
            subject = f"Payment for order {order_id} rejected by {gateway}"

        attempts = "\n".join(
            f"  #{a.sequence} {a.gateway} {a.outcome} {a.provider_reference or '-'} {a.error_code or ''}".rstrip()
            for a in intent.attempts.order_by('sequence')
        )

        mail_admins(
            subject=subject,
            message=(
                f"Verdict: {verdict}\n"
                f"Order: {order_id}\n"
                f"Stored amount: {intent.amount_display}\n"
                f"Gateway: {gateway}\n"
                f"Reference: {provider_reference}\n"
                f"Error code: {error_code or '-'}\n"
                f"Status: {intent.status}\n\n"
                f"Attempts:\n{attempts}"
            ),
            fail_silently=False
        )

        logger.info(f"Payment review alert sent for {order_id} ({verdict})")

        return {
            'status': 'success',
            'order_id': order_id,
            'verdict': verdict,
            'message': 'Payment review alert sent successfully'
        }

    except PaymentIntent.DoesNotExist:
        logger.error(f"Payment intent for order {order_id} not found")
        return {
            'status': 'error',
            'order_id': order_id,
            'message': f'Payment intent for order {order_id} does not exist'
        }

    except Exception as exc:
        logger.error(f"Error sending payment review alert: {str(exc)}", exc_info=True)
        raise self.retry(exc=exc)
