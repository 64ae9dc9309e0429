import logging
import smtplib
import time

from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.dispatch import receiver
from django.template.loader import render_to_string

from inventory_sync.config import load_sync_config
from inventory_sync.models import Alert, SyncLog
from inventory_sync.signals import sync_finished, threshold_crossed

logger = logging.getLogger(__name__)

SEND_ERRORS = (smtplib.SMTPException, OSError)


class AlertNotifier:
    """Records stock alerts and emails them to the configured recipients.

    Delivery problems are logged, never raised: a failing mail relay must not
    fail the sync that triggered the alert.
    """

    def __init__(self, config=None, max_retries=None, retry_base_delay=None, sleep=time.sleep):
        self.config = config or load_sync_config()
        self.max_retries = max_retries or settings.ALERT_MAX_RETRIES
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.ALERT_RETRY_BASE_DELAY
        )
        self._sleep = sleep

    def notify(self, item, severity):
        """Create an Alert for `item` and email it. Returns None when suppressed."""
        open_alert = Alert.objects.filter(item=item, severity=severity, acknowledged=False).first()
        if open_alert is not None:
            logger.info(
                "Suppressing %s alert for %s: alert %s is still unacknowledged",
                severity, item.sku, open_alert.pk,
            )
            return None

        context = {
            'item': item,
            'severity': severity,
            'is_critical': severity == Alert.SEVERITY_CRITICAL,
            'app_url': settings.APP_BASE_URL,
        }
        message = self._message(item, severity)
        email_sent = False
        if self.config.alerts_enabled:
            email_sent = self.send(
                render_to_string('inventory_sync/email/stock_alert_subject.txt', context),
                render_to_string('inventory_sync/email/stock_alert.txt', context),
                render_to_string('inventory_sync/email/stock_alert.html', context),
            )
        else:
            logger.info("Email alerts disabled; recording %s alert for %s only", severity, item.sku)

        return Alert.objects.create(item=item, severity=severity, message=message, email_sent=email_sent)

    def notify_sync_failure(self, log):
        if not self.config.alerts_enabled:
            logger.info("Email alerts disabled; not reporting failed sync %s", log.pk)
            return False
        context = {'log': log, 'app_url': settings.APP_BASE_URL}
        return self.send(
            f"Inventory sync failed: {log.strategy}",
            render_to_string('inventory_sync/email/sync_failure.txt', context),
            render_to_string('inventory_sync/email/sync_failure.html', context),
        )

    def send(self, subject, text_body, html_body):
        """Send one message, retrying with exponential backoff. Returns success."""
        recipients = list(self.config.alert_recipients)
        subject = ' '.join(subject.split())
        for attempt in range(1, self.max_retries + 1):
            try:
                msg = EmailMultiAlternatives(
                    subject,
                    text_body,
                    settings.ALERT_FROM_EMAIL,
                    recipients,
                    connection=self._connection(),
                )
                msg.attach_alternative(html_body, 'text/html')
                msg.send()
            except SEND_ERRORS as exc:
                if attempt == self.max_retries:
                    logger.error(
                        "Giving up on alert email '%s' after %d attempts: %s",
                        subject, attempt, exc,
                    )
                    return False
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Alert email attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt, self.max_retries, exc, delay,
                )
                self._sleep(delay)
                continue
            logger.info("Sent alert email '%s' to %d recipients", subject, len(recipients))
            return True
        return False

    def _connection(self):
        if self.config.email_api_key:
            return get_connection(password=self.config.email_api_key)
        return get_connection()

    @staticmethod
    def _message(item, severity):
        if severity == Alert.SEVERITY_CRITICAL:
            return f"{item.name} ({item.sku}) is out of stock"
        return (
            f"{item.name} ({item.sku}) is below its reorder point: "
            f"{item.quantity} on hand, reorder at {item.reorder_threshold}"
        )


@receiver(threshold_crossed, dispatch_uid='inventory_sync.queue_stock_alert')
def queue_stock_alert(sender, sku, severity, **kwargs):
    from inventory_sync.tasks import send_stock_alert

    send_stock_alert.delay(sku, severity)


@receiver(sync_finished, dispatch_uid='inventory_sync.queue_sync_failure_alert')
def queue_sync_failure_alert(sender, log, **kwargs):
    if log.status != SyncLog.STATUS_FAILED or log.dry_run:
        return
    from inventory_sync.tasks import send_sync_failure_alert

    send_sync_failure_alert.delay(log.pk)
