import logging

from celery import shared_task
from django.db import OperationalError

from inventory_sync.exceptions import ConfigurationError, SyncAlreadyRunning
from inventory_sync.models import InventoryItem, SyncLog
from inventory_sync.notifier import AlertNotifier
from inventory_sync.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sync_inventory(self, strategy='inventory', dry_run=False):
    logger.info("Starting scheduled %s sync", strategy)
    try:
        return SyncOrchestrator(strategy=strategy, dry_run=dry_run).run()
    except SyncAlreadyRunning as exc:
        logger.info("Skipping %s sync: %s", strategy, exc)
        return {'strategy': strategy, 'status': 'skipped', 'reason': str(exc)}
    except ConfigurationError as exc:
        logger.warning("Skipping %s sync: %s", strategy, exc)
        return {'strategy': strategy, 'status': 'skipped', 'reason': str(exc)}
    except OperationalError as exc:
        logger.error("Database unavailable during %s sync: %s", strategy, exc)
        raise self.retry(exc=exc)


@shared_task
def send_stock_alert(sku, severity):
    item = InventoryItem.objects.filter(pk=sku).first()
    if item is None:
        logger.warning("Cannot send %s alert: item %s no longer exists", severity, sku)
        return None
    alert = AlertNotifier().notify(item, severity)
    return alert.pk if alert is not None else None


@shared_task
def send_sync_failure_alert(log_id):
    log = SyncLog.objects.filter(pk=log_id).first()
    if log is None:
        logger.warning("Cannot report failed sync: log %s not found", log_id)
        return False
    return AlertNotifier().notify_sync_failure(log)
