import logging
from datetime import timedelta

import requests
from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from inventory_sync.change_detection import (
    VENDOR_FINGERPRINT_FIELDS,
    alert_severity,
    crossed_threshold,
    partition,
)
from inventory_sync.clients.finale_client import FinaleClient
from inventory_sync.config import load_sync_config
from inventory_sync.exceptions import ConfigurationError, SyncAlreadyRunning
from inventory_sync.locks import RunLock
from inventory_sync.models import InventoryItem, SyncLog, Vendor
from inventory_sync.signals import sync_finished, threshold_crossed
from inventory_sync.sources.finale_source import FinaleListSource, FinaleReportSource
from inventory_sync.transforms import (
    deduplicate,
    transform_product,
    transform_vendor,
    validate_product,
    validate_vendor,
)

logger = logging.getLogger(__name__)

INVENTORY = 'inventory'
VENDORS = 'vendors'
FULL = 'full'
CRITICAL = 'critical'
SMART = 'smart'
IMPORT = 'import'
STRATEGIES = (INVENTORY, VENDORS, FULL, CRITICAL, SMART, IMPORT)

MAX_LOGGED_ERRORS = 50


class SyncOrchestrator:
    """One synchronization pass from Finale into the local store.

    idle -> fetching -> detecting -> persisting -> completed, or -> failed.
    Only the fetch stage can fail a run; bad records and failed batches are
    counted and the run carries on. Runs of the same strategy are mutually
    exclusive through a RunLock.
    """

    IDLE = 'idle'
    FETCHING = 'fetching'
    DETECTING = 'detecting'
    PERSISTING = 'persisting'
    COMPLETED = 'completed'
    FAILED = 'failed'

    def __init__(self, strategy=INVENTORY, dry_run=False, source=None, client=None, batch_size=None):
        if strategy not in STRATEGIES:
            raise ConfigurationError(f"Unknown sync strategy: {strategy}")
        if strategy == IMPORT and source is None:
            raise ConfigurationError("An import run needs a source to read from")
        self.strategy = strategy
        self.dry_run = dry_run
        self.source = source
        self.client = client
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self.state = self.IDLE

    def resolve_strategy(self):
        """Pick a concrete strategy for 'smart' runs from the age of earlier runs."""
        if self.strategy != SMART:
            return self.strategy
        now = timezone.now()
        last_any = SyncLog.objects.last_completed(strategies=[INVENTORY, CRITICAL, FULL])
        if last_any and now - last_any.finished_at < timedelta(hours=6):
            return INVENTORY
        last_full = SyncLog.objects.last_completed(strategies=[FULL])
        if last_full and now - last_full.finished_at < timedelta(hours=24):
            return CRITICAL
        return FULL

    def run(self):
        config = load_sync_config()
        if self.source is None:
            config.require_finale()

        strategy = self.resolve_strategy()
        lock = RunLock(strategy)
        if not lock.acquire():
            logger.warning("Rejected %s sync: another run holds the lock", strategy)
            raise SyncAlreadyRunning(strategy)
        try:
            return self._run_locked(strategy, config)
        finally:
            lock.release()

    def _transition(self, state):
        logger.debug("Sync %s: %s -> %s", self.strategy, self.state, state)
        self.state = state

    def _run_locked(self, strategy, config):
        SyncLog.objects.mark_stale_as_failed(settings.SYNC_STALE_MINUTES)
        log = SyncLog.objects.start(strategy, dry_run=self.dry_run)
        stats = {
            'items_seen': 0,
            'items_changed': 0,
            'items_unchanged': 0,
            'items_failed': 0,
            'alerts_emitted': 0,
            'errors': [],
        }
        logger.info("Starting %s sync (log %s, dry_run=%s)", strategy, log.pk, self.dry_run)

        try:
            try:
                raw_vendors, raw_items = self._fetch(strategy, config)
            except requests.exceptions.RequestException as exc:
                logger.error("Fetch failed, aborting %s sync: %s", strategy, exc)
                self._transition(self.FAILED)
                stats['errors'].append(str(exc))
                return self._finish(log, SyncLog.STATUS_FAILED, stats, error_summary=f"Fetch failed: {exc}")

            stats['items_seen'] = len(raw_vendors) + len(raw_items)

            self._transition(self.DETECTING)
            vendors = self._prepare(raw_vendors, validate_vendor, transform_vendor, stats, key='external_id')
            items = self._prepare(raw_items, validate_product, transform_product, stats, key='sku')
            if strategy == CRITICAL:
                items = [item for item in items if item['quantity'] <= item['reorder_threshold']]

            stored_vendors = dict(Vendor.objects.values_list('external_id', 'fingerprint'))
            changed_vendors, unchanged_vendors = partition(
                vendors, stored_vendors, key='external_id', fields=VENDOR_FINGERPRINT_FIELDS,
            )

            known_vendors = set(stored_vendors) | {vendor['external_id'] for vendor in vendors}
            for item in items:
                if item['vendor_id'] not in known_vendors:
                    item['vendor_id'] = None

            stored_items = {
                sku: (fp, quantity)
                for sku, fp, quantity in InventoryItem.objects.values_list('sku', 'fingerprint', 'quantity')
            }
            changed_items, unchanged_items = partition(
                items, {sku: value[0] for sku, value in stored_items.items()}, key='sku',
            )
            stats['items_unchanged'] = len(unchanged_vendors) + len(unchanged_items)
            logger.info(
                "Change detection: %d vendors and %d items changed, %d unchanged",
                len(changed_vendors), len(changed_items), stats['items_unchanged'],
            )

            if self.dry_run:
                stats['items_changed'] = len(changed_vendors) + len(changed_items)
            else:
                self._transition(self.PERSISTING)
                self._persist(Vendor, changed_vendors, stats)
                self._persist(
                    InventoryItem, changed_items, stats,
                    on_written=lambda batch: self._emit_threshold_alerts(batch, stored_items, stats),
                )
        except Exception as exc:
            logger.exception("%s sync failed unexpectedly", strategy)
            self._transition(self.FAILED)
            stats['errors'].append(str(exc))
            self._finish(log, SyncLog.STATUS_FAILED, stats, error_summary=f"Unexpected error: {exc}")
            raise

        self._transition(self.COMPLETED)
        summary = f"{stats['items_failed']} records failed" if stats['items_failed'] else ''
        return self._finish(log, SyncLog.STATUS_COMPLETED, stats, error_summary=summary)

    def _fetch(self, strategy, config):
        self._transition(self.FETCHING)
        if self.source is not None:
            return [], self.source.load()

        client = self.client or FinaleClient(config)
        raw_vendors, raw_items = [], []
        with client.make_session() as session:
            if strategy in (VENDORS, FULL):
                raw_vendors = FinaleListSource(client, session, 'vendor').load()
            if strategy in (INVENTORY, FULL, CRITICAL):
                if config.inventory_report_url:
                    raw_items = FinaleReportSource(client, session, config.inventory_report_url).load()
                else:
                    raw_items = FinaleListSource(client, session, 'product').load()
        return raw_vendors, raw_items

    def _prepare(self, raw_records, validate, transform, stats, key):
        records = []
        for raw in raw_records:
            is_valid, reason = validate(raw)
            if not is_valid:
                logger.warning("Skipping invalid record: %s", reason)
                self._record_failure(stats, reason)
                continue
            try:
                records.append(transform(raw))
            except (ValueError, ArithmeticError) as exc:
                logger.warning("Skipping record that failed to transform: %s", exc)
                self._record_failure(stats, str(exc))
        return deduplicate(records, key=key)

    def _persist(self, model, records, stats, on_written=None):
        now = timezone.now()
        total = (len(records) + self.batch_size - 1) // self.batch_size
        for start in range(0, len(records), self.batch_size):
            batch = records[start:start + self.batch_size]
            number = start // self.batch_size + 1
            rows = [{**record, 'last_synced_at': now} for record in batch]
            try:
                model.objects.upsert_batch(rows)
            except DatabaseError as exc:
                logger.error(
                    "%s batch %d/%d (%d records) failed: %s",
                    model.__name__, number, total, len(batch), exc,
                )
                self._record_failure(stats, f"{model.__name__} batch {number}: {exc}", count=len(batch))
                continue
            stats['items_changed'] += len(batch)
            logger.info("Wrote %s batch %d/%d (%d records)", model.__name__, number, total, len(batch))
            if on_written is not None:
                on_written(batch)

    def _emit_threshold_alerts(self, batch, stored_items, stats):
        for record in batch:
            previous = stored_items.get(record['sku'])
            previous_quantity = previous[1] if previous else None
            if not crossed_threshold(previous_quantity, record['quantity'], record['reorder_threshold']):
                continue
            severity = alert_severity(record['quantity'])
            logger.info(
                "%s crossed its reorder point (%s -> %s, threshold %s)",
                record['sku'], previous_quantity, record['quantity'], record['reorder_threshold'],
            )
            responses = threshold_crossed.send_robust(
                sender=self.__class__,
                sku=record['sku'],
                severity=severity,
                quantity=record['quantity'],
                threshold=record['reorder_threshold'],
            )
            for receiver, response in responses:
                if isinstance(response, Exception):
                    logger.error("Alert receiver %r failed for %s: %s", receiver, record['sku'], response)
            stats['alerts_emitted'] += 1

    @staticmethod
    def _record_failure(stats, message, count=1):
        stats['items_failed'] += count
        if len(stats['errors']) < MAX_LOGGED_ERRORS:
            stats['errors'].append(message)

    def _finish(self, log, status, stats, error_summary=''):
        log.finish(
            status,
            items_seen=stats['items_seen'],
            items_changed=stats['items_changed'],
            items_failed=stats['items_failed'],
            alerts_emitted=stats['alerts_emitted'],
            errors=stats['errors'],
            error_summary=error_summary,
        )
        logger.info(
            "Sync %s finished %s: seen=%d changed=%d unchanged=%d failed=%d alerts=%d",
            log.strategy, status, stats['items_seen'], stats['items_changed'],
            stats['items_unchanged'], stats['items_failed'], stats['alerts_emitted'],
        )
        for receiver, response in sync_finished.send_robust(sender=self.__class__, log=log):
            if isinstance(response, Exception):
                logger.error("sync_finished receiver %r failed: %s", receiver, response)
        return {
            'log_id': log.pk,
            'strategy': log.strategy,
            'status': status,
            'dry_run': log.dry_run,
            'items_seen': stats['items_seen'],
            'items_changed': stats['items_changed'],
            'items_unchanged': stats['items_unchanged'],
            'items_failed': stats['items_failed'],
            'alerts_emitted': stats['alerts_emitted'],
            'errors': stats['errors'],
            'error_summary': error_summary,
        }
