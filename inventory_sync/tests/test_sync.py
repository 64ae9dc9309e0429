from datetime import timedelta
from unittest.mock import MagicMock, patch

import responses
from django.core import mail
from django.core.cache import cache
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from inventory_sync.clients.finale_client import FinaleClient
from inventory_sync.exceptions import ConfigurationError, SyncAlreadyRunning
from inventory_sync.locks import is_locked
from inventory_sync.models import Alert, AppSettings, InventoryItem, InventoryItemManager, SyncLog, Vendor
from inventory_sync.sync import SyncOrchestrator

from .helpers import FINALE_URL, TEST_CONFIG, fast_limiter, product, save_settings


def _source(rows):
    source = MagicMock()
    source.load.return_value = rows
    return source


def _run(rows, strategy='inventory', **kwargs):
    return SyncOrchestrator(strategy=strategy, source=_source(rows), **kwargs).run()


def _catalog(count, **overrides):
    return [product(f'SKU-{i:04d}', **overrides) for i in range(count)]


class SyncTestCase(TestCase):
    def setUp(self):
        cache.clear()
        save_settings()


class TestDeltaSync(SyncTestCase):
    def test_first_sync_creates_all(self):
        summary = _run(_catalog(5))

        self.assertEqual(summary['status'], SyncLog.STATUS_COMPLETED)
        self.assertEqual(summary['items_seen'], 5)
        self.assertEqual(summary['items_changed'], 5)
        self.assertEqual(InventoryItem.objects.count(), 5)
        self.assertTrue(all(item.fingerprint for item in InventoryItem.objects.all()))

    def test_second_sync_without_changes_writes_nothing(self):
        _run(_catalog(5))
        summary = _run(_catalog(5))

        self.assertEqual(summary['items_changed'], 0)
        self.assertEqual(summary['items_unchanged'], 5)

    def test_stock_drop_below_threshold(self):
        save_settings(email_alerts_enabled=True, alert_emails='ops@example.com')
        _run([product('SKU-001', quantity=50, reorder=20)])
        first = InventoryItem.objects.get(pk='SKU-001').fingerprint
        self.assertEqual(len(mail.outbox), 0)

        summary = _run([product('SKU-001', quantity=15, reorder=20)])

        item = InventoryItem.objects.get(pk='SKU-001')
        self.assertEqual(item.quantity, 15)
        self.assertNotEqual(item.fingerprint, first)
        self.assertEqual(summary['items_changed'], 1)
        self.assertEqual(summary['alerts_emitted'], 1)
        self.assertEqual(Alert.objects.filter(item=item, severity=Alert.SEVERITY_WARNING).count(), 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(SyncLog.objects.latest_for('inventory').items_changed, 1)

    def test_only_changed_records_reach_the_store(self):
        _run(_catalog(250))
        updated = _catalog(250)
        for index in (7, 130, 249):
            updated[index]['quantityOnHand'] = 999

        calls = []
        original = InventoryItemManager.upsert_batch

        def spy(manager, rows):
            calls.append(sorted(row['sku'] for row in rows))
            return original(manager, rows)

        with patch.object(InventoryItemManager, 'upsert_batch', spy):
            summary = _run(updated)

        self.assertEqual(calls, [['SKU-0007', 'SKU-0130', 'SKU-0249']])
        self.assertEqual(summary['items_seen'], 250)
        self.assertEqual(summary['items_changed'], 3)
        log = SyncLog.objects.get(pk=summary['log_id'])
        self.assertEqual(log.items_seen, 250)
        self.assertEqual(log.items_changed, 3)

    def test_duplicates_keep_last_occurrence(self):
        _run([product('SKU-001', quantity=1), product('SKU-001', quantity=9)])
        self.assertEqual(InventoryItem.objects.get(pk='SKU-001').quantity, 9)


class TestPartialFailure(SyncTestCase):
    def test_failed_batch_does_not_stop_the_run(self):
        calls = []
        original = InventoryItemManager.upsert_batch

        def flaky(manager, rows):
            calls.append(len(rows))
            if len(calls) == 2:
                raise DatabaseError("deadlock detected")
            return original(manager, rows)

        with patch.object(InventoryItemManager, 'upsert_batch', flaky):
            summary = _run(_catalog(250))

        self.assertEqual(calls, [100, 100, 50])
        self.assertEqual(summary['status'], SyncLog.STATUS_COMPLETED)
        self.assertEqual(summary['items_failed'], 100)
        self.assertEqual(summary['items_changed'], 150)
        self.assertEqual(InventoryItem.objects.count(), 150)
        log = SyncLog.objects.get(pk=summary['log_id'])
        self.assertEqual(log.items_failed, 100)
        self.assertEqual(log.error_summary, "100 records failed")

        # the next run picks up exactly what was lost
        retry = _run(_catalog(250))
        self.assertEqual(retry['items_changed'], 100)
        self.assertEqual(InventoryItem.objects.count(), 250)

    def test_invalid_records_are_counted_and_skipped(self):
        rows = [product('SKU-001'), product('SKU-002', cost='abc'), {'internalName': 'no sku'}]

        summary = _run(rows)

        self.assertEqual(summary['items_changed'], 1)
        self.assertEqual(summary['items_failed'], 2)
        self.assertIn("SKU-002: non-numeric cost", summary['errors'])
        self.assertIn("missing SKU", summary['errors'])


class TestVendorReferences(SyncTestCase):
    def test_unknown_vendor_is_left_empty(self):
        _run([product('SKU-001', supplier='ghost')])
        self.assertIsNone(InventoryItem.objects.get(pk='SKU-001').vendor)

    def test_vendor_arriving_later_links_the_item(self):
        _run([product('SKU-001', supplier='acme')])
        Vendor.objects.create(external_id='acme', name='Acme')

        summary = _run([product('SKU-001', supplier='acme')])

        self.assertEqual(summary['items_changed'], 1)
        self.assertEqual(InventoryItem.objects.get(pk='SKU-001').vendor_id, 'acme')


class TestDryRun(SyncTestCase):
    def test_nothing_is_written(self):
        _run([product('SKU-001', quantity=50, reorder=20)])

        summary = _run([product('SKU-001', quantity=15, reorder=20), product('SKU-002')], dry_run=True)

        self.assertTrue(summary['dry_run'])
        self.assertEqual(summary['items_changed'], 2)
        self.assertEqual(summary['alerts_emitted'], 0)
        self.assertEqual(InventoryItem.objects.get(pk='SKU-001').quantity, 50)
        self.assertFalse(InventoryItem.objects.filter(pk='SKU-002').exists())
        self.assertEqual(Alert.objects.count(), 0)
        self.assertTrue(SyncLog.objects.get(pk=summary['log_id']).dry_run)


class TestStrategies(SyncTestCase):
    def test_critical_only_touches_items_at_or_below_reorder_point(self):
        summary = _run(
            [product('PLENTY', quantity=50, reorder=20), product('LOW', quantity=5, reorder=20)],
            strategy='critical',
        )
        self.assertEqual(summary['items_seen'], 2)
        self.assertEqual(list(InventoryItem.objects.values_list('sku', flat=True)), ['LOW'])

    def test_smart_without_history_runs_full(self):
        self.assertEqual(SyncOrchestrator('smart').resolve_strategy(), 'full')

    def test_smart_after_recent_sync_runs_inventory(self):
        SyncLog.objects.start('inventory').finish(SyncLog.STATUS_COMPLETED)
        self.assertEqual(SyncOrchestrator('smart').resolve_strategy(), 'inventory')

    def test_smart_with_aging_full_sync_runs_critical(self):
        log = SyncLog.objects.start('full')
        log.finish(SyncLog.STATUS_COMPLETED)
        SyncLog.objects.filter(pk=log.pk).update(finished_at=timezone.now() - timedelta(hours=10))
        self.assertEqual(SyncOrchestrator('smart').resolve_strategy(), 'critical')

    def test_smart_logs_under_resolved_strategy(self):
        summary = SyncOrchestrator('smart', source=_source([product('SKU-001')])).run()
        self.assertEqual(summary['strategy'], 'full')

    def test_unknown_strategy(self):
        with self.assertRaises(ConfigurationError):
            SyncOrchestrator('everything')

    def test_import_requires_source(self):
        with self.assertRaises(ConfigurationError):
            SyncOrchestrator('import')


class TestRunLifecycle(SyncTestCase):
    def test_second_trigger_is_rejected_while_running(self):
        outcome = {}

        def load_and_retrigger():
            try:
                SyncOrchestrator('inventory', source=_source([])).run()
            except SyncAlreadyRunning as exc:
                outcome['error'] = exc
            return [product('SKU-001')]

        source = MagicMock()
        source.load.side_effect = load_and_retrigger
        summary = SyncOrchestrator('inventory', source=source).run()

        self.assertIsInstance(outcome['error'], SyncAlreadyRunning)
        self.assertEqual(summary['status'], SyncLog.STATUS_COMPLETED)
        self.assertEqual(summary['items_changed'], 1)
        self.assertEqual(SyncLog.objects.count(), 1)
        self.assertFalse(is_locked('inventory'))

    def test_other_strategies_may_run_concurrently(self):
        outcome = {}

        def load_and_run_critical():
            outcome['summary'] = SyncOrchestrator('critical', source=_source([])).run()
            return []

        source = MagicMock()
        source.load.side_effect = load_and_run_critical
        SyncOrchestrator('inventory', source=source).run()

        self.assertEqual(outcome['summary']['status'], SyncLog.STATUS_COMPLETED)

    def test_state_machine_ends_completed(self):
        orchestrator = SyncOrchestrator('inventory', source=_source([product('SKU-001')]))
        self.assertEqual(orchestrator.state, SyncOrchestrator.IDLE)
        orchestrator.run()
        self.assertEqual(orchestrator.state, SyncOrchestrator.COMPLETED)

    def test_stale_running_log_is_swept(self):
        stuck = SyncLog.objects.start('inventory')
        SyncLog.objects.filter(pk=stuck.pk).update(started_at=timezone.now() - timedelta(hours=3))

        _run([])

        stuck.refresh_from_db()
        self.assertEqual(stuck.status, SyncLog.STATUS_FAILED)

    def test_unexpected_error_fails_log_and_releases_lock(self):
        with patch('inventory_sync.sync.partition', side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                _run([product('SKU-001')])

        log = SyncLog.objects.get()
        self.assertEqual(log.status, SyncLog.STATUS_FAILED)
        self.assertIn("boom", log.error_summary)
        self.assertFalse(is_locked('inventory'))


class TestFinaleFetch(SyncTestCase):
    def _orchestrator(self, strategy='inventory', limiter=None):
        self.limiter = limiter or fast_limiter()
        return SyncOrchestrator(strategy, client=FinaleClient(TEST_CONFIG, limiter=self.limiter))

    @responses.activate
    def test_throttled_page_is_retried(self):
        catalog = _catalog(250)
        responses.add(responses.GET, f"{FINALE_URL}/product", json=catalog[:100])
        responses.add(responses.GET, f"{FINALE_URL}/product", json=catalog[100:200])
        responses.add(responses.GET, f"{FINALE_URL}/product", json={'error': 'slow down'}, status=429)
        responses.add(responses.GET, f"{FINALE_URL}/product", json=catalog[200:])

        summary = self._orchestrator().run()

        self.assertEqual(summary['status'], SyncLog.STATUS_COMPLETED)
        self.assertEqual(summary['items_seen'], 250)
        self.assertEqual(self.limiter.retry_events, 1)
        self.assertEqual(len(responses.calls), 4)

    @responses.activate
    def test_missing_settings_make_no_requests(self):
        AppSettings.objects.all().delete()

        with self.assertRaises(ConfigurationError):
            self._orchestrator().run()

        self.assertEqual(len(responses.calls), 0)
        self.assertEqual(SyncLog.objects.count(), 0)
        self.assertFalse(is_locked('inventory'))

    @responses.activate
    def test_fetch_failure_fails_the_run(self):
        save_settings(email_alerts_enabled=True, alert_emails='ops@example.com')
        responses.add(responses.GET, f"{FINALE_URL}/product", status=500)

        orchestrator = self._orchestrator(limiter=fast_limiter(max_retries=1))
        summary = orchestrator.run()

        self.assertEqual(summary['status'], SyncLog.STATUS_FAILED)
        self.assertEqual(orchestrator.state, SyncOrchestrator.FAILED)
        self.assertTrue(summary['error_summary'].startswith("Fetch failed"))
        self.assertEqual(InventoryItem.objects.count(), 0)
        self.assertFalse(is_locked('inventory'))
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, "Inventory sync failed: inventory")

    @responses.activate
    def test_full_sync_links_vendors(self):
        responses.add(responses.GET, f"{FINALE_URL}/vendor", json=[{'partyId': 'acme', 'partyName': 'Acme'}])
        responses.add(responses.GET, f"{FINALE_URL}/product", json=[product('SKU-001', supplier='acme')])

        summary = self._orchestrator('full').run()

        self.assertEqual(summary['items_seen'], 2)
        self.assertEqual(summary['items_changed'], 2)
        self.assertEqual(InventoryItem.objects.get(pk='SKU-001').vendor.name, 'Acme')

    @responses.activate
    def test_vendor_sync_skips_products(self):
        responses.add(responses.GET, f"{FINALE_URL}/vendor", json=[{'partyId': 'acme', 'partyName': 'Acme'}])

        self._orchestrator('vendors').run()

        self.assertEqual(Vendor.objects.count(), 1)
        self.assertEqual(len(responses.calls), 1)

    @responses.activate
    def test_saved_report_replaces_product_listing(self):
        url = 'https://app.finaleinventory.com/acme/doc/report/stock.csv'
        save_settings(inventory_report_url=url)
        responses.add(
            responses.GET, url,
            body='Product ID,Description,Units in stock,Reorder point\nSKU-001,Beans,4,10\n',
            content_type='text/csv',
        )

        self._orchestrator().run()

        item = InventoryItem.objects.get(pk='SKU-001')
        self.assertEqual(item.quantity, 4)
        self.assertEqual(item.reorder_threshold, 10)
