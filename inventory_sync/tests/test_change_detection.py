from decimal import Decimal

from django.test import SimpleTestCase
from django.utils import timezone

from inventory_sync.change_detection import (
    VENDOR_FINGERPRINT_FIELDS,
    alert_severity,
    crossed_threshold,
    fingerprint,
    has_changed,
    partition,
)


def _record(**overrides):
    record = {
        'sku': 'SKU-001',
        'name': 'Espresso Machine',
        'quantity': 50,
        'unit_cost': Decimal('124.5000'),
        'reorder_threshold': 20,
        'vendor_id': 'acme',
        'is_active': True,
        'source_modified_at': None,
    }
    record.update(overrides)
    return record


class TestFingerprint(SimpleTestCase):
    def test_deterministic_across_calls(self):
        self.assertEqual(fingerprint(_record()), fingerprint(_record()))
        self.assertEqual(len(fingerprint(_record())), 32)

    def test_fields_outside_the_tuple_are_ignored(self):
        base = fingerprint(_record())
        self.assertEqual(base, fingerprint(_record(source_modified_at=timezone.now())))
        self.assertEqual(base, fingerprint(_record(last_synced_at=timezone.now())))
        self.assertEqual(base, fingerprint(_record(fingerprint='stale')))

    def test_every_business_field_changes_it(self):
        base = fingerprint(_record())
        for field, value in (
            ('name', 'Grinder'),
            ('quantity', 15),
            ('unit_cost', Decimal('99')),
            ('reorder_threshold', 5),
            ('vendor_id', None),
            ('is_active', False),
        ):
            with self.subTest(field=field):
                self.assertNotEqual(base, fingerprint(_record(**{field: value})))

    def test_equal_costs_in_different_notation_match(self):
        base = fingerprint(_record(unit_cost=Decimal('12.5')))
        self.assertEqual(base, fingerprint(_record(unit_cost=Decimal('12.5000'))))
        self.assertEqual(base, fingerprint(_record(unit_cost=12.5)))

    def test_vendor_fields(self):
        vendor = {'name': 'Acme', 'contact_name': '', 'email': 'a@acme.test', 'phone': '', 'is_active': True}
        changed = {**vendor, 'phone': '555-0100'}
        self.assertNotEqual(
            fingerprint(vendor, VENDOR_FINGERPRINT_FIELDS),
            fingerprint(changed, VENDOR_FINGERPRINT_FIELDS),
        )


class TestHasChanged(SimpleTestCase):
    def test_false_iff_fingerprint_matches(self):
        record = _record()
        stored = fingerprint(record)
        self.assertFalse(has_changed(record, stored))
        self.assertTrue(has_changed(_record(quantity=15), stored))

    def test_missing_fingerprint_counts_as_changed(self):
        self.assertTrue(has_changed(_record(), ''))
        self.assertTrue(has_changed(_record(), None))


class TestPartition(SimpleTestCase):
    def test_splits_and_stamps_fingerprints(self):
        same = _record(sku='SKU-001')
        moved = _record(sku='SKU-002', quantity=15)
        new = _record(sku='SKU-003')
        stored = {
            'SKU-001': fingerprint(_record(sku='SKU-001')),
            'SKU-002': fingerprint(_record(sku='SKU-002')),
        }

        changed, unchanged = partition([same, moved, new], stored)

        self.assertEqual([r['sku'] for r in changed], ['SKU-002', 'SKU-003'])
        self.assertEqual([r['sku'] for r in unchanged], ['SKU-001'])
        self.assertEqual(moved['fingerprint'], fingerprint(moved))
        self.assertNotEqual(moved['fingerprint'], stored['SKU-002'])


class TestThresholdCrossing(SimpleTestCase):
    def test_downward_crossing(self):
        self.assertTrue(crossed_threshold(50, 15, 20))
        self.assertTrue(crossed_threshold(21, 20, 20))

    def test_already_below_does_not_cross_again(self):
        self.assertFalse(crossed_threshold(15, 10, 20))
        self.assertFalse(crossed_threshold(20, 5, 20))

    def test_upward_move_and_first_sighting(self):
        self.assertFalse(crossed_threshold(10, 30, 20))
        self.assertFalse(crossed_threshold(None, 0, 20))

    def test_severity(self):
        self.assertEqual(alert_severity(0), 'critical')
        self.assertEqual(alert_severity(3), 'warning')
