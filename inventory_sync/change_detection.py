"""Content fingerprints for skipping records that did not change upstream.

A fingerprint covers a fixed tuple of business fields, always in the same
order. Anything outside that tuple (timestamps, sync bookkeeping) never
affects it, so re-fetching identical data yields identical fingerprints.
MD5 is fine here: this is a change-detection shortcut, not a security check.
"""
import hashlib
import json
from decimal import Decimal

INVENTORY_FINGERPRINT_FIELDS = (
    'name',
    'quantity',
    'unit_cost',
    'reorder_threshold',
    'vendor_id',
    'is_active',
)

VENDOR_FINGERPRINT_FIELDS = (
    'name',
    'contact_name',
    'email',
    'phone',
    'is_active',
)

SEVERITY_CRITICAL = 'critical'
SEVERITY_WARNING = 'warning'


def _canonical(value):
    if isinstance(value, float):
        value = Decimal(str(value))
    if isinstance(value, Decimal):
        return format(value.normalize(), 'f')
    return value


def fingerprint(record, fields=INVENTORY_FINGERPRINT_FIELDS):
    values = [_canonical(record.get(field)) for field in fields]
    canonical = json.dumps(values, separators=(',', ':'), ensure_ascii=False)
    return hashlib.md5(canonical.encode('utf-8')).hexdigest()


def has_changed(record, previous_fingerprint, fields=INVENTORY_FINGERPRINT_FIELDS):
    if not previous_fingerprint:
        return True
    return fingerprint(record, fields) != previous_fingerprint


def partition(records, stored, key='sku', fields=INVENTORY_FINGERPRINT_FIELDS):
    """Split records into (changed, unchanged) against stored fingerprints.

    `stored` maps record key -> fingerprint. Each record gets its freshly
    computed value under 'fingerprint'.
    """
    changed, unchanged = [], []
    for record in records:
        record['fingerprint'] = fingerprint(record, fields)
        previous = stored.get(record[key])
        if previous and previous == record['fingerprint']:
            unchanged.append(record)
        else:
            changed.append(record)
    return changed, unchanged


def crossed_threshold(previous_quantity, quantity, threshold):
    """True when stock moved from above `threshold` to at-or-below it."""
    if previous_quantity is None:
        return False
    return previous_quantity > threshold >= quantity


def alert_severity(quantity):
    return SEVERITY_CRITICAL if quantity <= 0 else SEVERITY_WARNING
