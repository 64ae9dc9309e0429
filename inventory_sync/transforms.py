from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.utils.text import slugify

COST_QUANTUM = Decimal('0.0001')

# Finale REST keys first, then the column titles used by saved reports / CSV exports
SKU_KEYS = ('productId', 'productSku', 'sku', 'Product ID', 'SKU')
NAME_KEYS = ('productName', 'internalName', 'name', 'Product Name', 'Description')
QUANTITY_KEYS = ('quantityOnHand', 'quantityAvailable', 'stock', 'Units in stock', 'Quantity on hand')
COST_KEYS = ('averageCost', 'unitCost', 'cost', 'Average cost', 'Cost')
THRESHOLD_KEYS = ('reorderPoint', 'reorderLevel', 'reorder_point', 'Reorder point')
VENDOR_ID_KEYS = ('primarySupplierId', 'supplierPartyId', 'vendor_id', 'Supplier ID')
VENDOR_NAME_KEYS = ('primarySupplierName', 'supplier', 'vendor', 'Supplier 1', 'Primary Supplier')
MODIFIED_KEYS = ('lastUpdatedDate', 'lastModifiedDate', 'Last modified')

INACTIVE_STATUSES = {'PRODUCT_INACTIVE', 'PARTY_DISABLED', 'INACTIVE'}


def _first(raw, keys):
    for key in keys:
        value = raw.get(key)
        if value not in (None, ''):
            return value
    return None


def _to_number(value):
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    try:
        return Decimal(str(value).replace(',', '').strip())
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}") from None


def _is_active(raw):
    status = raw.get('statusId') or raw.get('Status')
    if status and str(status).upper() in INACTIVE_STATUSES:
        return False
    active = raw.get('active')
    return active is not False


def _parse_timestamp(value):
    if not value:
        return None
    parsed = value if isinstance(value, datetime) else parse_datetime(str(value))
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def unpack_parallel_arrays(data):
    """Turn Finale's column-oriented payload into a list of row dicts.

    `{"productId": ["A", "B"], "productName": ["x", "y"]}` becomes
    `[{"productId": "A", "productName": "x"}, {"productId": "B", "productName": "y"}]`.
    """
    columns = {key: value for key, value in data.items() if isinstance(value, list)}
    if not columns:
        return []
    length = max(len(value) for value in columns.values())
    return [
        {key: (value[i] if i < len(value) else None) for key, value in columns.items()}
        for i in range(length)
    ]


def validate_product(raw):
    """Returns (is_valid, reason)."""
    sku = _first(raw, SKU_KEYS)
    if not sku:
        return False, "missing SKU"

    for label, keys in (('quantity', QUANTITY_KEYS), ('cost', COST_KEYS), ('reorder point', THRESHOLD_KEYS)):
        value = _first(raw, keys)
        if value is None:
            continue
        try:
            number = _to_number(value)
        except ValueError:
            return False, f"{sku}: non-numeric {label}"
        if not number.is_finite():
            return False, f"{sku}: non-numeric {label}"
        if label != 'quantity' and number < 0:
            return False, f"{sku}: negative {label} ({value})"

    return True, ""


def transform_product(raw):
    sku = str(_first(raw, SKU_KEYS)).strip()

    quantity = _first(raw, QUANTITY_KEYS)
    # Finale reports oversold items with a negative on-hand count
    quantity = max(int(_to_number(quantity)), 0) if quantity is not None else 0

    cost = _first(raw, COST_KEYS)
    unit_cost = _to_number(cost).quantize(COST_QUANTUM) if cost is not None else Decimal('0.0000')

    threshold = _first(raw, THRESHOLD_KEYS)
    reorder_threshold = int(_to_number(threshold)) if threshold is not None else 0

    vendor_id = _first(raw, VENDOR_ID_KEYS)
    if vendor_id is None:
        vendor_name = _first(raw, VENDOR_NAME_KEYS)
        vendor_id = slugify(vendor_name) if vendor_name else None

    return {
        'sku': sku,
        'name': str(_first(raw, NAME_KEYS) or sku),
        'quantity': quantity,
        'unit_cost': unit_cost,
        'reorder_threshold': reorder_threshold,
        'vendor_id': str(vendor_id) if vendor_id else None,
        'is_active': _is_active(raw),
        'source_modified_at': _parse_timestamp(_first(raw, MODIFIED_KEYS)),
    }


def validate_vendor(raw):
    """Returns (is_valid, reason)."""
    vendor_id = raw.get('partyId') or raw.get('vendorId') or raw.get('Vendor ID')
    name = raw.get('partyName') or raw.get('vendorName') or raw.get('name') or raw.get('Vendor Name')
    if not vendor_id and not name:
        return False, "missing vendor id and name"
    return True, ""


def transform_vendor(raw):
    name = raw.get('partyName') or raw.get('vendorName') or raw.get('name') or raw.get('Vendor Name')
    vendor_id = raw.get('partyId') or raw.get('vendorId') or raw.get('Vendor ID') or slugify(name)
    return {
        'external_id': str(vendor_id),
        'name': str(name or vendor_id),
        'contact_name': raw.get('contactName') or '',
        'email': raw.get('email') or raw.get('Email') or '',
        'phone': raw.get('phone') or raw.get('Phone') or '',
        'is_active': _is_active(raw),
    }


def deduplicate(records, key='sku'):
    seen = {}
    for record in records:
        seen[record[key]] = record
    return list(seen.values())
