from inventory_sync.config import SyncConfig
from inventory_sync.models import AppSettings
from inventory_sync.rate_limit import RateLimiter

FINALE_URL = 'https://app.finaleinventory.com/acme/api'

TEST_CONFIG = SyncConfig(
    finale_api_key='key',
    finale_api_secret='secret',
    finale_account_path='acme',
    settings_found=True,
)


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def fast_limiter(requests_per_second=1000, max_retries=3):
    clock = FakeClock()
    return RateLimiter(
        requests_per_second=requests_per_second,
        max_retries=max_retries,
        clock=clock,
        sleep=clock.sleep,
    )


def product(sku, quantity=50, cost='10.00', reorder=20, name=None, supplier=None, **extra):
    row = {
        'productId': sku,
        'internalName': name or f'Product {sku}',
        'quantityOnHand': quantity,
        'averageCost': cost,
        'reorderPoint': reorder,
    }
    if supplier:
        row['primarySupplierId'] = supplier
    row.update(extra)
    return row


def save_settings(**overrides):
    values = {
        'finale_api_key': 'key',
        'finale_api_secret': 'secret',
        'finale_account_path': 'acme',
        'sync_enabled': True,
        'email_alerts_enabled': False,
        'alert_emails': '',
    }
    values.update(overrides)
    return AppSettings.save_values(**values)
