import csv
import io
import logging
import re

import requests
from django.conf import settings

from inventory_sync.exceptions import FinaleApiError
from inventory_sync.rate_limit import get_rate_limiter
from inventory_sync.transforms import unpack_parallel_arrays

from .base import BaseClient

logger = logging.getLogger(__name__)

FINALE_BASE_URL = getattr(settings, 'FINALE_API_BASE_URL', 'https://app.finaleinventory.com/{account}/api')
REQUEST_TIMEOUT = getattr(settings, 'FINALE_API_TIMEOUT', 30.0)

# Key under which an object-shaped listing response carries its rows
LIST_KEYS = {
    'product': 'products',
    'vendor': 'vendors',
    'partygroup': 'vendors',
    'purchaseOrder': 'purchaseOrders',
}


def clean_account_path(account_path):
    """Accept 'acme', 'app.finaleinventory.com/acme' or a full API URL."""
    path = account_path.strip()
    path = re.sub(r'^https?://', '', path)
    path = re.sub(r'^app\.finaleinventory\.com/?', '', path)
    path = re.sub(r'/api/?$', '', path)
    return path.strip('/')


def parse_listing(data, resource):
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    rows = data.get(LIST_KEYS.get(resource, resource))
    if isinstance(rows, list):
        return rows
    return unpack_parallel_arrays(data)


def is_paged_listing(data, resource):
    """Column-oriented responses carry the whole listing and ignore limit/offset."""
    if isinstance(data, list):
        return True
    return isinstance(data, dict) and isinstance(data.get(LIST_KEYS.get(resource, resource)), list)


class FinaleClient(BaseClient):
    def __init__(self, config, limiter=None):
        self.config = config
        self.limiter = limiter or get_rate_limiter()
        self.base_url = FINALE_BASE_URL.format(account=clean_account_path(config.finale_account_path))

    def make_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = (self.config.finale_api_key, self.config.finale_api_secret)
        session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        })
        return session

    def request(self, session, method, url, **kwargs):
        kwargs.setdefault('timeout', REQUEST_TIMEOUT)
        response = self.limiter.schedule(lambda: session.request(method, url, **kwargs))
        if not response.ok:
            body = response.text[:200]
            logger.error("Finale API error %s for %s %s: %s", response.status_code, method, url, body)
            raise FinaleApiError(
                f"Finale API error: {response.status_code} - {body}",
                status_code=response.status_code,
                response=response,
            )
        return response

    def fetch_listing(self, session, resource, offset, limit):
        """Return one page of rows and whether the endpoint honoured paging."""
        url = f"{self.base_url}/{resource}"
        logger.debug("Fetching %s page offset=%d limit=%d", resource, offset, limit)
        response = self.request(session, 'GET', url, params={'limit': limit, 'offset': offset})
        data = response.json()
        return parse_listing(data, resource), is_paged_listing(data, resource)

    def fetch_page(self, session, resource, offset, limit):
        return self.fetch_listing(session, resource, offset, limit)[0]

    def iter_pages(self, session, resource, page_size=100):
        offset = 0
        while True:
            page, paged = self.fetch_listing(session, resource, offset, page_size)
            if page:
                yield page
            if not paged:
                logger.debug("%s listing is not paged; got all %d rows at once", resource, len(page))
                return
            if len(page) != page_size:
                return
            offset += page_size

    def fetch_report(self, session, url):
        """Fetch a saved Finale report; reports come back as CSV or JSON."""
        response = self.request(session, 'GET', url)
        content_type = response.headers.get('Content-Type', '')
        if 'csv' in content_type or 'text/plain' in content_type:
            return list(csv.DictReader(io.StringIO(response.text)))
        return parse_listing(response.json(), 'product')

    def create_purchase_order(self, session, payload):
        response = self.request(session, 'POST', f"{self.base_url}/purchaseOrder", json=payload)
        return response.json()

    def test_connection(self, session):
        try:
            self.fetch_page(session, 'product', 0, 1)
        except requests.exceptions.RequestException as exc:
            logger.warning("Finale connection test failed: %s", exc)
            return False
        return True


def purchase_order_payload(order):
    return {
        'orderDate': order.created_at.isoformat(),
        'expectedDate': order.expected_date.isoformat() if order.expected_date else None,
        'vendorName': order.vendor.name,
        'notes': order.notes,
        'items': [
            {'productSku': line.item_id, 'quantity': line.quantity, 'unitCost': float(line.unit_cost)}
            for line in order.items.all()
        ],
    }
