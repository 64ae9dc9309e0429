import logging

from django.conf import settings

from .base import BaseSource

logger = logging.getLogger(__name__)

PAGE_SIZE = getattr(settings, 'FINALE_PAGE_SIZE', 100)


class FinaleListSource(BaseSource):
    """Every page of a Finale listing, read until the API runs out of rows."""

    def __init__(self, client, session, resource, page_size=PAGE_SIZE):
        self.client = client
        self.session = session
        self.resource = resource
        self.label = resource
        self.page_size = page_size

    def load(self) -> list[dict]:
        rows = []
        for page in self.client.iter_pages(self.session, self.resource, page_size=self.page_size):
            rows.extend(page)
        logger.info("Fetched %d %s records from Finale", len(rows), self.resource)
        return rows


class FinaleReportSource(BaseSource):
    label = 'report'

    def __init__(self, client, session, url):
        self.client = client
        self.session = session
        self.url = url

    def load(self) -> list[dict]:
        rows = self.client.fetch_report(self.session, self.url)
        logger.info("Fetched %d rows from Finale report", len(rows))
        return rows
