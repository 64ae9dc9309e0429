from abc import ABC, abstractmethod

import requests


class BaseClient(ABC):
    @abstractmethod
    def make_session(self) -> requests.Session:
        """Create and configure an HTTP session with auth headers."""

    @abstractmethod
    def fetch_page(self, session, resource, offset, limit) -> list[dict]:
        """Fetch one page of a listing from the inventory API."""

    def iter_pages(self, session, resource, page_size=100):
        offset = 0
        while True:
            page = self.fetch_page(session, resource, offset, page_size)
            if page:
                yield page
            if len(page) != page_size:
                return
            offset += page_size
