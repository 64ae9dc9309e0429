from abc import ABC, abstractmethod


class BaseSource(ABC):
    label = 'records'

    @abstractmethod
    def load(self) -> list[dict]:
        """Load raw records from the inventory system."""
