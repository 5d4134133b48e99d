# bytsave/catalog/base.py

"""Abstract catalog snapshot provider."""

from abc import ABC, abstractmethod

from bytsave.models.snapshot import ProductSnapshot


class CatalogProvider(ABC):
    """Source of current price and metadata for a catalog identifier."""

    @abstractmethod
    def get_snapshot(self, identifier: str) -> ProductSnapshot:
        """Return a fresh snapshot or raise ``SnapshotNotFoundError``."""
        ...
