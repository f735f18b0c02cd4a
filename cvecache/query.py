"""Read-only lookups against the local store."""

from .config import CacheConfig
from .records import Record
from .store import LocalStore


class QueryService:
    """Point and substring lookups; never touches a feed source."""

    def __init__(self, store: LocalStore):
        self.store = store

    def find_by_id(self, record_id: str) -> Record:
        """Return the record with this id.

        Raises:
            NotFound: if no such record is stored.
        """
        return self.store.get_record(record_id)

    def find_by_description(self, text: str) -> set[str]:
        """Return ids whose description contains ``text`` (empty set if none)."""
        return self.store.search_description(text)


def search_by_id(config: CacheConfig, record_id: str) -> Record:
    return QueryService(LocalStore(config.db)).find_by_id(record_id)


def search_description(config: CacheConfig, text: str) -> set[str]:
    return QueryService(LocalStore(config.db)).find_by_description(text)
