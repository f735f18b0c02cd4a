"""Error types raised by cvecache.

Every failure the cache can report is one of the classes below, so
callers can branch on the kind of failure instead of parsing messages.
The underlying exception, when there is one, is kept on ``cause`` and
chained with ``raise ... from``.
"""

from typing import Any


class CacheError(Exception):
    """Base class for all cvecache errors.

    Attributes:
        cause: The underlying exception, if any.
    """

    def __init__(self, message: str = "", cause: BaseException | None = None):
        super().__init__(message or self.__class__.__name__)
        self.cause = cause


class StorageError(CacheError):
    """Schema, connection or transaction failure in the local store."""


class TransportError(CacheError):
    """Failure reported by a feed source."""


class FetchError(TransportError):
    """A feed source could not fetch or decode a partition."""


class MetadataFormatError(CacheError):
    """Partition metadata text is malformed."""


class LineError(MetadataFormatError):
    """Metadata text has fewer lines than expected."""


class SplitError(MetadataFormatError):
    """A metadata line has no ``label:value`` separator."""


class ParseIntError(MetadataFormatError):
    """A metadata size field is not an unsigned integer."""


class MetadataFileError(MetadataFormatError):
    """A metadata file could not be read from disk."""


class SerializationError(CacheError):
    """A record payload could not be encoded or decoded."""


class NotFound(CacheError):
    """No record exists for the requested identifier.

    Attributes:
        key: The identifier that was looked up.
    """

    def __init__(self, key: Any):
        super().__init__(f"not found: {key}")
        self.key = key
