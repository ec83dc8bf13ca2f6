"""
Key/document mapping for the Mongo gRPC store.

Every index entry and every chunk is stored as one document of the shape
``{hash, range, value}``. This module owns the translation between the
caller's coordinates and that stored shape.

Stored form:
    hash  - string, as given by the caller
    range - lowercase hex of the range bytes. MongoDB orders binary data
            by length before content, so raw bytes would break range and
            prefix scans; fixed-width hex text sorts exactly like the
            underlying bytes.
    value - binary, opaque payload

Invariants:
    - encode_range/decode_range are inverse and order-preserving
    - Chunks always use the empty range sentinel
    - Decoding never guesses: malformed documents raise StoreDecodeError
"""

from __future__ import annotations

import binascii
from dataclasses import dataclass, field
from typing import Any

from ..store.base import Document as StoredDocument
from ..store.base import InvalidRequestError, StoreDecodeError

HASH_FIELD = "hash"
RANGE_FIELD = "range"
VALUE_FIELD = "value"

CHUNK_RANGE = b""


def encode_range(range_value: bytes) -> str:
    """Encode range bytes into their order-preserving stored form."""
    return bytes(range_value).hex()


def decode_range(stored: Any) -> bytes:
    """Decode a stored range back into bytes.

    Raises:
        StoreDecodeError: If the stored range is not valid hex text
    """
    if not isinstance(stored, str):
        raise StoreDecodeError(f"range must be a hex string, got {type(stored).__name__}")
    try:
        return bytes.fromhex(stored)
    except ValueError as e:
        raise StoreDecodeError(f"range is not valid hex: {e}") from e


@dataclass(frozen=True)
class Document:
    """A stored entry with decoded fields.

    Attributes:
        hash: Partition/identity key
        range: Disambiguates entries sharing a hash (b"" for chunks)
        value: Opaque payload
    """

    hash: str
    range: bytes
    value: bytes


def to_document(hash_value: str, range_value: bytes, value: bytes) -> StoredDocument:
    """Build the stored form of an entry."""
    return {
        HASH_FIELD: hash_value,
        RANGE_FIELD: encode_range(range_value),
        VALUE_FIELD: bytes(value),
    }


def from_document(raw: StoredDocument) -> Document:
    """Decode a stored document.

    Raises:
        StoreDecodeError: If a field is missing or has the wrong type
    """
    try:
        hash_value = raw[HASH_FIELD]
        range_value = raw[RANGE_FIELD]
        value = raw[VALUE_FIELD]
    except KeyError as e:
        raise StoreDecodeError(f"stored document is missing field {e}") from e

    if not isinstance(hash_value, str):
        raise StoreDecodeError(f"hash must be a string, got {type(hash_value).__name__}")
    if not isinstance(value, (bytes, bytearray)):
        raise StoreDecodeError(f"value must be binary, got {type(value).__name__}")

    return Document(hash=hash_value, range=decode_range(range_value), value=bytes(value))


def match_key(hash_value: str, range_value: bytes) -> StoredDocument:
    """Filter selecting the entry at exactly (hash, range)."""
    return {HASH_FIELD: hash_value, RANGE_FIELD: encode_range(range_value)}


def _require_table(table: str) -> None:
    if not table:
        raise InvalidRequestError("table name is required")


@dataclass(frozen=True)
class IndexEntry:
    """A logical index write or delete unit.

    Attributes:
        table: Table (collection) name
        hash: Hash key
        range: Range key
        value: Payload (ignored for deletes)
    """

    table: str
    hash: str
    range: bytes = b""
    value: bytes = b""

    def __post_init__(self) -> None:
        _require_table(self.table)

    @property
    def coordinate(self) -> tuple[str, str, bytes]:
        return (self.table, self.hash, self.range)

    def to_document(self) -> StoredDocument:
        return to_document(self.hash, self.range, self.value)

    def match(self) -> StoredDocument:
        return match_key(self.hash, self.range)


@dataclass(frozen=True)
class Row:
    """A query result: the range and value of one index entry."""

    range: bytes
    value: bytes

    @classmethod
    def from_document(cls, raw: StoredDocument) -> Row:
        document = from_document(raw)
        return cls(range=document.range, value=document.value)


@dataclass(frozen=True)
class Chunk:
    """A blob addressed by (table, key).

    Attributes:
        table: Table (collection) name
        key: Chunk key, stored as the hash
        encoded: Encoded chunk payload
    """

    table: str
    key: str
    encoded: bytes = b""

    def __post_init__(self) -> None:
        _require_table(self.table)

    @property
    def coordinate(self) -> tuple[str, str]:
        return (self.table, self.key)

    def to_document(self) -> StoredDocument:
        return to_document(self.key, CHUNK_RANGE, self.encoded)

    def match(self) -> StoredDocument:
        return {HASH_FIELD: self.key}


@dataclass(frozen=True)
class IndexQuery:
    """A query against one hash of one table.

    Empty predicates are unset, matching proto3 bytes semantics.

    Attributes:
        table: Table (collection) name
        hash: Hash key to scan
        range_start: Inclusive lower bound on the range
        range_prefix: Only ranges starting with these bytes
        value_equal: Only entries with exactly this value
    """

    table: str
    hash: str
    range_start: bytes = b""
    range_prefix: bytes = b""
    value_equal: bytes = b""

    def __post_init__(self) -> None:
        _require_table(self.table)


@dataclass(frozen=True)
class TableDesc:
    """Description of a table as exchanged with callers."""

    name: str
    use_on_demand_io: bool = False
    provisioned_read: int = 0
    provisioned_write: int = 0
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TableStatus:
    """Result of describing a table."""

    desc: TableDesc
    is_active: bool
