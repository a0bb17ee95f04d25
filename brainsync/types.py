"""
Data types shared by the brainsync components.
"""

import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple, Optional


# Metadata fields stamped onto every record written through the client
OWNER_FIELD = "ownerId"
CREATED_FIELD = "createdAt"
UPDATED_FIELD = "updatedAt"
ID_FIELD = "id"

# Prefix marking identifiers minted locally while the remote was unreachable
LOCAL_ID_PREFIX = "local"

MAX_ID_LENGTH = 1024

# Collections: lowercase ASCII, digits and underscores
_COLLECTION_RE = re.compile(r'^[a-z][a-z0-9_]*$')

# IDs: printable characters minus control chars, path separators and quotes
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f\\/`<>|;"\']')

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def utc_now() -> str:
    """Current UTC timestamp: YYYY-MM-DDTHH:MM:SS.mmmZ.

    Millisecond precision with a Z suffix, the format every record
    timestamp uses.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical format as well as plain ISO strings with or
    without an offset.
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_stamp(value: Any) -> datetime:
    if not value:
        return _EPOCH
    try:
        return parse_utc_timestamp(str(value))
    except (ValueError, OverflowError):
        return _EPOCH


def is_newer(a: dict, b: dict) -> bool:
    """True if record ``a`` was updated strictly after record ``b``."""
    return _sort_stamp(a.get(UPDATED_FIELD)) > _sort_stamp(b.get(UPDATED_FIELD))


def sort_records(records: list[dict]) -> list[dict]:
    """Order records by updatedAt descending, ties by createdAt descending."""
    return sorted(
        records,
        key=lambda r: (_sort_stamp(r.get(UPDATED_FIELD)), _sort_stamp(r.get(CREATED_FIELD))),
        reverse=True,
    )


def validate_collection(collection: str) -> None:
    """Validate a collection name."""
    if not collection or not _COLLECTION_RE.match(collection):
        raise ValueError(
            f"Collection name must be lowercase letters, digits and underscores: {collection!r}"
        )


def validate_id(id: str) -> None:
    """Validate a document ID: length and no dangerous characters."""
    if not id or len(id) > MAX_ID_LENGTH:
        raise ValueError(f"ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise ValueError(f"ID contains invalid characters: {id!r}")


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


class LocalIdGenerator:
    """
    Mints identifiers for documents created while the remote is unreachable.

    IDs look like ``local_<base36 millis>_<random>``. The timestamp part is
    strictly increasing within one generator, even for calls in the same
    millisecond.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last_ms = 0

    def __call__(self) -> str:
        ms = int(self._clock() * 1000)
        if ms <= self._last_ms:
            ms = self._last_ms + 1
        self._last_ms = ms
        suffix = "".join(random.choice(_BASE36) for _ in range(9))
        return f"{LOCAL_ID_PREFIX}_{_to_base36(ms)}_{suffix}"


def is_local_id(id: str) -> bool:
    return id.startswith(LOCAL_ID_PREFIX + "_")


class ResourceKey(NamedTuple):
    """A single document, or a whole collection when document_id is None."""
    collection: str
    document_id: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        return self.document_id is None

    @property
    def cache_key(self) -> str:
        """Key used by the resource cache and the single-flight loader."""
        if self.document_id is None:
            return self.collection
        return f"{self.collection}/{self.document_id}"

    @property
    def fallback_key(self) -> str:
        """Key used by the fallback store."""
        if self.document_id is None:
            return self.collection
        return f"{self.collection}_{self.document_id}"

    def __str__(self) -> str:
        return self.cache_key


class WriteOp(str, Enum):
    """Kinds of write the client sends to the remote store."""
    CREATE = "create"
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class PendingWrite:
    """A write waiting in the batch writer's queue."""
    op: WriteOp
    collection: str
    document_id: Optional[str]
    payload: dict = field(default_factory=dict)
    enqueued_at: float = field(default_factory=time.time)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.collection, self.document_id)

    def to_dict(self) -> dict:
        """Wire form used by remote batch commits."""
        d: dict[str, Any] = {
            "op": self.op.value,
            "collection": self.collection,
        }
        if self.document_id is not None:
            d["id"] = self.document_id
        if self.op is not WriteOp.DELETE:
            d["data"] = self.payload
        return d


def stamp_record(
    data: dict,
    owner_id: str,
    existing: Optional[dict] = None,
    now: Optional[str] = None,
) -> dict:
    """
    Return a copy of ``data`` carrying ownerId, createdAt and updatedAt.

    createdAt is taken from the existing record when there is one (then
    from ``data``), so it survives updates. updatedAt is always refreshed.
    """
    now = now or utc_now()
    record = dict(data)
    created = None
    if existing:
        created = existing.get(CREATED_FIELD)
    if not created:
        created = record.get(CREATED_FIELD) or now
    record[OWNER_FIELD] = record.get(OWNER_FIELD) or owner_id
    record[CREATED_FIELD] = created
    record[UPDATED_FIELD] = now
    return record


def strip_id(record: dict) -> dict:
    """Copy of a record without its id field (remote payload form)."""
    return {k: v for k, v in record.items() if k != ID_FIELD}
