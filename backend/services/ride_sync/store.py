"""
Document store contract consumed by the sync engine.

Paths follow a collection/document layout:

    rides/<ride_id>                       ride plan document
    rides/<ride_id>/content               content collection
    rides/<ride_id>/content/<item_id>     content item document

Every operation is a coroutine. Snapshots are pushed to subscribers as later
loop events, never inline with the call that caused them.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from django.conf import settings
from django.utils.module_loading import import_string

RIDES_COLLECTION = "rides"
CONTENT_COLLECTION = "content"

DEFAULT_DOCUMENT_STORE = "realtime.store.ChannelLayerDocumentStore"


class _ServerTimestamp:
    """Placeholder resolved to the commit time by the store."""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(Exception):
    """Raised by a store when a read or write cannot be completed."""
    pass


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time state of a single document."""
    id: str
    exists: bool
    data: Dict[str, Any] = field(default_factory=dict)
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


@dataclass(frozen=True)
class CollectionSnapshot:
    """Point-in-time state of a collection, newest document first."""
    documents: List[Snapshot] = field(default_factory=list)
    version: int = 0


SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """
    Handle for a live feed.

    ``cancel()`` is synchronous and idempotent: once it returns, no further
    snapshot reaches the subscriber.
    """

    def __init__(self, path: str, on_cancel: Optional[Callable[[], None]] = None):
        self.path = path
        self.cancelled = False
        self._on_cancel = on_cancel

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


class DocumentStore:
    """Interface every store backend implements."""

    async def subscribe(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Subscription:
        raise NotImplementedError

    async def get(self, path: str):
        """Read a document (Snapshot) or a collection (CollectionSnapshot)."""
        raise NotImplementedError

    async def add(self, collection_path: str, fields: Dict[str, Any]) -> str:
        """Create a document and return its store-assigned id."""
        raise NotImplementedError

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def append(self, path: str, field_name: str, values: List[Any]) -> None:
        """Atomically append values to an array field."""
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError


# ---------------------- Paths ----------------------

class DocumentPath(NamedTuple):
    ride_id: str
    collection: Optional[str] = None
    item_id: Optional[str] = None

    @property
    def is_collection(self) -> bool:
        return self.collection is not None and self.item_id is None


def ride_path(ride_id) -> str:
    return f"{RIDES_COLLECTION}/{ride_id}"


def content_path(ride_id, item_id=None) -> str:
    base = f"{RIDES_COLLECTION}/{ride_id}/{CONTENT_COLLECTION}"
    return f"{base}/{item_id}" if item_id is not None else base


def parse_path(path: str) -> DocumentPath:
    parts = [p for p in str(path).strip("/").split("/") if p]
    if len(parts) < 2 or parts[0] != RIDES_COLLECTION:
        raise StoreError(f"Unsupported path: {path}")
    if len(parts) == 2:
        return DocumentPath(parts[1])
    if parts[2] != CONTENT_COLLECTION or len(parts) > 4:
        raise StoreError(f"Unsupported path: {path}")
    return DocumentPath(parts[1], parts[2], parts[3] if len(parts) == 4 else None)


def resolve_server_values(value: Any, now) -> Any:
    """Replace every SERVER_TIMESTAMP placeholder with ``now``."""
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, now) for v in value]
    return value


def get_document_store() -> DocumentStore:
    """Instantiate the store configured by ``RIDE_DOCUMENT_STORE``."""
    store_class = import_string(getattr(settings, "RIDE_DOCUMENT_STORE", DEFAULT_DOCUMENT_STORE))
    return store_class()
