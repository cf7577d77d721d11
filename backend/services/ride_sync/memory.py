"""In-process document store used by tests and local development."""

import asyncio
import copy
import itertools
import logging
from typing import Any, Dict, List, Tuple

from django.utils import timezone

from .store import (
    RIDES_COLLECTION,
    CollectionSnapshot,
    DocumentStore,
    Snapshot,
    StoreError,
    Subscription,
    content_path,
    parse_path,
    resolve_server_values,
    ride_path,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    Asyncio document store backed by dictionaries.

    Every write bumps a global sequence; the sequence value becomes the
    version of the written document and of its parent collection, so
    snapshots are totally ordered in commit order.
    """

    def __init__(self, clock=None):
        self._clock = clock or timezone.now
        self._sequence = 0
        self._ids = itertools.count(1)
        # path -> (data, version, created sequence)
        self._documents: Dict[str, Tuple[Dict[str, Any], int, int]] = {}
        self._collection_versions: Dict[str, int] = {}
        self._subscribers: Dict[str, List[Tuple[Subscription, Any, Any]]] = {}

    # ---------------------- Reads ----------------------

    def _snapshot(self, path: str) -> Snapshot:
        doc_id = path.rsplit("/", 1)[-1]
        entry = self._documents.get(path)
        if entry is None:
            return Snapshot(id=doc_id, exists=False, version=self._sequence)
        data, version, _ = entry
        return Snapshot(id=doc_id, exists=True, data=copy.deepcopy(data), version=version)

    def _collection_snapshot(self, path: str) -> CollectionSnapshot:
        prefix = path + "/"
        members = [
            (p, entry) for p, entry in self._documents.items()
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        ]
        # created_at desc, later inserts first on ties
        members.sort(
            key=lambda item: (item[1][0].get("created_at") or self._clock(), item[1][2]),
            reverse=True,
        )
        return CollectionSnapshot(
            documents=[self._snapshot(p) for p, _ in members],
            version=self._collection_versions.get(path, 0),
        )

    def _read(self, path: str):
        if parse_path(path).is_collection:
            return self._collection_snapshot(path)
        return self._snapshot(path)

    async def get(self, path: str):
        await asyncio.sleep(0)
        return self._read(path)

    # ---------------------- Subscriptions ----------------------

    async def subscribe(self, path, on_snapshot, on_error) -> Subscription:
        parse_path(path)
        subscription = Subscription(path, on_cancel=lambda: self._forget(path, subscription))
        self._subscribers.setdefault(path, []).append((subscription, on_snapshot, on_error))
        self._schedule(subscription, on_snapshot, self._read(path))
        return subscription

    def _forget(self, path: str, subscription: Subscription):
        entries = self._subscribers.get(path, [])
        self._subscribers[path] = [e for e in entries if e[0] is not subscription]

    def _schedule(self, subscription, callback, payload):
        asyncio.get_running_loop().call_soon(self._deliver, subscription, callback, payload)

    @staticmethod
    def _deliver(subscription, callback, payload):
        if subscription.cancelled:
            return
        callback(payload)

    def _notify(self, path: str):
        for watched in (path, path.rsplit("/", 1)[0]):
            for subscription, on_snapshot, _ in list(self._subscribers.get(watched, [])):
                self._schedule(subscription, on_snapshot, self._read(watched))

    def deliver(self, path: str, payload):
        """Push an arbitrary snapshot to subscribers of ``path``."""
        for subscription, on_snapshot, _ in list(self._subscribers.get(path, [])):
            self._schedule(subscription, on_snapshot, payload)

    def fail_subscriptions(self, path: str, error: Exception):
        """Report a feed failure to every subscriber of ``path``."""
        for subscription, _, on_error in list(self._subscribers.get(path, [])):
            self._schedule(subscription, on_error, error)

    # ---------------------- Writes ----------------------

    def _commit(self, path: str, data: Dict[str, Any], created: int = None):
        self._sequence += 1
        if created is None:
            created = self._documents.get(path, (None, None, self._sequence))[2]
        self._documents[path] = (data, self._sequence, created)
        parent = path.rsplit("/", 1)[0]
        self._collection_versions[parent] = self._sequence
        self._notify(path)

    def _existing(self, path: str) -> Dict[str, Any]:
        entry = self._documents.get(path)
        if entry is None:
            raise StoreError(f"No document to update: {path}")
        return copy.deepcopy(entry[0])

    async def add(self, collection_path, fields) -> str:
        await asyncio.sleep(0)
        doc_id = str(next(self._ids))
        if collection_path.strip("/") == RIDES_COLLECTION:
            path = ride_path(doc_id)
        else:
            ref = parse_path(collection_path)
            if not ref.is_collection:
                raise StoreError(f"Not a collection: {collection_path}")
            path = content_path(ref.ride_id, doc_id)
        data = resolve_server_values(copy.deepcopy(dict(fields)), self._clock())
        self._commit(path, data, created=self._sequence + 1)
        return doc_id

    async def update(self, path, fields) -> None:
        await asyncio.sleep(0)
        data = self._existing(path)
        data.update(resolve_server_values(copy.deepcopy(dict(fields)), self._clock()))
        self._commit(path, data)

    async def append(self, path, field_name, values) -> None:
        await asyncio.sleep(0)
        data = self._existing(path)
        current = data.get(field_name) or []
        if not isinstance(current, list):
            raise StoreError(f"Field {field_name} is not an array")
        data[field_name] = current + resolve_server_values(copy.deepcopy(list(values)), self._clock())
        self._commit(path, data)

    async def delete(self, path) -> None:
        await asyncio.sleep(0)
        if self._documents.pop(path, None) is None:
            logger.debug("delete on missing document %s", path)
        self._sequence += 1
        self._collection_versions[path.rsplit("/", 1)[0]] = self._sequence
        self._notify(path)
