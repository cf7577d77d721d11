"""
Database-backed document store with channel-layer change feeds.

Ride plans and content items live in the ORM. Every write publishes a
``doc.changed`` event to the channel group of the written document and of
its parent collection; each subscription owns a private channel in those
groups and re-reads the current state whenever an event arrives.

Groups:
    ride_plan_<ride_id>                   ride plan document
    ride_plan_<ride_id>_content           content collection
    ride_plan_<ride_id>_content_<item_id> content item document
"""

import asyncio
import dataclasses
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from asgiref.sync import sync_to_async
from channels.layers import get_channel_layer
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from rides.models import ContentItem, RidePlan
from services.ride_sync.plans import PLAN_FIELDS, TIMELINE_FIELD
from services.ride_sync.store import (
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

DOC_CHANGED_EVENT = "doc.changed"

RIDE_WRITABLE_FIELDS = set(PLAN_FIELDS) | {TIMELINE_FIELD}
CONTENT_WRITABLE_FIELDS = {"kind", "title", "url", "body", "caption", "updated_at"}


def group_for_path(path: str) -> str:
    ref = parse_path(path)
    group = f"ride_plan_{ref.ride_id}"
    if ref.collection:
        group += f"_{ref.collection}"
    if ref.item_id:
        group += f"_{ref.item_id}"
    return group


def _pk(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _json_safe(value: Any) -> Any:
    """JSONField payloads keep timestamps as ISO strings."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _check_fields(fields: Dict[str, Any], allowed) -> None:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise StoreError(f"Unsupported field(s): {', '.join(sorted(unknown))}")


# ---------------------- Document Mapping ----------------------

def ride_to_data(ride: RidePlan) -> Dict[str, Any]:
    return {
        "owner_id": str(ride.owner_id),
        "title": ride.title,
        "start_location": ride.start_location,
        "end_location": ride.end_location,
        "stops": list(ride.stops or []),
        "transport_mode": ride.transport_mode,
        "budget_tier": ride.budget_tier,
        "status": ride.status,
        "scheduled_start": ride.scheduled_start,
        "scheduled_end": ride.scheduled_end,
        "notes": ride.notes,
        "media_intent": ride.media_intent,
        TIMELINE_FIELD: list(ride.timeline_updates or []),
        "created_at": ride.created_at,
    }


def content_to_data(item: ContentItem) -> Dict[str, Any]:
    data = {
        "owner_id": str(item.owner_id),
        "kind": item.kind,
        "title": item.title,
        "caption": item.caption,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }
    if item.url:
        data["url"] = item.url
    if item.body:
        data["body"] = item.body
    return data


class ChannelLayerDocumentStore(DocumentStore):
    """
    ``DocumentStore`` over the Django ORM.

    Versions come from the ``version`` counters on the rows (and the plan's
    ``content_version`` for its content collection). A feed never delivers a
    version twice; a vanished document is delivered once with the next
    version of that feed.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    # ---------------------- Reads ----------------------

    def _read_sync(self, path: str):
        ref = parse_path(path)
        ride_pk = _pk(ref.ride_id)

        if ref.is_collection:
            ride = RidePlan.objects.filter(pk=ride_pk).only("content_version").first() if ride_pk else None
            items = ContentItem.objects.filter(ride_id=ride_pk) if ride_pk else ContentItem.objects.none()
            return CollectionSnapshot(
                documents=[
                    Snapshot(id=str(item.pk), exists=True, data=content_to_data(item), version=item.version)
                    for item in items
                ],
                version=ride.content_version if ride is not None else 0,
            )

        if ref.item_id is not None:
            item_pk = _pk(ref.item_id)
            item = ContentItem.objects.filter(pk=item_pk, ride_id=ride_pk).first() if item_pk and ride_pk else None
            if item is None:
                return Snapshot(id=ref.item_id, exists=False)
            return Snapshot(id=str(item.pk), exists=True, data=content_to_data(item), version=item.version)

        ride = RidePlan.objects.filter(pk=ride_pk).first() if ride_pk else None
        if ride is None:
            return Snapshot(id=ref.ride_id, exists=False)
        return Snapshot(id=str(ride.pk), exists=True, data=ride_to_data(ride), version=ride.version)

    async def _read(self, path: str):
        try:
            return await sync_to_async(self._read_sync)(path)
        except DatabaseError as exc:
            raise StoreError(f"Read failed for {path}: {exc}") from exc

    async def get(self, path: str):
        return await self._read(path)

    # ---------------------- Subscriptions ----------------------

    async def subscribe(self, path, on_snapshot, on_error) -> Subscription:
        group = group_for_path(path)
        layer = self.channel_layer
        channel = await layer.new_channel()
        await layer.group_add(group, channel)

        task = None

        def on_cancel():
            if task is not None:
                task.cancel()

        subscription = Subscription(path, on_cancel=on_cancel)
        task = asyncio.get_running_loop().create_task(
            self._pump(subscription, group, channel, on_snapshot, on_error)
        )
        return subscription

    async def _pump(self, subscription, group, channel, on_snapshot, on_error):
        """Deliver the current state, then a fresh read after every change event."""
        layer = self.channel_layer
        last_version = None
        try:
            while not subscription.cancelled:
                snapshot = await self._read(subscription.path)
                if subscription.cancelled:
                    break
                snapshot = self._sequence(snapshot, last_version)
                if snapshot is not None:
                    last_version = snapshot.version
                    on_snapshot(snapshot)
                await layer.receive(channel)
        except asyncio.CancelledError:
            pass
        except StoreError as exc:
            if not subscription.cancelled:
                on_error(exc)
        except Exception as exc:
            # transport failure on the layer, or a subscriber callback raised
            logger.exception("Feed for %s failed", subscription.path)
            if not subscription.cancelled:
                on_error(StoreError(str(exc) or type(exc).__name__))
        finally:
            try:
                await layer.group_discard(group, channel)
            except Exception:
                logger.warning("Could not leave group %s", group, exc_info=True)
            logger.debug("Feed for %s closed", subscription.path)

    @staticmethod
    def _sequence(snapshot, last_version):
        exists = getattr(snapshot, "exists", True)
        if last_version is None:
            return snapshot
        if not exists or (isinstance(snapshot, CollectionSnapshot) and snapshot.version == 0):
            return dataclasses.replace(snapshot, version=last_version + 1)
        if snapshot.version <= last_version:
            return None
        return snapshot

    async def _publish(self, path: str):
        """Notify the document's group and its parent collection's group."""
        ref = parse_path(path)
        groups = [group_for_path(path)]
        if ref.item_id is not None:
            groups.append(group_for_path(path.rsplit("/", 1)[0]))
        for group in groups:
            await self.channel_layer.group_send(group, {"type": DOC_CHANGED_EVENT, "path": path})

    # ---------------------- Writes ----------------------

    async def _run_write(self, path: str, func, *args):
        try:
            return await sync_to_async(func)(*args)
        except (DatabaseError, ValidationError, ValueError) as exc:
            raise StoreError(f"Write failed for {path}: {exc}") from exc

    async def add(self, collection_path, fields) -> str:
        if collection_path.strip("/") == RIDES_COLLECTION:
            ride_pk = await self._run_write(collection_path, self._add_ride, dict(fields))
            await self._publish(ride_path(ride_pk))
            return str(ride_pk)
        ref = parse_path(collection_path)
        if not ref.is_collection:
            raise StoreError(f"Not a collection: {collection_path}")
        item_pk = await self._run_write(collection_path, self._add_content, ref.ride_id, dict(fields))
        await self._publish(content_path(ref.ride_id, item_pk))
        return str(item_pk)

    def _add_ride(self, fields) -> int:
        now = timezone.now()
        fields = resolve_server_values(fields, now)
        fields.pop("created_at", None)
        owner_id = _pk(fields.pop("owner_id", None))
        if owner_id is None:
            raise StoreError("owner_id is required")
        _check_fields(fields, RIDE_WRITABLE_FIELDS)
        fields[TIMELINE_FIELD] = _json_safe(fields.get(TIMELINE_FIELD) or [])
        ride = RidePlan.objects.create(owner_id=owner_id, **fields)
        return ride.pk

    def _add_content(self, ride_id, fields) -> int:
        ride_pk = _pk(ride_id)
        owner_id = _pk(fields.pop("owner_id", None))
        if ride_pk is None or owner_id is None:
            raise StoreError("ride and owner_id are required")
        now = timezone.now()
        fields = resolve_server_values(fields, now)
        created_at = fields.pop("created_at", None) or now
        _check_fields(fields, CONTENT_WRITABLE_FIELDS)
        fields.setdefault("updated_at", now)
        with transaction.atomic():
            item = ContentItem.objects.create(
                ride_id=ride_pk, owner_id=owner_id, created_at=created_at, **fields
            )
            RidePlan.objects.filter(pk=ride_pk).update(content_version=F("content_version") + 1)
        return item.pk

    async def update(self, path, fields) -> None:
        await self._run_write(path, self._update, path, dict(fields))
        await self._publish(path)

    def _update(self, path, fields):
        ref = parse_path(path)
        if ref.is_collection:
            raise StoreError(f"Not a document: {path}")
        fields = resolve_server_values(fields, timezone.now())
        fields.pop("owner_id", None)

        if ref.item_id is None:
            _check_fields(fields, RIDE_WRITABLE_FIELDS)
            if TIMELINE_FIELD in fields:
                fields[TIMELINE_FIELD] = _json_safe(fields[TIMELINE_FIELD])
            updated = RidePlan.objects.filter(pk=_pk(ref.ride_id)).update(
                version=F("version") + 1, **fields
            )
        else:
            _check_fields(fields, CONTENT_WRITABLE_FIELDS)
            with transaction.atomic():
                updated = ContentItem.objects.filter(
                    pk=_pk(ref.item_id), ride_id=_pk(ref.ride_id)
                ).update(version=F("version") + 1, **fields)
                if updated:
                    RidePlan.objects.filter(pk=_pk(ref.ride_id)).update(
                        content_version=F("content_version") + 1
                    )
        if not updated:
            raise StoreError(f"No document to update: {path}")

    async def append(self, path, field_name, values) -> None:
        await self._run_write(path, self._append, path, field_name, list(values))
        await self._publish(path)

    def _append(self, path, field_name, values: List[Any]):
        ref = parse_path(path)
        if ref.collection is not None or field_name != TIMELINE_FIELD:
            raise StoreError(f"Field {field_name} is not an array")
        values = _json_safe(resolve_server_values(values, timezone.now()))
        with transaction.atomic():
            ride = RidePlan.objects.select_for_update().filter(pk=_pk(ref.ride_id)).first()
            if ride is None:
                raise StoreError(f"No document to update: {path}")
            ride.timeline_updates = list(ride.timeline_updates or []) + values
            ride.version += 1
            ride.save(update_fields=[TIMELINE_FIELD, "version"])

    async def delete(self, path) -> None:
        await self._run_write(path, self._delete, path)
        await self._publish(path)

    def _delete(self, path):
        ref = parse_path(path)
        if ref.is_collection:
            raise StoreError(f"Not a document: {path}")
        if ref.item_id is None:
            # content is left for an explicit purge
            RidePlan.objects.filter(pk=_pk(ref.ride_id)).delete()
            return
        with transaction.atomic():
            deleted, _ = ContentItem.objects.filter(
                pk=_pk(ref.item_id), ride_id=_pk(ref.ride_id)
            ).delete()
            if deleted:
                RidePlan.objects.filter(pk=_pk(ref.ride_id)).update(
                    content_version=F("content_version") + 1
                )
