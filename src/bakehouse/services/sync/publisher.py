"""
Publish side of the external store sync.

Services call enqueue_change() inside the transaction that mutates a
published record (bake slot, flavor or location). The SyncBridge later
drains the outbox:

    batch = collect_pending()
    ... upsert batch.rows[sheet] into each external sheet ...
    mark_published(batch.entry_ids)

Entries are coalesced per record and the record's *current* state is
serialized, so the external row always converges to the latest private
row no matter how many changes were queued.
"""

import json
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from bakehouse.models import (
    BakeSlot,
    Flavor,
    Location,
    OutboxStatus,
    SyncOutboxEntry,
)
from bakehouse.services.database import session_scope
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.utils.constants import (
    SHEET_BAKE_SLOTS,
    SHEET_COLUMNS,
    SHEET_FLAVORS,
    SHEET_LOCATIONS,
)
from bakehouse.utils.datetime_utils import as_utc, utc_now

logger = get_service_logger(__name__)

ENTITY_BAKE_SLOT = "bake_slot"
ENTITY_FLAVOR = "flavor"
ENTITY_LOCATION = "location"

ENTITY_MODELS = {
    ENTITY_BAKE_SLOT: BakeSlot,
    ENTITY_FLAVOR: Flavor,
    ENTITY_LOCATION: Location,
}

ENTITY_SHEETS = {
    ENTITY_BAKE_SLOT: SHEET_BAKE_SLOTS,
    ENTITY_FLAVOR: SHEET_FLAVORS,
    ENTITY_LOCATION: SHEET_LOCATIONS,
}

# Publish order: locations before the slots that reference them
SHEET_ORDER = [SHEET_LOCATIONS, SHEET_FLAVORS, SHEET_BAKE_SLOTS]

_SESSION_DIRTY_KEY = "bakehouse_sync_dirty"


# ============================================================================
# Change notification
# ============================================================================

_listeners: List[Callable[[], None]] = []
_listeners_guard = threading.Lock()


def add_change_listener(callback: Callable[[], None]) -> None:
    """Register a callback run after any transaction that enqueued a change commits."""
    with _listeners_guard:
        if callback not in _listeners:
            _listeners.append(callback)


def remove_change_listener(callback: Callable[[], None]) -> None:
    with _listeners_guard:
        if callback in _listeners:
            _listeners.remove(callback)


@event.listens_for(Session, "after_commit")
def _notify_after_commit(session: Session) -> None:
    if not session.info.pop(_SESSION_DIRTY_KEY, False):
        return
    with _listeners_guard:
        callbacks = list(_listeners)
    for callback in callbacks:
        try:
            callback()
        except Exception as e:
            logger.error(f"Sync change listener failed: {e}")


@event.listens_for(Session, "after_rollback")
def _clear_after_rollback(session: Session) -> None:
    session.info.pop(_SESSION_DIRTY_KEY, None)


def entity_type_for(record) -> str:
    for entity_type, model in ENTITY_MODELS.items():
        if isinstance(record, model):
            return entity_type
    raise ValueError(f"{type(record).__name__} is not published to the external store")


def enqueue_change(session: Session, record) -> SyncOutboxEntry:
    """
    Queue a published record for the next sync pass.

    Must be called with the session that carries the mutation, so the
    outbox entry commits (or rolls back) together with it.

    Args:
        session: Active database session
        record: BakeSlot, Flavor or Location instance (flushed or not)

    Returns:
        The new SyncOutboxEntry
    """
    entity_type = entity_type_for(record)
    if record.id is None or record.uuid is None:
        session.flush()
    entry = SyncOutboxEntry(
        entity_type=entity_type,
        entity_id=record.id,
        entity_uuid=record.uuid,
        status=OutboxStatus.PENDING,
    )
    session.add(entry)
    session.info[_SESSION_DIRTY_KEY] = True
    return entry


# ============================================================================
# Serialization
# ============================================================================


def _format_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def serialize_bake_slot(slot: BakeSlot) -> Dict[str, str]:
    return {
        "id": slot.uuid,
        "date": slot.date.isoformat(),
        "location_id": slot.location.uuid if slot.location else "",
        "total_capacity": str(slot.total_capacity),
        "current_orders": str(slot.current_orders),
        "cutoff_time": _format_timestamp(slot.cutoff_time),
        "is_open": _format_bool(slot.is_open),
        "updated_at": _format_timestamp(slot.updated_at),
    }


def serialize_flavor(flavor: Flavor) -> Dict[str, str]:
    return {
        "id": flavor.uuid,
        "name": flavor.name,
        "description": flavor.description or "",
        "sizes": json.dumps([size.to_json() for size in flavor.sizes]),
        "is_active": _format_bool(flavor.is_active),
        "season": flavor.season or "year_round",
        "sort_order": str(flavor.sort_order or 0),
        "updated_at": _format_timestamp(flavor.updated_at),
    }


def serialize_location(location: Location) -> Dict[str, str]:
    return {
        "id": location.uuid,
        "name": location.name,
        "address": location.address or "",
        "is_active": _format_bool(location.is_active),
        "updated_at": _format_timestamp(location.updated_at),
    }


SERIALIZERS = {
    ENTITY_BAKE_SLOT: serialize_bake_slot,
    ENTITY_FLAVOR: serialize_flavor,
    ENTITY_LOCATION: serialize_location,
}


def tombstone_row(entity_type: str, entity_uuid: str) -> Dict[str, str]:
    """Row for a record deleted from the private store: hidden from the public view."""
    sheet = ENTITY_SHEETS[entity_type]
    row = {column: "" for column in SHEET_COLUMNS[sheet]}
    row["id"] = entity_uuid
    row["updated_at"] = _format_timestamp(utc_now())
    if entity_type == ENTITY_BAKE_SLOT:
        row["is_open"] = "FALSE"
        row["current_orders"] = "0"
        row["total_capacity"] = "0"
    else:
        row["is_active"] = "FALSE"
    return row


# ============================================================================
# Outbox draining
# ============================================================================


@dataclass
class PublishBatch:
    """
    Coalesced outbox contents, ready to upsert.

    Attributes:
        rows: Sheet name -> list of row dicts (one per record)
        entry_ids: Outbox entry ids covered by this batch
    """

    rows: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)
    entry_ids: List[int] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entry_ids

    def sheets(self) -> List[str]:
        return [sheet for sheet in SHEET_ORDER if self.rows.get(sheet)]


def collect_pending(*, limit: int = 500, session=None) -> PublishBatch:
    """
    Gather pending outbox entries and serialize the records they point at.

    Args:
        limit: Maximum outbox entries read in one batch
        session: Optional database session

    Returns:
        PublishBatch with one row per distinct record
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        entries = (
            session.query(SyncOutboxEntry)
            .filter(SyncOutboxEntry.status == OutboxStatus.PENDING)
            .order_by(SyncOutboxEntry.id)
            .limit(limit)
            .all()
        )

        batch = PublishBatch()
        seen = set()
        for entry in entries:
            batch.entry_ids.append(entry.id)
            key = (entry.entity_type, entry.entity_id)
            if key in seen or entry.entity_type not in SERIALIZERS:
                continue
            seen.add(key)

            record = session.get(ENTITY_MODELS[entry.entity_type], entry.entity_id)
            if record is None:
                row = tombstone_row(entry.entity_type, entry.entity_uuid)
            else:
                session.refresh(record)
                row = SERIALIZERS[entry.entity_type](record)
            batch.rows.setdefault(ENTITY_SHEETS[entry.entity_type], []).append(row)

        return batch


def mark_published(entry_ids: List[int], *, session=None) -> int:
    """Mark outbox entries as published. Returns the number updated."""
    if not entry_ids:
        return 0
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        now = utc_now()
        count = (
            session.query(SyncOutboxEntry)
            .filter(SyncOutboxEntry.id.in_(entry_ids))
            .update(
                {"status": OutboxStatus.PUBLISHED, "published_at": now, "last_error": None},
                synchronize_session=False,
            )
        )
        log_operation(logger, operation="mark_published", outcome="success", entries=count)
        return count


def mark_failed(entry_ids: List[int], error: str, *, session=None) -> int:
    """Record a failed publish attempt; the entries stay pending for the next pass."""
    if not entry_ids:
        return 0
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        count = (
            session.query(SyncOutboxEntry)
            .filter(SyncOutboxEntry.id.in_(entry_ids))
            .update(
                {
                    "attempts": SyncOutboxEntry.attempts + 1,
                    "last_error": error[:1000],
                },
                synchronize_session=False,
            )
        )
        return count


def pending_count(*, session=None) -> int:
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return (
            session.query(SyncOutboxEntry)
            .filter(SyncOutboxEntry.status == OutboxStatus.PENDING)
            .count()
        )


def enqueue_full_catalog(*, session=None) -> int:
    """
    Queue every location, flavor and bake slot for publishing.

    Used to regenerate the external store from the private store.

    Returns:
        Number of records queued
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        count = 0
        for model in (Location, Flavor, BakeSlot):
            for record in session.query(model).order_by(model.id).all():
                enqueue_change(session, record)
                count += 1
        log_operation(logger, operation="enqueue_full_catalog", outcome="success", records=count)
        return count
