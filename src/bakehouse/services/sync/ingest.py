"""
Ingest side of the external store sync.

Public orders land as rows on the OrderIntake sheet. Each row is turned into
an OrderRequest and submitted through the regular intake path. The order and
its ProcessedIntakeRow marker are written in the same transaction, and a
business rejection is recorded the same way, so a row is handled exactly
once no matter how often the sheet is re-read.

Rows that race for the last units of a slot are processed in
(submitted_at, row id) order; the first one processed wins.
"""

import json
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from bakehouse.models import BakeSlot, Flavor, IntakeOutcome, Location, ProcessedIntakeRow
from bakehouse.services import capacity_ledger, order_intake_service
from bakehouse.services.database import session_scope
from bakehouse.services.exceptions import NotFound, ServiceError, ValidationError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.order_intake_service import OrderLineRequest, OrderRequest
from bakehouse.utils.config import BusinessSettings
from bakehouse.utils.datetime_utils import as_utc, parse_iso_datetime, utc_now

logger = get_service_logger(__name__)

OUTCOME_DUPLICATE = "duplicate"

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class IngestResult:
    external_id: str
    outcome: str
    order_id: Optional[int] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome == IntakeOutcome.ACCEPTED.value


def _truthy(value: Any) -> bool:
    return str(value).strip().upper() in ("TRUE", "1", "YES")


def _submitted_at(record: Dict[str, str]) -> Optional[datetime]:
    try:
        return parse_iso_datetime(record.get("submitted_at", ""))
    except ValueError:
        return None


def intake_sort_key(record: Dict[str, str]) -> Tuple[datetime, str]:
    """Rows without a readable submitted_at sort after every timestamped row."""
    return (_submitted_at(record) or _LATEST, str(record.get("id", "")))


def _resolve(session, model, entity: str, external_id: str) -> int:
    record = session.query(model).filter(model.uuid == external_id).first()
    if record is None:
        raise NotFound(entity, external_id)
    return record.id


def parse_intake_row(record: Dict[str, str], *, session=None) -> OrderRequest:
    """
    Translate an OrderIntake row into an OrderRequest.

    The row references the slot, pickup location and flavors by their public
    record ids; those are resolved to local ids here. ``items`` is a JSON
    array of {"flavor_id", "size", "quantity"} objects.

    Raises:
        ValidationError: If the items column is not a JSON array of objects
        NotFound: If a referenced slot, location or flavor is unknown
    """
    try:
        raw_items = json.loads(record.get("items") or "[]")
    except json.JSONDecodeError as e:
        raise ValidationError([f"Items: Not valid JSON ({e.msg})"])
    if not isinstance(raw_items, list) or not all(isinstance(i, dict) for i in raw_items):
        raise ValidationError(["Items: Must be a list of objects"])

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        slot_id = _resolve(session, BakeSlot, "bake_slot", record.get("bake_slot_id", "").strip())
        location_id = None
        if record.get("pickup_location_id", "").strip():
            location_id = _resolve(
                session, Location, "location", record["pickup_location_id"].strip()
            )

        lines = []
        for raw in raw_items:
            flavor_ref = str(raw.get("flavor_id", raw.get("flavorId", ""))).strip()
            quantity = raw.get("quantity")
            if isinstance(quantity, str) and quantity.strip().isdigit():
                quantity = int(quantity)
            lines.append(
                OrderLineRequest(
                    flavor_id=_resolve(session, Flavor, "flavor", flavor_ref),
                    size=str(raw.get("size") or ""),
                    quantity=quantity,
                )
            )

    return OrderRequest(
        bake_slot_id=slot_id,
        items=lines,
        first_name=record.get("first_name", ""),
        last_name=record.get("last_name", ""),
        email=record.get("email", ""),
        phone=record.get("phone") or None,
        pickup_location_id=location_id,
        notification_pref=record.get("notification_pref") or "email",
        sms_opt_in=_truthy(record.get("sms_opt_in", "")),
        customer_notes=record.get("customer_notes") or None,
    )


def pending_intake_rows(
    records: Iterable[Dict[str, str]], *, session=None
) -> List[Dict[str, str]]:
    """
    Drop rows that were already handled and order the rest for processing.

    Rows without an id cannot be tracked and are skipped with a warning.
    When the sheet holds the same id twice, only the first copy is kept.
    """
    unique: Dict[str, Dict[str, str]] = {}
    for record in records:
        external_id = str(record.get("id", "")).strip()
        if not external_id:
            log_operation(
                logger,
                operation="pending_intake_rows",
                outcome="skipped_row_without_id",
                level=logging.WARNING,
            )
            continue
        unique.setdefault(external_id, record)

    if not unique:
        return []

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        done = {
            row.external_id
            for row in session.query(ProcessedIntakeRow.external_id).filter(
                ProcessedIntakeRow.external_id.in_(list(unique))
            )
        }

    pending = [record for external_id, record in unique.items() if external_id not in done]
    return sorted(pending, key=intake_sort_key)


def _cutoff_clock(record: Dict[str, str], now: datetime) -> Optional[datetime]:
    """
    Evaluate cutoffs at submission time, not at ingest time.

    A row submitted before its slot's cutoff is still accepted when the
    bridge picks it up a little late, as long as the bake date has not
    passed. Timestamps in the future are ignored.
    """
    submitted = _submitted_at(record)
    if submitted is None or submitted > as_utc(now):
        return None
    return submitted


def _already_processed(session, external_id: str) -> Optional[ProcessedIntakeRow]:
    return (
        session.query(ProcessedIntakeRow)
        .filter(ProcessedIntakeRow.external_id == external_id)
        .first()
    )


def _record_rejection(external_id: str, error: ServiceError) -> IngestResult:
    try:
        with session_scope() as session:
            if _already_processed(session, external_id) is not None:
                return IngestResult(external_id, OUTCOME_DUPLICATE)
            session.add(
                ProcessedIntakeRow(
                    external_id=external_id,
                    outcome=IntakeOutcome.REJECTED,
                    error_code=error.code,
                    message=str(error)[:1000],
                )
            )
    except IntegrityError:
        return IngestResult(external_id, OUTCOME_DUPLICATE)
    return IngestResult(
        external_id,
        IntakeOutcome.REJECTED.value,
        error_code=error.code,
        message=str(error),
    )


def ingest_intake_row(
    record: Dict[str, str],
    *,
    now: Optional[datetime] = None,
    settings: Optional[BusinessSettings] = None,
) -> IngestResult:
    """
    Process one OrderIntake row exactly once.

    Runs in a worker thread; opens its own sessions.

    Returns:
        IngestResult with outcome 'accepted', 'rejected' or 'duplicate'

    Raises:
        ValidationError: If the row has no id
        DatabaseError: On unexpected database failures (the row stays
            unprocessed and is retried on the next pass)
    """
    external_id = str(record.get("id", "")).strip()
    if not external_id:
        raise ValidationError(["Intake row has no id"])
    now = now or utc_now()

    with session_scope() as session:
        if _already_processed(session, external_id) is not None:
            return IngestResult(external_id, OUTCOME_DUPLICATE)

    try:
        request = parse_intake_row(record)
        with capacity_ledger.slot_lock(request.bake_slot_id):
            with session_scope() as session:
                if _already_processed(session, external_id) is not None:
                    return IngestResult(external_id, OUTCOME_DUPLICATE)
                order = order_intake_service.submit_order(
                    request,
                    now=now,
                    cutoff_clock=_cutoff_clock(record, now),
                    settings=settings,
                    external_id=external_id,
                    session=session,
                )
                session.add(
                    ProcessedIntakeRow(
                        external_id=external_id,
                        outcome=IntakeOutcome.ACCEPTED,
                        order_id=order.id,
                    )
                )
                session.flush()
                order_id = order.id
    except IntegrityError:
        return IngestResult(external_id, OUTCOME_DUPLICATE)
    except ServiceError as e:
        result = _record_rejection(external_id, e)
        log_operation(
            logger,
            operation="ingest_intake_row",
            outcome=result.outcome,
            level=logging.WARNING,
            external_id=external_id,
            code=e.code,
        )
        return result

    log_operation(
        logger,
        operation="ingest_intake_row",
        outcome="accepted",
        external_id=external_id,
        order_id=order_id,
    )
    return IngestResult(external_id, IntakeOutcome.ACCEPTED.value, order_id=order_id)
