"""
Public Catalog - What the order form is allowed to see.

Pure functions over rows read from the external store (dicts of strings, as
returned by SheetsClient.read_records). They never touch the private
database, so the public read path keeps working while the private side is
offline.
"""

import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from bakehouse.utils.datetime_utils import as_utc, parse_iso_date, parse_iso_datetime, season_for

DEFAULT_SIZES = [{"name": "Regular", "price": 10}]
UNKNOWN_LOCATION = "Unknown Location"
DEFAULT_SORT_ORDER = 999


def is_truthy(value: Any) -> bool:
    """Sheet booleans are written as TRUE/FALSE; older rows use 1/0."""
    return str(value).strip().upper() in ("TRUE", "1")


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _parse_sizes(raw: str) -> List[Dict[str, Any]]:
    try:
        sizes = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return list(DEFAULT_SIZES)
    if not isinstance(sizes, list):
        return list(DEFAULT_SIZES)
    return sizes


def public_flavors(records: List[Dict[str, str]], today: date) -> List[Dict[str, Any]]:
    """
    Active flavors available in today's season, by sort order.

    Returns:
        List of {id, name, description, sizes}
    """
    season = season_for(today)
    available = []
    for record in records:
        if not is_truthy(record.get("is_active", "")):
            continue
        flavor_season = (record.get("season") or "year_round").strip().lower()
        if flavor_season not in ("year_round", season):
            continue
        available.append(record)

    available.sort(key=lambda r: _int(r.get("sort_order"), DEFAULT_SORT_ORDER))
    return [
        {
            "id": record.get("id", ""),
            "name": record.get("name", ""),
            "description": record.get("description", ""),
            "sizes": _parse_sizes(record.get("sizes", "")),
        }
        for record in available
    ]


def _slot_is_visible(record: Dict[str, str], now: datetime) -> bool:
    if not is_truthy(record.get("is_open", "")):
        return False
    try:
        slot_date = parse_iso_date(record.get("date", ""))
    except ValueError:
        return False
    if slot_date < now.date():
        return False
    try:
        cutoff = parse_iso_datetime(record.get("cutoff_time", ""))
    except ValueError:
        cutoff = None
    if cutoff is not None and cutoff < now:
        return False
    return True


def public_bake_slots(
    slot_records: List[Dict[str, str]],
    location_records: List[Dict[str, str]],
    now: datetime,
) -> List[Dict[str, Any]]:
    """
    Open slots dated today or later whose cutoff has not passed, by date.

    Returns:
        List of {id, date, locationName, spotsRemaining, isOpen}; isOpen is
        false when the slot is full
    """
    now = as_utc(now)
    names = {record.get("id", ""): record.get("name", "") for record in location_records}

    slots = []
    for record in slot_records:
        if not _slot_is_visible(record, now):
            continue
        remaining = max(
            0, _int(record.get("total_capacity")) - _int(record.get("current_orders"))
        )
        slots.append(
            {
                "id": record.get("id", ""),
                "date": record.get("date", ""),
                "locationName": names.get(record.get("location_id", "")) or UNKNOWN_LOCATION,
                "spotsRemaining": remaining,
                "isOpen": remaining > 0,
            }
        )
    return sorted(slots, key=lambda s: s["date"])


def public_locations(records: List[Dict[str, str]]) -> List[Dict[str, Optional[str]]]:
    """Active pickup locations as {id, name, address}."""
    return [
        {
            "id": record.get("id", ""),
            "name": record.get("name", ""),
            "address": record.get("address") or None,
        }
        for record in records
        if is_truthy(record.get("is_active", ""))
    ]
