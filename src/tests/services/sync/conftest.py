"""Fixtures for external store sync tests."""

import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from bakehouse.services.sync.sheets_client import SheetsClient
from bakehouse.utils.config import SyncCredentials, SyncSettings
from bakehouse.utils.datetime_utils import as_utc

ROW_NUMBER = re.compile(r"[A-Z]+(\d+)")


class InMemorySheets(SheetsClient):
    """
    SheetsClient whose values API is a dict of in-memory sheets.

    The record-level helpers (read_records, upsert_rows) are the real ones.
    Set ``fail`` to an exception to make every call raise it.
    """

    def __init__(self, sheets: Optional[Dict[str, List[List[Any]]]] = None):
        super().__init__(
            "test-spreadsheet",
            token_provider=None,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self._refuse)),
        )
        self.sheets: Dict[str, List[List[Any]]] = sheets or {}
        self.fail: Optional[Exception] = None
        self.calls = 0
        self.closed = False

    @staticmethod
    def _refuse(request):
        raise AssertionError(f"unexpected HTTP request {request.url}")

    def _check(self):
        self.calls += 1
        if self.fail is not None:
            raise self.fail

    async def aclose(self) -> None:
        self.closed = True
        await self._client.aclose()

    async def get_values(self, range_name: str) -> List[List[Any]]:
        self._check()
        return [list(row) for row in self.sheets.get(range_name, [])]

    def _write_row(self, range_name: str, row: List[Any]) -> None:
        sheet, cells = range_name.split("!")
        number = int(ROW_NUMBER.match(cells).group(1))
        values = self.sheets.setdefault(sheet, [])
        while len(values) < number:
            values.append([])
        values[number - 1] = list(row)

    async def update_values(self, range_name: str, rows: List[List[Any]]) -> Dict[str, Any]:
        self._check()
        self._write_row(range_name, rows[0])
        return {}

    async def append_values(self, sheet: str, rows: List[List[Any]]) -> Dict[str, Any]:
        self._check()
        self.sheets.setdefault(sheet, []).extend(list(row) for row in rows)
        return {}

    async def batch_update(self, data: List[Dict[str, Any]]) -> Dict[str, Any]:
        self._check()
        for entry in data:
            self._write_row(entry["range"], entry["values"][0])
        return {}

    def records(self, sheet: str) -> List[Dict[str, str]]:
        values = self.sheets.get(sheet, [])
        if not values:
            return []
        header = values[0]
        return [dict(zip(header, row)) for row in values[1:]]


@pytest.fixture
def fake_sheets():
    return InMemorySheets()


@pytest.fixture
def intake_row(sample_slot, sample_location, sample_flavor):
    """Factory for OrderIntake records referencing the sample catalog by uuid."""

    def _make(row_id, quantity=1, minutes_before_cutoff=60, **overrides):
        submitted = as_utc(sample_slot.cutoff_time) - timedelta(minutes=minutes_before_cutoff)
        record = {
            "id": row_id,
            "bake_slot_id": sample_slot.uuid,
            "pickup_location_id": sample_location.uuid,
            "items": (
                f'[{{"flavor_id": "{sample_flavor.uuid}", "size": "Regular", '
                f'"quantity": {quantity}}}]'
            ),
            "first_name": "Grace",
            "last_name": "Hopper",
            "email": f"{row_id}@example.com",
            "phone": "",
            "notification_pref": "email",
            "sms_opt_in": "FALSE",
            "customer_notes": "",
            "submitted_at": submitted.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture(scope="session")
def rsa_private_key_pem():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def credentials(rsa_private_key_pem):
    return SyncCredentials(
        client_email="sync@bakehouse.iam.example.com",
        private_key=rsa_private_key_pem,
        spreadsheet_id="sheet-123",
    )


@pytest.fixture
def fast_settings():
    return SyncSettings(
        poll_interval=120.0,
        max_poll_interval=900.0,
        max_attempts=4,
        backoff_base=0.5,
        backoff_max=8.0,
        shutdown_timeout=1.0,
    )
