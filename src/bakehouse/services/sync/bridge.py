"""
SyncBridge - Background task keeping the external store in step.

Each pass publishes pending outbox entries, then ingests new OrderIntake
rows. Passes repeat every poll_interval seconds, or sooner when a committed
transaction queued a publish (notify_change). Database work runs in worker
threads; only network calls run on the event loop.

Health moves between three states:

    healthy      last pass succeeded
    degraded     recent passes failed, still polling at the normal interval
    unavailable  UNAVAILABLE_AFTER consecutive failures; the poll interval
                 doubles per further failure up to max_poll_interval

Failures are logged and counted, never raised into the request path. The
private database stays authoritative throughout.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from bakehouse.services.exceptions import ServiceError, SyncError
from bakehouse.services.logging_utils import get_service_logger, log_operation
from bakehouse.services.sync import ingest, publisher
from bakehouse.services.sync.sheets_client import SheetsClient
from bakehouse.services.sync.token_provider import TokenProvider
from bakehouse.utils.config import (
    BusinessSettings,
    Config,
    SyncSettings,
    load_sync_credentials,
)
from bakehouse.utils.constants import SHEET_COLUMNS, SHEET_ORDER_INTAKE
from bakehouse.utils.datetime_utils import utc_now

logger = get_service_logger(__name__)

UNAVAILABLE_AFTER = 3


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


@dataclass
class SyncPassResult:
    """Counts from one publish + ingest pass."""

    published_rows: int = 0
    accepted: int = 0
    rejected: int = 0
    duplicates: int = 0
    error: Optional[str] = None
    results: List[ingest.IngestResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncBridge:
    """
    Drives publish and ingest against one spreadsheet.

    Args:
        client: Spreadsheet client (owned by the bridge, closed on stop())
        settings: Poll interval, backoff and shutdown deadline
        business_settings: Order limits applied to ingested orders
    """

    def __init__(
        self,
        client: SheetsClient,
        *,
        settings: Optional[SyncSettings] = None,
        business_settings: Optional[BusinessSettings] = None,
    ):
        self._client = client
        self._settings = settings or SyncSettings()
        self._business_settings = business_settings
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._status_lock = threading.Lock()
        self._state = HealthState.HEALTHY
        self._consecutive_failures = 0
        self._last_success_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._passes = 0

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        settings: Optional[SyncSettings] = None,
        business_settings: Optional[BusinessSettings] = None,
    ) -> "SyncBridge":
        """
        Build a bridge from the configured credentials.

        Raises:
            ConfigMissing: If credentials or the spreadsheet id are not configured
        """
        settings = settings or SyncSettings.from_env()
        credentials = load_sync_credentials(config)
        client = SheetsClient(
            credentials.spreadsheet_id,
            TokenProvider(credentials, settings),
            settings,
        )
        return cls(client, settings=settings, business_settings=business_settings)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the bridge's health, safe to call from any thread."""
        with self._status_lock:
            return {
                "state": self._state.value,
                "running": self.is_running,
                "consecutive_failures": self._consecutive_failures,
                "last_success_at": (
                    self._last_success_at.isoformat() if self._last_success_at else None
                ),
                "last_error": self._last_error,
                "passes": self._passes,
                "poll_interval": self.current_interval(),
            }

    def current_interval(self) -> float:
        """Seconds until the next scheduled pass."""
        base = self._settings.poll_interval
        if self._state != HealthState.UNAVAILABLE:
            return base
        doublings = self._consecutive_failures - UNAVAILABLE_AFTER + 1
        return min(self._settings.max_poll_interval, base * (2 ** doublings))

    def _record_success(self) -> None:
        with self._status_lock:
            self._passes += 1
            self._consecutive_failures = 0
            self._last_error = None
            self._last_success_at = utc_now()
            if self._state != HealthState.HEALTHY:
                logger.info(f"Sync recovered (was {self._state.value})")
            self._state = HealthState.HEALTHY

    def _record_failure(self, error: str) -> None:
        with self._status_lock:
            self._passes += 1
            self._consecutive_failures += 1
            self._last_error = error
            previous = self._state
            if self._consecutive_failures >= UNAVAILABLE_AFTER:
                self._state = HealthState.UNAVAILABLE
            else:
                self._state = HealthState.DEGRADED
            if previous != self._state:
                logger.warning(
                    f"Sync state {previous.value} -> {self._state.value} "
                    f"after {self._consecutive_failures} failure(s)"
                )

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def publish_pending(self) -> int:
        """
        Upsert every pending outbox record into its external sheet.

        Returns:
            Number of rows written

        Raises:
            SyncError: If the store cannot be written; the entries stay pending
        """
        batch = await asyncio.to_thread(publisher.collect_pending)
        if batch.is_empty:
            return 0

        written = 0
        try:
            for sheet in batch.sheets():
                rows = batch.rows[sheet]
                await self._client.upsert_rows(sheet, SHEET_COLUMNS[sheet], rows)
                written += len(rows)
        except SyncError as e:
            await asyncio.to_thread(publisher.mark_failed, batch.entry_ids, str(e))
            raise

        await asyncio.to_thread(publisher.mark_published, batch.entry_ids)
        return written

    async def ingest_pending(self) -> List[ingest.IngestResult]:
        """
        Read the intake sheet and process rows not seen before.

        Rows are queued in (submitted_at, id) order and drained by a single
        consumer, so processing order is deterministic.

        Raises:
            SyncError: If the intake sheet cannot be read
        """
        records = await self._client.read_records(SHEET_ORDER_INTAKE)
        pending = await asyncio.to_thread(ingest.pending_intake_rows, records)

        queue: asyncio.Queue = asyncio.Queue()
        for record in pending:
            queue.put_nowait(record)

        results = []
        while not queue.empty():
            record = queue.get_nowait()
            try:
                result = await asyncio.to_thread(
                    ingest.ingest_intake_row, record, settings=self._business_settings
                )
                results.append(result)
            except ServiceError as e:
                log_operation(
                    logger,
                    operation="ingest_intake_row",
                    outcome="deferred",
                    level=logging.ERROR,
                    external_id=record.get("id"),
                    error=str(e),
                )
            finally:
                queue.task_done()
        return results

    async def sync_once(self) -> SyncPassResult:
        """
        Run one publish + ingest pass and update the health state.

        Store failures are captured in the result rather than raised.
        """
        result = SyncPassResult()
        try:
            result.published_rows = await self.publish_pending()
            result.results = await self.ingest_pending()
        except SyncError as e:
            result.error = str(e)
            self._record_failure(result.error)
            log_operation(
                logger,
                operation="sync_once",
                outcome="failed",
                level=logging.WARNING,
                code=e.code,
                error=result.error,
            )
            return result

        for item in result.results:
            if item.outcome == ingest.OUTCOME_DUPLICATE:
                result.duplicates += 1
            elif item.accepted:
                result.accepted += 1
            else:
                result.rejected += 1
        self._record_success()
        log_operation(
            logger,
            operation="sync_once",
            outcome="success",
            published=result.published_rows,
            accepted=result.accepted,
            rejected=result.rejected,
        )
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def notify_change(self) -> None:
        """Wake the bridge for an early pass. Callable from any thread."""
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wake.set)

    async def _run(self) -> None:
        logger.info("Sync loop started")
        while True:
            try:
                await self.sync_once()
            except Exception as e:
                # Database or programming errors: keep the loop alive
                self._record_failure(f"{type(e).__name__}: {e}")
                logger.error(f"Unexpected error during sync pass: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.current_interval())
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def start(self) -> None:
        """Start the repeating sync task on the running loop."""
        if self.is_running:
            logger.warning("Sync bridge is already running")
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        publisher.add_change_listener(self.notify_change)
        self._task = asyncio.create_task(self._run(), name="bakehouse-sync")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Cancel the sync task and wait for it up to ``timeout`` seconds.

        A database write already running in a worker thread finishes its
        transaction; nothing new is started after cancellation.
        """
        timeout = self._settings.shutdown_timeout if timeout is None else timeout
        publisher.remove_change_listener(self.notify_change)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except asyncio.CancelledError:
                pass
            except asyncio.TimeoutError:
                logger.warning(f"Sync task did not stop within {timeout}s")
        await self._client.aclose()
        self._loop = None
        self._wake = None
        logger.info("Sync bridge stopped")
