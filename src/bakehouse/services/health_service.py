"""
Health Check Service - Background monitoring for application health status.

A daemon thread periodically writes a JSON status file for external
monitoring tools: database connectivity, external store sync state, pending
publish count and the application version.

Example usage:
    from bakehouse.services.health_service import HealthCheckService

    service = HealthCheckService(sync_status=bridge.status)
    service.start()
    # ... application runs ...
    service.stop()
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from bakehouse.services.database import session_scope
from bakehouse.services.sync import publisher
from bakehouse.utils.constants import APP_VERSION
from bakehouse.utils.datetime_utils import utc_now


class HealthCheckService:
    """
    Background service writing periodic health status to a file.

    Attributes:
        _check_interval: Seconds between health checks
        _health_file: Path to the health status JSON file
        _sync_status: Optional callable returning the SyncBridge status snapshot
        _stop_event: Threading event for signaling shutdown
        _thread: Background daemon thread
    """

    def __init__(
        self,
        check_interval: int = 30,
        health_file: Optional[Path] = None,
        sync_status: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self._logger = logging.getLogger(__name__)
        self._check_interval = check_interval
        self._health_file = health_file or Path("data/health.json")
        self._sync_status = sync_status
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._health_file.parent.mkdir(parents=True, exist_ok=True)
        self._logger.info(f"Health check service initialized (interval: {check_interval}s)")

    def start(self) -> None:
        """Start the background thread. Does nothing if already running."""
        if self._thread and self._thread.is_alive():
            self._logger.warning("Health check service is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._health_check_loop,
            name="HealthCheckThread",
            daemon=True,
        )
        self._thread.start()
        self._logger.info("Health check service started")

    def stop(self, timeout: float = 2.0) -> None:
        """Signal the background thread to stop and wait up to ``timeout`` seconds."""
        if not self._thread or not self._thread.is_alive():
            self._logger.info("Health check service is not running")
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)

        if self._thread.is_alive():
            self._logger.warning("Health check thread did not stop within timeout")
        else:
            self._logger.info("Health check service stopped")

    def check_now(self) -> Dict[str, Any]:
        """Build the current status document."""
        db_status = self._check_database()
        sync = self._check_sync()
        healthy = db_status == "connected" and sync.get("state") in (None, "healthy")
        return {
            "status": "online" if healthy else "degraded",
            "database": db_status,
            "sync": sync,
            "pending_publishes": self._pending_publishes(),
            "timestamp": utc_now().isoformat(),
            "app_version": APP_VERSION,
        }

    def _health_check_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                status_data = self.check_now()
                self._write_health_status(status_data)
                self._logger.debug(
                    f"Health check performed: status={status_data['status']}, "
                    f"db={status_data['database']}"
                )
            except Exception as e:
                # Never crash the health check thread
                self._logger.error(f"Error during health check: {e}", exc_info=True)

            self._stop_event.wait(timeout=self._check_interval)

    def _check_database(self) -> str:
        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            return "connected"
        except SQLAlchemyError as e:
            self._logger.error(f"Database connection failed: {e}")
            return "disconnected"

    def _check_sync(self) -> Dict[str, Any]:
        if self._sync_status is None:
            return {"state": None, "configured": False}
        return {"configured": True, **self._sync_status()}

    def _pending_publishes(self) -> Optional[int]:
        try:
            return publisher.pending_count()
        except SQLAlchemyError:
            return None

    def _write_health_status(self, status_data: Dict[str, Any]) -> bool:
        """
        Write the status via a temporary file and rename, so readers never
        see a partial document.
        """
        try:
            tmp_file = self._health_file.with_suffix(".json.tmp")
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(status_data, f, indent=2, ensure_ascii=False)
            tmp_file.replace(self._health_file)
            return True
        except OSError as e:
            self._logger.error(f"Failed to write health status file: {e}")
            return False
