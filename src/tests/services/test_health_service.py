"""
Unit tests for Health Check Service.

Tests cover service initialization, threading lifecycle, database and sync
status reporting, and the status file.
"""

import json
import threading
import time
from pathlib import Path
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from bakehouse.services.health_service import HealthCheckService
from bakehouse.utils.constants import APP_VERSION


class TestHealthCheckServiceInit:
    """Test health service initialization."""

    def test_init_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        service = HealthCheckService()
        assert service._check_interval == 30
        assert service._health_file == Path("data/health.json")
        assert isinstance(service._stop_event, threading.Event)

    def test_init_custom_params(self, tmp_path):
        custom_path = tmp_path / "custom" / "health.json"
        service = HealthCheckService(check_interval=60, health_file=custom_path)
        assert service._check_interval == 60
        assert service._health_file == custom_path
        assert custom_path.parent.exists()


class TestHealthCheckServiceThreading:
    """Test service threading lifecycle."""

    def test_start_and_stop(self, test_db, tmp_path):
        service = HealthCheckService(check_interval=1, health_file=tmp_path / "health.json")
        service.start()
        assert service._thread.is_alive()
        assert service._thread.daemon is True

        service.stop(timeout=2.0)
        assert not service._thread.is_alive()

    def test_start_when_already_running(self, test_db, tmp_path):
        service = HealthCheckService(check_interval=1, health_file=tmp_path / "health.json")
        service.start()
        thread1 = service._thread
        service.start()
        assert service._thread is thread1
        service.stop()

    def test_stop_when_not_running(self, tmp_path):
        service = HealthCheckService(health_file=tmp_path / "health.json")
        service.stop()

    def test_loop_writes_status_file(self, test_db, tmp_path):
        health_file = tmp_path / "health.json"
        service = HealthCheckService(check_interval=1, health_file=health_file)

        service.start()
        deadline = time.monotonic() + 5
        while not health_file.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        service.stop()

        data = json.loads(health_file.read_text())
        assert data["database"] == "connected"
        assert data["app_version"] == APP_VERSION


class TestStatus:
    """Test the status document."""

    def test_online_without_sync(self, sample_slot, tmp_path):
        service = HealthCheckService(health_file=tmp_path / "health.json")

        status = service.check_now()

        assert status["status"] == "online"
        assert status["database"] == "connected"
        assert status["sync"] == {"state": None, "configured": False}
        assert status["pending_publishes"] == 2

    def test_degraded_when_sync_is_failing(self, test_db, tmp_path):
        def sync_status():
            return {"state": "degraded", "consecutive_failures": 1}

        service = HealthCheckService(health_file=tmp_path / "health.json", sync_status=sync_status)

        status = service.check_now()

        assert status["status"] == "degraded"
        assert status["sync"]["configured"] is True
        assert status["sync"]["consecutive_failures"] == 1

    def test_healthy_sync(self, test_db, tmp_path):
        service = HealthCheckService(
            health_file=tmp_path / "health.json", sync_status=lambda: {"state": "healthy"}
        )
        assert service.check_now()["status"] == "online"

    @patch("bakehouse.services.health_service.session_scope")
    def test_database_disconnected(self, mock_session, test_db, tmp_path):
        mock_session.side_effect = SQLAlchemyError("Connection failed")
        service = HealthCheckService(health_file=tmp_path / "health.json")

        status = service.check_now()

        assert status["database"] == "disconnected"
        assert status["status"] == "degraded"


class TestFileWriting:
    """Test health status file writing."""

    def test_write_health_status_success(self, tmp_path):
        health_file = tmp_path / "health.json"
        service = HealthCheckService(health_file=health_file)
        status_data = {"status": "online", "database": "connected"}

        assert service._write_health_status(status_data) is True
        assert json.loads(health_file.read_text()) == status_data
        assert not health_file.with_suffix(".json.tmp").exists()

    def test_write_error_is_reported(self, tmp_path):
        health_file = tmp_path / "health.json"
        service = HealthCheckService(health_file=health_file)
        health_file.mkdir()

        assert service._write_health_status({"status": "online"}) is False
