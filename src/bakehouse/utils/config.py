"""
Configuration management for the Bakehouse application.

This module handles:
- Database path configuration
- Environment-specific configuration (development vs. production)
- Business settings passed explicitly into the pricing and intake services
- External store (Google Sheets) sync settings and credentials
"""

import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

from bakehouse.services.exceptions import ConfigMissing

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_CUTOFF_HOURS,
    DEFAULT_PACKAGING_PER_LOAF,
    DEFAULT_UTILITIES_PER_LOAF,
    GOOGLE_SHEETS_API_BASE,
    GOOGLE_SHEETS_SCOPE,
    GOOGLE_TOKEN_URI,
    MAX_ITEMS_PER_ORDER,
    MAX_ORDER_TOTAL,
    MAX_QUANTITY_PER_ITEM,
)

logger = logging.getLogger(__name__)


class Config:
    """
    Application configuration manager.

    Handles database paths and environment settings.
    """

    def __init__(self, environment: str = "production", base_dir: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
            base_dir: Optional override for the data directory
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if base_dir is not None:
            self._base_dir = Path(base_dir)
        elif environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_documents_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME

        self._ensure_directories()

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used in development."""
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def _get_user_documents_dir(self) -> Path:
        """User's Documents folder with an app subdirectory, used in production."""
        return Path.home() / "Documents" / "Bakehouse"

    def _ensure_directories(self):
        """Create necessary directories if they don't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        return self._app_name

    @property
    def app_version(self) -> str:
        return self._app_version

    @property
    def database_version(self) -> str:
        return self._database_version

    @property
    def data_dir(self) -> Path:
        """Directory holding the database, logs and health file."""
        return self._base_dir

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def log_path(self) -> Path:
        return self._base_dir / "bakehouse.log"

    @property
    def health_file(self) -> Path:
        return self._base_dir / "health.json"

    @property
    def google_config_path(self) -> Path:
        """Fallback location for sync credentials."""
        return self._base_dir / "google-config.json"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def database_exists(self) -> bool:
        return self._database_path.exists()

    def __repr__(self) -> str:
        return f"Config(environment='{self.environment}', database_path='{self._database_path}')"


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    BAKEHOUSE_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get("BAKEHOUSE_ENV", "production")
        data_dir = os.environ.get("BAKEHOUSE_DATA_DIR")
        _config_instance = Config(environment, base_dir=Path(data_dir) if data_dir else None)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """Reset the global configuration instance. Useful for testing."""
    global _config_instance
    _config_instance = None


# ============================================================================
# Business Settings
# ============================================================================


@dataclass(frozen=True)
class BusinessSettings:
    """
    Pricing and intake settings.

    Passed into RecipeScaler and OrderIntakeProcessor at call time rather
    than read from ambient state.

    Attributes:
        packaging_per_loaf: Packaging overhead added to every loaf
        utilities_per_loaf: Oven/utility overhead added to every loaf
        default_cutoff_hours: Hours before the bake date that ordering closes
        max_items_per_order: Maximum order lines
        max_quantity_per_item: Maximum loaves per line
        max_order_total: Maximum order total in dollars
    """

    packaging_per_loaf: Decimal = Decimal(DEFAULT_PACKAGING_PER_LOAF)
    utilities_per_loaf: Decimal = Decimal(DEFAULT_UTILITIES_PER_LOAF)
    default_cutoff_hours: int = DEFAULT_CUTOFF_HOURS
    max_items_per_order: int = MAX_ITEMS_PER_ORDER
    max_quantity_per_item: int = MAX_QUANTITY_PER_ITEM
    max_order_total: Decimal = Decimal(MAX_ORDER_TOTAL)

    @property
    def overhead_per_loaf(self) -> Decimal:
        return self.packaging_per_loaf + self.utilities_per_loaf

    @classmethod
    def from_env(cls) -> "BusinessSettings":
        """Build settings from BAKEHOUSE_* environment variables."""
        return cls(
            packaging_per_loaf=Decimal(
                os.environ.get("BAKEHOUSE_PACKAGING_PER_LOAF", DEFAULT_PACKAGING_PER_LOAF)
            ),
            utilities_per_loaf=Decimal(
                os.environ.get("BAKEHOUSE_UTILITIES_PER_LOAF", DEFAULT_UTILITIES_PER_LOAF)
            ),
            default_cutoff_hours=int(
                os.environ.get("BAKEHOUSE_CUTOFF_HOURS", DEFAULT_CUTOFF_HOURS)
            ),
        )


DEFAULT_BUSINESS_SETTINGS = BusinessSettings()


# ============================================================================
# Sync Settings
# ============================================================================


@dataclass(frozen=True)
class SyncSettings:
    """
    Timing and retry settings for the external store sync.

    Attributes:
        poll_interval: Seconds between sync passes while healthy
        max_poll_interval: Upper bound for the backed-off interval while unavailable
        request_timeout: Per-request timeout in seconds
        max_attempts: Attempts per network call before SyncUnavailable
        backoff_base: First retry delay in seconds (doubled per attempt)
        backoff_max: Maximum delay between retries
        shutdown_timeout: Seconds to wait for outstanding work on stop()
    """

    poll_interval: float = 120.0
    max_poll_interval: float = 900.0
    request_timeout: float = 15.0
    max_attempts: int = 4
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    shutdown_timeout: float = 5.0
    api_base: str = GOOGLE_SHEETS_API_BASE
    token_uri: str = GOOGLE_TOKEN_URI
    scope: str = GOOGLE_SHEETS_SCOPE

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            poll_interval=float(os.environ.get("BAKEHOUSE_SYNC_INTERVAL", 120.0)),
            request_timeout=float(os.environ.get("BAKEHOUSE_SYNC_TIMEOUT", 15.0)),
            max_attempts=int(os.environ.get("BAKEHOUSE_SYNC_MAX_ATTEMPTS", 4)),
        )


@dataclass(frozen=True)
class SyncCredentials:
    """Service identity and target spreadsheet for the external store."""

    client_email: str
    private_key: str
    spreadsheet_id: str

    def __repr__(self) -> str:
        return (
            f"SyncCredentials(client_email='{self.client_email}', "
            f"spreadsheet_id='{self.spreadsheet_id}')"
        )


def load_sync_credentials(config: Optional[Config] = None) -> SyncCredentials:
    """
    Load external store credentials.

    Looks at GOOGLE_SHEETS_CREDENTIALS / GOOGLE_SHEETS_SPREADSHEET_ID first,
    then falls back to google-config.json in the data directory.

    Args:
        config: Optional Config (defaults to the global instance)

    Returns:
        SyncCredentials

    Raises:
        ConfigMissing: If the identity, key, or spreadsheet id cannot be found
    """
    credentials_json = os.environ.get("GOOGLE_SHEETS_CREDENTIALS")
    spreadsheet_id = os.environ.get("GOOGLE_SHEETS_SPREADSHEET_ID")
    credentials = None

    if not credentials_json or not spreadsheet_id:
        config = config or get_config()
        config_path = config.google_config_path
        if config_path.exists():
            try:
                file_config = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error(f"Failed to read {config_path}: {e}")
                file_config = {}
            if not credentials_json and file_config.get("credentials"):
                credentials = file_config["credentials"]
            if not spreadsheet_id and file_config.get("spreadsheetId"):
                spreadsheet_id = file_config["spreadsheetId"]

    if credentials is None and credentials_json:
        try:
            credentials = json.loads(credentials_json)
        except ValueError:
            raise ConfigMissing(["GOOGLE_SHEETS_CREDENTIALS (invalid JSON)"])

    missing = []
    if not credentials or not credentials.get("client_email"):
        missing.append("client_email")
    if not credentials or not credentials.get("private_key"):
        missing.append("private_key")
    if not spreadsheet_id or not str(spreadsheet_id).strip():
        missing.append("spreadsheet_id")
    if missing:
        raise ConfigMissing(missing)

    return SyncCredentials(
        client_email=credentials["client_email"],
        private_key=credentials["private_key"],
        spreadsheet_id=str(spreadsheet_id).strip(),
    )
