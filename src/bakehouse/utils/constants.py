"""
Constants for the Bakehouse application.

This module defines all system-wide constants including:
- Application metadata
- Order intake limits
- Catalog vocabularies (seasons, sizes)
- External store sheet layout
"""

from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Bakehouse"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "bakehouse.db"
DATABASE_VERSION = "1.0"

# ============================================================================
# Order Intake Limits
# ============================================================================

MAX_NAME_LENGTH = 100
MAX_NOTES_LENGTH = 500
MAX_EMAIL_LENGTH = 254
MAX_QUANTITY_PER_ITEM = 50
MAX_ITEMS_PER_ORDER = 20
MAX_ORDER_TOTAL = 5000

# ============================================================================
# Business Defaults
# ============================================================================

DEFAULT_CUTOFF_HOURS = 48
DEFAULT_PACKAGING_PER_LOAF = "0.50"
DEFAULT_UTILITIES_PER_LOAF = "0.12"

# ============================================================================
# Catalog Vocabularies
# ============================================================================

SEASONS: List[str] = [
    "year_round",
    "spring",
    "summer",
    "fall",
    "winter",
]

NOTIFICATION_PREFERENCES: List[str] = ["email", "sms", "both"]

PAYMENT_METHODS: List[str] = ["cash", "venmo", "cashapp", "zelle", "credit"]

# ============================================================================
# External Store Layout
# ============================================================================

SHEET_BAKE_SLOTS = "BakeSlots"
SHEET_FLAVORS = "Flavors"
SHEET_LOCATIONS = "Locations"
SHEET_ORDER_INTAKE = "OrderIntake"

# Column order used when a published sheet has no header row yet
SHEET_COLUMNS: Dict[str, List[str]] = {
    SHEET_BAKE_SLOTS: [
        "id",
        "date",
        "location_id",
        "total_capacity",
        "current_orders",
        "cutoff_time",
        "is_open",
        "updated_at",
    ],
    SHEET_FLAVORS: [
        "id",
        "name",
        "description",
        "sizes",
        "is_active",
        "season",
        "sort_order",
        "updated_at",
    ],
    SHEET_LOCATIONS: [
        "id",
        "name",
        "address",
        "is_active",
        "updated_at",
    ],
}

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
GOOGLE_SHEETS_API_BASE = "https://sheets.googleapis.com/v4"

# ============================================================================
# Error Messages
# ============================================================================

ERROR_REQUIRED_FIELD = "This field is required"
ERROR_INVALID_EMAIL = "Please enter a valid email address"
ERROR_INVALID_PHONE = "Please enter a valid phone number"
ERROR_INVALID_QUANTITY = f"Quantity must be between 1 and {MAX_QUANTITY_PER_ITEM}"
