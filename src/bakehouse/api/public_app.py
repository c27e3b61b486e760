"""
Public read API for the order form.

Serves the published catalog straight from the external store:

    GET /flavors      active, in-season flavors with their sizes
    GET /bake-slots   open, upcoming slots before their cutoff
    GET /locations    active pickup locations

Any origin may call it. Other methods get 405 {"error": "Method not
allowed"}; store failures get 500 with a support code.

Run with:
    uvicorn bakehouse.api.public_app:app
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bakehouse.services import public_catalog
from bakehouse.services.exceptions import ServiceError
from bakehouse.services.sync.sheets_client import SheetsClient
from bakehouse.services.sync.token_provider import TokenProvider
from bakehouse.utils.config import SyncSettings, load_sync_credentials
from bakehouse.utils.constants import APP_VERSION, SHEET_BAKE_SLOTS, SHEET_FLAVORS, SHEET_LOCATIONS
from bakehouse.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

ERROR_FLAVORS = "SYNC-204"
ERROR_BAKE_SLOTS = "SYNC-203"
ERROR_LOCATIONS = "LOC-001"


class RecordReader(Protocol):
    async def read_records(self, sheet: str) -> List[Dict[str, str]]: ...


def _default_reader() -> SheetsClient:
    settings = SyncSettings.from_env()
    credentials = load_sync_credentials()
    return SheetsClient(credentials.spreadsheet_id, TokenProvider(credentials, settings), settings)


def _failure(message: str, error: Exception, code: str) -> JSONResponse:
    logger.error(f"{message}: {error}")
    return JSONResponse(
        status_code=500,
        content={"error": message, "details": str(error), "code": code},
    )


def create_app(
    reader: Optional[RecordReader] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Build the public API.

    Args:
        reader: Source of sheet records; defaults to a SheetsClient built
            from the configured credentials on first use
        clock: Current time, used for season and cutoff filtering
    """
    state: Dict[str, Optional[RecordReader]] = {"reader": reader}

    def get_reader() -> RecordReader:
        if state["reader"] is None:
            state["reader"] = _default_reader()
        return state["reader"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if reader is None and isinstance(state["reader"], SheetsClient):
            await state["reader"].aclose()

    app = FastAPI(title="Bakehouse Public API", version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return JSONResponse(status_code=405, content={"error": "Method not allowed"})
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    async def respond(message: str, code: str, build):
        try:
            return await build(get_reader())
        except ServiceError as e:
            return _failure(message, e, code)
        except Exception as e:
            logger.exception(f"Unexpected failure: {message}")
            return _failure(message, e, code)

    @app.get("/flavors")
    async def list_flavors():
        async def build(source: RecordReader):
            records = await source.read_records(SHEET_FLAVORS)
            return public_catalog.public_flavors(records, clock().date())

        return await respond("Failed to fetch flavors", ERROR_FLAVORS, build)

    @app.get("/bake-slots")
    async def list_bake_slots():
        async def build(source: RecordReader):
            slots = await source.read_records(SHEET_BAKE_SLOTS)
            locations = await source.read_records(SHEET_LOCATIONS)
            return public_catalog.public_bake_slots(slots, locations, clock())

        return await respond("Failed to fetch bake slots", ERROR_BAKE_SLOTS, build)

    @app.get("/locations")
    async def list_locations():
        async def build(source: RecordReader):
            records = await source.read_records(SHEET_LOCATIONS)
            return public_catalog.public_locations(records)

        return await respond("Failed to fetch locations", ERROR_LOCATIONS, build)

    return app


app = create_app()
