"""Lightweight FastAPI wrapper over the ticket/checkout service.

Routes only translate HTTP to service calls; all pricing happens in ``pricing``
and all row writes in ``billing``/``database``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Modules under app/ import each other as top-level names.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from billing import (  # noqa: E402
    checkout_session,
    end_ticket,
    enter_table,
    leave_oldest,
    quote_checkout,
    result_to_dict,
    undo_end_ticket,
)
from errors import ConfigurationError  # noqa: E402
from settings import configure_logging  # noqa: E402


log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    database.init_database()
    yield


app = FastAPI(title="SeatCounter API", version="0.1", lifespan=lifespan)


def _parse_instant(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="at must be an ISO 8601 timestamp")


def _respond(payload: Any) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(payload))


def _call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except ConfigurationError as exc:
        log.error("[PRICING] %s", exc)
        raise HTTPException(status_code=500, detail=f"Pricing configuration error: {exc}")
    except ValueError as exc:
        message = str(exc)
        status = 404 if "not found" in message else 400
        raise HTTPException(status_code=status, detail=message)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/tables")
def tables() -> JSONResponse:
    with database.SessionLocal() as session:
        return _respond(database.list_tables(session))


@app.post("/api/v1/tables")
def create_table(payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with database.SessionLocal() as session:
        table = _call(database.get_or_create_table, session, payload.get("name") or "", payload.get("area") or "")
        return _respond(database.table_to_dict(table))


@app.post("/api/v1/tables/{table_id}/enter")
def enter(table_id: int, payload: Optional[Dict[str, Any]] = Body(default=None)) -> JSONResponse:
    payload = payload or {}
    count = payload.get("count", 1)
    try:
        count = int(count)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="count must be an integer")
    return _respond(_call(enter_table, table_id, count, now=_parse_instant(payload.get("at"))))


@app.post("/api/v1/tickets/{ticket_id}/leave")
def leave(ticket_id: int, at: Optional[str] = Query(default=None)) -> JSONResponse:
    return _respond(_call(end_ticket, ticket_id, auto=False, now=_parse_instant(at)))


@app.post("/api/v1/tables/{table_id}/leave-oldest")
def leave_oldest_ticket(table_id: int, at: Optional[str] = Query(default=None)) -> JSONResponse:
    ticket = _call(leave_oldest, table_id, now=_parse_instant(at))
    if ticket is None:
        raise HTTPException(status_code=404, detail="No open ticket to end.")
    return _respond(ticket)


@app.post("/api/v1/tickets/{ticket_id}/undo")
def undo(ticket_id: int) -> JSONResponse:
    return _respond(_call(undo_end_ticket, ticket_id))


@app.get("/api/v1/tables/{table_id}/quote")
def quote(
    table_id: int,
    teaching: bool = Query(default=False),
    at: Optional[str] = Query(default=None),
) -> JSONResponse:
    result = _call(quote_checkout, table_id, teaching=teaching, now=_parse_instant(at))
    return _respond(result_to_dict(result))


@app.post("/api/v1/tables/{table_id}/checkout")
def checkout(
    table_id: int,
    teaching: bool = Query(default=False),
    at: Optional[str] = Query(default=None),
    actor: str = Query(default="api"),
) -> JSONResponse:
    return _respond(_call(checkout_session, table_id, teaching=teaching, now=_parse_instant(at), actor=actor))
