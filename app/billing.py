"""Ticket lifecycle and checkout on top of the pricing engine.

Each call reads a snapshot of the session's tickets, prices it with the pure
engine in ``pricing`` and writes the charges back. Checkout commits every ticket
charge before the session gets its ``closed_at`` stamp, so an interrupted
checkout leaves the session open and retryable.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

import database
from database import (
    TableSession,
    add_tickets,
    apply_ticket_charge,
    close_session,
    count_session_tickets,
    get_open_session,
    get_or_create_open_session,
    get_table,
    get_ticket,
    list_session_tickets,
    record_audit_log,
    reopen_ticket,
    session_to_dict,
    ticket_to_dict,
)
from labels import next_labels
from plans import PlanRegistry, load_registry
from pricing.api import CheckoutResult, TicketSpan, compute_checkout, price_per_ticket
from pricing.engine import elapsed_minutes
from settings import is_room_table


log = logging.getLogger(__name__)

_REGISTRY: Optional[PlanRegistry] = None


def active_registry() -> PlanRegistry:
    """Pricing configuration is loaded once per process."""
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = load_registry()
    return _REGISTRY


def _factory(session_factory: Optional[Callable]) -> Callable:
    return session_factory or database.SessionLocal


def _now(value: Optional[datetime.datetime]) -> datetime.datetime:
    return value or datetime.datetime.now(datetime.timezone.utc)


def _spans(table_session: TableSession, session) -> List[TicketSpan]:
    return [
        TicketSpan(ticket_id=ticket.id, started_at=ticket.started_at, ended_at=ticket.ended_at)
        for ticket in list_session_tickets(session, table_session.id)
    ]


def result_to_dict(result: CheckoutResult) -> Dict[str, Any]:
    return {
        "mode": result.mode,
        "days": [day.value for day in result.days],
        "total_cents": result.total_cents,
        "billed_minutes": result.billed_minutes,
        "billed_hours": result.billed_hours,
        "actual_people": result.actual_people,
        "billed_people": result.billed_people,
        "charges": [
            {"ticket_id": charge.ticket_id, "minutes": charge.minutes, "price_cents": charge.price_cents}
            for charge in result.charges
        ],
        "summary": list(result.summary_lines),
    }


def enter_table(
    table_id: int,
    count: int = 1,
    *,
    now: Optional[datetime.datetime] = None,
    session_factory: Optional[Callable] = None,
) -> Dict[str, Any]:
    """Open the table's session if needed and add ``count`` labelled tickets."""
    if count is None or int(count) < 1:
        raise ValueError("At least one guest must enter.")
    started_at = _now(now)
    with _factory(session_factory)() as session:
        table_session = get_or_create_open_session(session, table_id, opened_at=started_at)
        existing = count_session_tickets(session, table_session.id)
        labels = next_labels(existing, int(count))
        tickets = add_tickets(session, table_session.id, labels, started_at=started_at)
        log.info("[TICKET] table=%s session=%s entered %s", table_id, table_session.id, ",".join(labels))
        return {
            "session": session_to_dict(table_session),
            "tickets": [ticket_to_dict(ticket) for ticket in tickets],
        }


def end_ticket(
    ticket_id: int,
    *,
    auto: bool = False,
    now: Optional[datetime.datetime] = None,
    registry: Optional[PlanRegistry] = None,
    session_factory: Optional[Callable] = None,
) -> Dict[str, Any]:
    """Close one ticket. Open seating is priced now; room tickets wait for checkout."""
    ended_at = _now(now)
    registry = registry or active_registry()
    with _factory(session_factory)() as session:
        ticket = get_ticket(session, ticket_id)
        if ticket.ended_at is not None:
            return ticket_to_dict(ticket)
        table = ticket.session.table
        if is_room_table(table.name):
            minutes = elapsed_minutes(ticket.started_at, ended_at)
            price_cents = 0
        else:
            pricing = price_per_ticket(registry, table.name, table.area or "", ticket.started_at, ended_at)
            minutes = pricing.minutes
            price_cents = pricing.price_cents
        apply_ticket_charge(
            session,
            ticket,
            ended_at=ended_at,
            minutes=minutes,
            price_cents=price_cents,
            auto_ended=auto,
        )
        session.commit()
        log.info("[TICKET] ticket=%s ended minutes=%s price_cents=%s", ticket.id, minutes, price_cents)
        return ticket_to_dict(ticket)


def leave_oldest(
    table_id: int,
    *,
    now: Optional[datetime.datetime] = None,
    registry: Optional[PlanRegistry] = None,
    session_factory: Optional[Callable] = None,
) -> Optional[Dict[str, Any]]:
    with _factory(session_factory)() as session:
        table_session = get_open_session(session, table_id)
        if table_session is None:
            return None
        open_tickets = list_session_tickets(session, table_session.id, only_open=True)
        if not open_tickets:
            return None
        oldest_id = open_tickets[0].id
    return end_ticket(oldest_id, auto=True, now=now, registry=registry, session_factory=session_factory)


def undo_end_ticket(ticket_id: int, *, session_factory: Optional[Callable] = None) -> Dict[str, Any]:
    with _factory(session_factory)() as session:
        ticket = get_ticket(session, ticket_id)
        if ticket.session.closed_at is not None:
            raise ValueError("Session has already been checked out.")
        reopen_ticket(session, ticket)
        return ticket_to_dict(ticket)


def quote_checkout(
    table_id: int,
    *,
    teaching: bool = False,
    now: Optional[datetime.datetime] = None,
    registry: Optional[PlanRegistry] = None,
    session_factory: Optional[Callable] = None,
) -> CheckoutResult:
    """Price the open session as if it were checked out now, without writing anything."""
    registry = registry or active_registry()
    with _factory(session_factory)() as session:
        table = get_table(session, table_id)
        table_session = get_open_session(session, table_id)
        if table_session is None:
            raise ValueError(f"Table {table.name} has no open session.")
        return compute_checkout(
            registry,
            table.name,
            table.area or "",
            _spans(table_session, session),
            _now(now),
            is_room=is_room_table(table.name),
            teaching=teaching,
            session_opened_at=table_session.opened_at,
        )


def checkout_session(
    table_id: int,
    *,
    teaching: bool = False,
    now: Optional[datetime.datetime] = None,
    registry: Optional[PlanRegistry] = None,
    actor: str = "system",
    session_factory: Optional[Callable] = None,
) -> Dict[str, Any]:
    checkout_at = _now(now)
    registry = registry or active_registry()
    with _factory(session_factory)() as session:
        table = get_table(session, table_id)
        table_session = get_open_session(session, table_id)
        if table_session is None:
            raise ValueError(f"Table {table.name} has no open session.")
        result = compute_checkout(
            registry,
            table.name,
            table.area or "",
            _spans(table_session, session),
            checkout_at,
            is_room=is_room_table(table.name),
            teaching=teaching,
            session_opened_at=table_session.opened_at,
        )
        for charge in result.charges:
            ticket = get_ticket(session, charge.ticket_id)
            apply_ticket_charge(
                session,
                ticket,
                ended_at=checkout_at,
                minutes=charge.minutes,
                price_cents=charge.price_cents,
            )
        # Ticket charges are durable before the session is marked closed.
        session.commit()
        close_session(session, table_session, checkout_at)
        payload = result_to_dict(result)
        record_audit_log(
            session,
            user_id=actor or "system",
            action="CHECKOUT",
            target_type="Session",
            target_id=table_session.id,
            payload={"table": table.name, "mode": result.mode, "total_cents": result.total_cents},
        )
        log.info(
            "[CHECKOUT] table=%s session=%s mode=%s tickets=%d total_cents=%d",
            table.name,
            table_session.id,
            result.mode,
            len(result.charges),
            result.total_cents,
        )
        payload["session"] = session_to_dict(table_session)
        return payload
