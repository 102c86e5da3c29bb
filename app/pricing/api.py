from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from plans import DayType, PlanRegistry

from .engine import (
    compute_per_person_tier,
    compute_room_hourly,
    compute_teaching,
    compute_teaching_per_person,
    elapsed_minutes,
    ensure_aware,
    resolve_plan,
)
from .redistribution import minimum_headcount_total, rescale_to_target, split_evenly


log = logging.getLogger(__name__)

MODE_PER_PERSON = "per_person_tiers"
MODE_ROOM_HOURLY = "room_hourly"
MODE_TEACHING = "teaching"


@dataclass(frozen=True)
class TicketSpan:
    ticket_id: Any
    started_at: datetime.datetime
    ended_at: Optional[datetime.datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


@dataclass(frozen=True)
class Charge:
    ticket_id: Any
    minutes: int
    price_cents: int


@dataclass(frozen=True)
class TicketPrice:
    day: DayType
    minutes: int
    price_cents: int
    matched_hours: int
    fallback: bool = False
    mode: str = MODE_PER_PERSON


@dataclass(frozen=True)
class RoomPrice:
    day: DayType
    minutes: int
    total_cents: int
    mode: str
    billed_hours: Optional[int] = None
    per_person_cents: Optional[int] = None
    billed_people: Optional[int] = None


@dataclass
class CheckoutResult:
    mode: str
    days: Tuple[DayType, ...]
    charges: List[Charge] = field(default_factory=list)
    total_cents: int = 0
    billed_minutes: int = 0
    billed_hours: Optional[int] = None
    actual_people: int = 0
    billed_people: int = 0
    summary_lines: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Single-ticket / single-room quotes


def price_per_ticket(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    started_at: datetime.datetime,
    ended_at: datetime.datetime,
) -> TicketPrice:
    """Open seating: one ticket priced on its own span, rules taken at its start."""
    resolution = resolve_plan(registry, table_name, area, started_at)
    minutes = elapsed_minutes(started_at, ended_at)
    quote = compute_per_person_tier(minutes, resolution.rules)
    return TicketPrice(
        day=resolution.day,
        minutes=minutes,
        price_cents=quote.per_person_cents,
        matched_hours=quote.matched_hours,
        fallback=quote.fallback,
    )


def price_for_room_session(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    session_opened_at: datetime.datetime,
    session_ended_at: datetime.datetime,
    people: int,
    teaching: bool,
) -> RoomPrice:
    """Whole-room price for one span, either hourly or as a teaching group."""
    resolution = resolve_plan(registry, table_name, area, session_opened_at)
    minutes = elapsed_minutes(session_opened_at, session_ended_at)
    if not teaching:
        hourly = compute_room_hourly(minutes, resolution.rules)
        return RoomPrice(
            day=resolution.day,
            minutes=minutes,
            total_cents=hourly.total_cents,
            mode=MODE_ROOM_HOURLY,
            billed_hours=hourly.billed_hours,
        )
    quote = compute_teaching(minutes, people, resolution.rules)
    return RoomPrice(
        day=resolution.day,
        minutes=minutes,
        total_cents=quote.total_cents,
        mode=MODE_TEACHING,
        per_person_cents=quote.per_person_cents,
        billed_people=quote.billed_people,
    )


# ---------------------------------------------------------------------------
# Checkout orchestration


def _in_start_order(tickets: Iterable[TicketSpan]) -> List[TicketSpan]:
    return sorted(tickets, key=lambda ticket: ensure_aware(ticket.started_at))


def _unique_days(days: Iterable[DayType]) -> Tuple[DayType, ...]:
    seen: List[DayType] = []
    for day in days:
        if day not in seen:
            seen.append(day)
    return tuple(seen)


def bill_open_seating(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    open_tickets: Sequence[TicketSpan],
    now: datetime.datetime,
) -> CheckoutResult:
    charges: List[Charge] = []
    days: List[DayType] = []
    for ticket in _in_start_order(open_tickets):
        pricing = price_per_ticket(registry, table_name, area, ticket.started_at, now)
        charges.append(Charge(ticket_id=ticket.ticket_id, minutes=pricing.minutes, price_cents=pricing.price_cents))
        days.append(pricing.day)
    total = sum(charge.price_cents for charge in charges)
    people = len(charges)
    return CheckoutResult(
        mode=MODE_PER_PERSON,
        days=_unique_days(days),
        charges=charges,
        total_cents=total,
        billed_minutes=sum(charge.minutes for charge in charges),
        actual_people=people,
        billed_people=people,
        summary_lines=[
            "Open seating: per-person tiers",
            f"Day type: {', '.join(day.value for day in _unique_days(days)) or '-'}",
            f"People: {people}",
            f"Total: {total} cents",
        ],
    )


def bill_room_hourly(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    tickets: Sequence[TicketSpan],
    now: datetime.datetime,
    session_opened_at: Optional[datetime.datetime] = None,
) -> CheckoutResult:
    """Bill the room from its earliest start to ``now`` and split it across open tickets."""
    starts = [ensure_aware(ticket.started_at) for ticket in tickets]
    if starts:
        earliest = min(starts)
    elif session_opened_at is not None:
        earliest = ensure_aware(session_opened_at)
    else:
        earliest = ensure_aware(now)
    resolution = resolve_plan(registry, table_name, area, earliest)
    minutes = elapsed_minutes(earliest, now)
    hourly = compute_room_hourly(minutes, resolution.rules)

    open_tickets = _in_start_order(ticket for ticket in tickets if ticket.is_open)
    shares = split_evenly(hourly.total_cents, len(open_tickets))
    charges = [
        Charge(
            ticket_id=ticket.ticket_id,
            minutes=elapsed_minutes(ticket.started_at, now),
            price_cents=share,
        )
        for ticket, share in zip(open_tickets, shares)
    ]
    total = sum(shares)
    return CheckoutResult(
        mode=MODE_ROOM_HOURLY,
        days=(resolution.day,),
        charges=charges,
        total_cents=total,
        billed_minutes=minutes,
        billed_hours=hourly.billed_hours,
        actual_people=len(open_tickets),
        billed_people=len(open_tickets),
        summary_lines=[
            "Room: hourly billing",
            f"Day type: {resolution.day.value}",
            f"Billed time: {minutes} minutes (~{hourly.billed_hours} hours)",
            f"Total: {total} cents",
            "* Billed from the earliest arrival through checkout.",
        ],
    )


def bill_room_teaching(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    open_tickets: Sequence[TicketSpan],
    now: datetime.datetime,
) -> CheckoutResult:
    """Price each occupant on their own stay, then lift the total to the minimum headcount."""
    ordered = _in_start_order(open_tickets)
    minutes: List[int] = []
    prices: List[int] = []
    days: List[DayType] = []
    min_people = 0
    for ticket in ordered:
        resolution = resolve_plan(registry, table_name, area, ticket.started_at)
        mins = elapsed_minutes(ticket.started_at, now)
        minutes.append(mins)
        prices.append(compute_teaching_per_person(mins, resolution.rules))
        days.append(resolution.day)
        min_people = max(min_people, resolution.rules.teaching.min_people)

    actual_people = len(ordered)
    total = sum(prices)
    billed_people = actual_people
    if 0 < actual_people < min_people:
        target = minimum_headcount_total(total, actual_people, min_people)
        log.info(
            "[PRICING] teaching headcount %d below minimum %d; raising %d to %d",
            actual_people,
            min_people,
            total,
            target,
        )
        prices = rescale_to_target(prices, target)
        total = target
        billed_people = min_people

    charges = [
        Charge(ticket_id=ticket.ticket_id, minutes=mins, price_cents=price)
        for ticket, mins, price in zip(ordered, minutes, prices)
    ]
    unique_days = _unique_days(days)
    return CheckoutResult(
        mode=MODE_TEACHING,
        days=unique_days,
        charges=charges,
        total_cents=total,
        billed_minutes=sum(minutes),
        actual_people=actual_people,
        billed_people=billed_people,
        summary_lines=[
            "Room: teaching billing",
            f"Day type: {', '.join(day.value for day in unique_days) or '-'}",
            f"People: {actual_people}, billed as: {billed_people}",
            f"Accumulated time: {sum(minutes)} minutes",
            f"Total: {total} cents",
            "* Each guest is billed from their own arrival; groups under the teaching minimum pay for the minimum.",
        ],
    )


def compute_checkout(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    tickets: Sequence[TicketSpan],
    now: datetime.datetime,
    *,
    is_room: bool,
    teaching: bool = False,
    session_opened_at: Optional[datetime.datetime] = None,
) -> CheckoutResult:
    """Charges for every open ticket of a session at checkout.

    Tickets that already ended are not repriced and get no charge here; for
    hourly rooms they still count toward the earliest start.
    """
    open_tickets = [ticket for ticket in tickets if ticket.is_open]
    if not is_room:
        return bill_open_seating(registry, table_name, area, open_tickets, now)
    if teaching:
        return bill_room_teaching(registry, table_name, area, open_tickets, now)
    return bill_room_hourly(registry, table_name, area, tickets, now, session_opened_at=session_opened_at)
