from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from errors import ConfigurationError
from plans import DayType, PerPersonTier, PlanRegistry, PricingPlan, RulesPerDay
from settings import LOCAL_TZ


log = logging.getLogger(__name__)

UTC = datetime.timezone.utc


@dataclass(frozen=True)
class Resolution:
    plan: PricingPlan
    day: DayType
    rules: RulesPerDay


@dataclass(frozen=True)
class TierQuote:
    per_person_cents: int
    matched_hours: int
    fallback: bool = False


@dataclass(frozen=True)
class RoomQuote:
    total_cents: int
    billed_hours: int


@dataclass(frozen=True)
class TeachingQuote:
    per_person_cents: int
    billed_people: int
    total_cents: int


# ---------------------------------------------------------------------------
# Time helpers


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    """Treat naive datetimes as UTC, the way rows come back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def elapsed_minutes(started_at: datetime.datetime, ended_at: datetime.datetime) -> int:
    """Whole minutes between two instants, never less than 1."""
    delta = ensure_aware(ended_at) - ensure_aware(started_at)
    return max(1, int(delta.total_seconds() // 60))


def local_date(instant: datetime.date | datetime.datetime, tz: Optional[datetime.tzinfo] = None) -> datetime.date:
    if isinstance(instant, datetime.datetime):
        return ensure_aware(instant).astimezone(tz or LOCAL_TZ).date()
    return instant


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def _round_up_minutes(minutes: int, step: int) -> int:
    return _ceil_div(minutes, step) * step


# ---------------------------------------------------------------------------
# Calendar + resolver


def classify_day(
    instant: datetime.date | datetime.datetime,
    holidays: Iterable[str] = (),
    tz: Optional[datetime.tzinfo] = None,
) -> DayType:
    """Saturdays, Sundays and allowlisted dates are holidays; everything else is a weekday."""
    day = local_date(instant, tz)
    if day.weekday() >= 5:
        return DayType.HOLIDAY
    if day.isoformat() in set(holidays or ()):
        return DayType.HOLIDAY
    return DayType.WEEKDAY


def resolve_plan(
    registry: PlanRegistry,
    table_name: str,
    area: str,
    at: datetime.date | datetime.datetime,
) -> Resolution:
    """Pick the highest-priority binding for the table or its area.

    Ties on priority go to the binding registered first. When nothing matches,
    the first area-scoped binding acts as the default plan.
    """
    day = classify_day(at, registry.holiday_dates)
    candidates = registry.matching(table_name, area)
    if candidates:
        _, binding = max(candidates, key=lambda item: (item[1].priority, -item[0]))
        plan = binding.plan
    else:
        default = registry.default_binding()
        if default is None:
            raise ConfigurationError(
                f"No pricing plan bound to table '{table_name}' or area '{area}', and no default area plan exists."
            )
        log.debug("[PRICING] no binding for %s/%s; using default plan %s", table_name, area, default.plan.name)
        plan = default.plan
    return Resolution(plan=plan, day=day, rules=plan.rules[day])


# ---------------------------------------------------------------------------
# Calculators


def _ceiling_tier(tiers: Iterable[PerPersonTier]) -> Optional[PerPersonTier]:
    ceiling: Optional[PerPersonTier] = None
    for tier in tiers:
        if ceiling is None or tier.hours_from > ceiling.hours_from:
            ceiling = tier
    return ceiling


def compute_per_person_tier(total_minutes: int, rules: RulesPerDay) -> TierQuote:
    minutes = _round_up_minutes(total_minutes, rules.round_up_to_minutes)
    hours = max(1, _ceil_div(minutes, 60))
    for tier in rules.per_person_tiers:
        if tier.matches(hours):
            return TierQuote(per_person_cents=tier.price_cents_per_person, matched_hours=hours)

    # Configuration gap: no interval covers these hours, bill at the open-ended ceiling tier.
    ceiling = _ceiling_tier(rules.per_person_tiers)
    if ceiling is None:
        raise ConfigurationError(f"No per-person tiers configured (hours={hours}).")
    log.warning(
        "[PRICING] no tier covers %d hours; falling back to tier starting at %d",
        hours,
        ceiling.hours_from,
    )
    return TierQuote(per_person_cents=ceiling.price_cents_per_person, matched_hours=hours, fallback=True)


def compute_room_hourly(total_minutes: int, rules: RulesPerDay) -> RoomQuote:
    room = rules.room_hourly
    minutes = _round_up_minutes(total_minutes, room.round_up_to_minutes)
    hours = _ceil_div(minutes, 60)
    return RoomQuote(total_cents=hours * room.price_cents_per_hour, billed_hours=hours)


def compute_teaching_per_person(total_minutes: int, rules: RulesPerDay) -> int:
    teaching = rules.teaching
    base_minutes = teaching.base_hours * 60
    if total_minutes <= base_minutes:
        return teaching.base_price_cents_per_person
    extra_units = _ceil_div(total_minutes - base_minutes, teaching.extra_unit_minutes)
    return teaching.base_price_cents_per_person + extra_units * teaching.extra_unit_price_cents_per_person


def compute_teaching(total_minutes: int, actual_people: int, rules: RulesPerDay) -> TeachingQuote:
    """Headcount below the teaching minimum is billed as the minimum, never fewer."""
    billed_people = max(actual_people, rules.teaching.min_people)
    per_person = compute_teaching_per_person(total_minutes, rules)
    return TeachingQuote(
        per_person_cents=per_person,
        billed_people=billed_people,
        total_cents=billed_people * per_person,
    )
