from __future__ import annotations

import datetime
import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from errors import ConfigurationError
from pricing_defaults import build_default_pricing
from settings import PRICING_FILE


log = logging.getLogger(__name__)

SCOPE_TABLE = "tableName"
SCOPE_AREA = "area"
BINDING_SCOPES = {SCOPE_TABLE, SCOPE_AREA}


class DayType(str, enum.Enum):
    WEEKDAY = "weekday"
    HOLIDAY = "holiday"


@dataclass(frozen=True)
class PerPersonTier:
    hours_from: int  # inclusive
    hours_to: Optional[int]  # exclusive; None = unbounded
    price_cents_per_person: int

    def matches(self, hours: int) -> bool:
        return self.hours_from <= hours and (self.hours_to is None or hours < self.hours_to)


@dataclass(frozen=True)
class RoomHourlyRule:
    price_cents_per_hour: int
    round_up_to_minutes: int = 60


@dataclass(frozen=True)
class TeachingRule:
    min_people: int
    base_hours: int
    base_price_cents_per_person: int
    extra_unit_minutes: int
    extra_unit_price_cents_per_person: int


@dataclass(frozen=True)
class RulesPerDay:
    per_person_tiers: Tuple[PerPersonTier, ...]
    round_up_to_minutes: int
    room_hourly: RoomHourlyRule
    teaching: TeachingRule


@dataclass(frozen=True)
class PricingPlan:
    name: str
    rules: Mapping[DayType, RulesPerDay]


@dataclass(frozen=True)
class Binding:
    scope: str
    key: str
    plan: PricingPlan
    priority: int = 0

    def applies_to(self, table_name: str, area: str) -> bool:
        if self.scope == SCOPE_TABLE:
            return self.key == table_name
        return self.key == area


@dataclass(frozen=True)
class PlanRegistry:
    """Immutable set of plans and prioritized bindings, kept in registration order."""

    plans: Tuple[PricingPlan, ...]
    bindings: Tuple[Binding, ...]
    holiday_dates: FrozenSet[str] = field(default_factory=frozenset)

    def plan_named(self, name: str) -> Optional[PricingPlan]:
        for plan in self.plans:
            if plan.name == name:
                return plan
        return None

    def matching(self, table_name: str, area: str) -> List[Tuple[int, Binding]]:
        """Return (registration index, binding) pairs for the table or its area."""
        return [
            (index, binding)
            for index, binding in enumerate(self.bindings)
            if binding.applies_to(table_name, area)
        ]

    def default_binding(self) -> Optional[Binding]:
        for binding in self.bindings:
            if binding.scope == SCOPE_AREA:
                return binding
        return None


# ---------------------------------------------------------------------------
# Payload parsing


def _as_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be an integer")
    number = int(value)
    if number != float(value):
        raise ValueError(f"{label} must be a whole number")
    return number


def _parse_tier(entry: Dict[str, Any]) -> PerPersonTier:
    hours_to = entry.get("hours_to")
    return PerPersonTier(
        hours_from=_as_int(entry["hours_from"], "hours_from"),
        hours_to=None if hours_to is None else _as_int(hours_to, "hours_to"),
        price_cents_per_person=_as_int(entry["price_cents_per_person"], "price_cents_per_person"),
    )


def _parse_rules(payload: Dict[str, Any]) -> RulesPerDay:
    room = payload.get("room_hourly") or {}
    teaching = payload.get("teaching") or {}
    round_up = _as_int(payload.get("round_up_to_minutes", 60), "round_up_to_minutes")
    room_round = _as_int(room.get("round_up_to_minutes", 60), "room_hourly.round_up_to_minutes")
    extra_unit = _as_int(teaching.get("extra_unit_minutes", 60), "teaching.extra_unit_minutes")
    if round_up <= 0 or room_round <= 0 or extra_unit <= 0:
        raise ValueError("rounding and unit minutes must be positive")
    return RulesPerDay(
        per_person_tiers=tuple(_parse_tier(tier) for tier in payload.get("per_person_tiers") or []),
        round_up_to_minutes=round_up,
        room_hourly=RoomHourlyRule(
            price_cents_per_hour=_as_int(room.get("price_cents_per_hour", 0), "room_hourly.price_cents_per_hour"),
            round_up_to_minutes=room_round,
        ),
        teaching=TeachingRule(
            min_people=max(0, _as_int(teaching.get("min_people", 0), "teaching.min_people")),
            base_hours=_as_int(teaching.get("base_hours", 0), "teaching.base_hours"),
            base_price_cents_per_person=_as_int(
                teaching.get("base_price_cents_per_person", 0), "teaching.base_price_cents_per_person"
            ),
            extra_unit_minutes=extra_unit,
            extra_unit_price_cents_per_person=_as_int(
                teaching.get("extra_unit_price_cents_per_person", 0), "teaching.extra_unit_price_cents_per_person"
            ),
        ),
    )


def _parse_plan(name: str, payload: Dict[str, Any]) -> PricingPlan:
    rules: Dict[DayType, RulesPerDay] = {}
    for day in DayType:
        day_payload = payload.get(day.value)
        if not isinstance(day_payload, dict):
            raise ConfigurationError(f"Plan '{name}' is missing {day.value} rules.")
        try:
            rules[day] = _parse_rules(day_payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Plan '{name}' has invalid {day.value} rules: {exc}") from exc
    return PricingPlan(name=name, rules=MappingProxyType(rules))


def _parse_binding(entry: Dict[str, Any], plans: Dict[str, PricingPlan]) -> Binding:
    scope = entry.get("scope")
    if scope not in BINDING_SCOPES:
        raise ConfigurationError(f"Unsupported binding scope '{scope}'.")
    key = entry.get("table_name") if scope == SCOPE_TABLE else entry.get("area")
    if not key:
        raise ConfigurationError(f"Binding with scope '{scope}' needs a {'table_name' if scope == SCOPE_TABLE else 'area'}.")
    plan = plans.get(entry.get("plan"))
    if plan is None:
        raise ConfigurationError(f"Binding for '{key}' references unknown plan '{entry.get('plan')}'.")
    try:
        priority = _as_int(entry.get("priority", 0), "priority")
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Binding for '{key}' has invalid priority: {exc}") from exc
    return Binding(scope=scope, key=str(key), plan=plan, priority=priority)


def _parse_holidays(values: Iterable[Any]) -> FrozenSet[str]:
    dates = set()
    for value in values or []:
        try:
            dates.add(datetime.date.fromisoformat(str(value)).isoformat())
        except ValueError as exc:
            raise ConfigurationError(f"Holiday date '{value}' must be YYYY-MM-DD.") from exc
    return frozenset(dates)


def build_registry(payload: Dict[str, Any]) -> PlanRegistry:
    """Build an immutable registry from a JSON-shaped pricing payload."""
    if not isinstance(payload, dict):
        raise ConfigurationError("Pricing payload must be a JSON object.")
    raw_plans = payload.get("plans")
    if not isinstance(raw_plans, dict):
        raise ConfigurationError("Pricing payload needs a 'plans' object.")
    plans = {name: _parse_plan(name, config or {}) for name, config in raw_plans.items()}
    bindings = tuple(_parse_binding(entry or {}, plans) for entry in payload.get("bindings") or [])
    return PlanRegistry(
        plans=tuple(plans.values()),
        bindings=bindings,
        holiday_dates=_parse_holidays(payload.get("holiday_dates")),
    )


def build_default_registry() -> PlanRegistry:
    return build_registry(build_default_pricing())


def load_registry(path: Optional[Path] = None) -> PlanRegistry:
    source = Path(path) if path else PRICING_FILE
    if not source.exists():
        log.info("[PRICING] %s not found; using baseline plans", source)
        return build_default_registry()
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Pricing file {source} is not valid JSON: {exc}") from exc
    registry = build_registry(payload)
    log.info("[PRICING] loaded %d bindings from %s", len(registry.bindings), source)
    return registry


# ---------------------------------------------------------------------------
# Export


def _rules_payload(rules: RulesPerDay) -> Dict[str, Any]:
    return {
        "per_person_tiers": [
            {
                "hours_from": tier.hours_from,
                "hours_to": tier.hours_to,
                "price_cents_per_person": tier.price_cents_per_person,
            }
            for tier in rules.per_person_tiers
        ],
        "round_up_to_minutes": rules.round_up_to_minutes,
        "room_hourly": {
            "price_cents_per_hour": rules.room_hourly.price_cents_per_hour,
            "round_up_to_minutes": rules.room_hourly.round_up_to_minutes,
        },
        "teaching": {
            "min_people": rules.teaching.min_people,
            "base_hours": rules.teaching.base_hours,
            "base_price_cents_per_person": rules.teaching.base_price_cents_per_person,
            "extra_unit_minutes": rules.teaching.extra_unit_minutes,
            "extra_unit_price_cents_per_person": rules.teaching.extra_unit_price_cents_per_person,
        },
    }


def export_registry_payload(registry: PlanRegistry) -> Dict[str, Any]:
    bindings = []
    for binding in registry.bindings:
        key_field = "table_name" if binding.scope == SCOPE_TABLE else "area"
        bindings.append(
            {"scope": binding.scope, key_field: binding.key, "plan": binding.plan.name, "priority": binding.priority}
        )
    return {
        "plans": {
            plan.name: {day.value: _rules_payload(plan.rules[day]) for day in DayType}
            for plan in registry.plans
        },
        "bindings": bindings,
        "holiday_dates": sorted(registry.holiday_dates),
    }


def save_registry(registry: PlanRegistry, target: Optional[Path] = None) -> Path:
    destination = Path(target) if target else PRICING_FILE
    destination.write_text(
        json.dumps(export_registry_payload(registry), indent=2, sort_keys=True, ensure_ascii=False),
        encoding="utf-8",
    )
    return destination
