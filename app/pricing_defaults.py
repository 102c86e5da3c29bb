from __future__ import annotations

import copy
from typing import Any, Dict, List


def _tier(hours_from: int, hours_to: int | None, price_cents: int) -> Dict[str, int | None]:
    return {
        "hours_from": max(1, hours_from),
        "hours_to": hours_to,
        "price_cents_per_person": max(0, price_cents),
    }


def _teaching_config(
    *,
    min_people: int,
    base_hours: int = 3,
    base_price: int = 350_00,
    extra_unit_minutes: int = 60,
    extra_unit_price: int = 50_00,
) -> Dict[str, int]:
    return {
        "min_people": max(0, min_people),
        "base_hours": base_hours,
        "base_price_cents_per_person": base_price,
        "extra_unit_minutes": extra_unit_minutes,
        "extra_unit_price_cents_per_person": extra_unit_price,
    }


def _rules_config(
    *,
    tiers: List[Dict[str, int | None]] | None = None,
    room_rate: int = 600_00,
    min_people: int = 6,
    round_up_to_minutes: int = 60,
) -> Dict[str, Any]:
    return {
        "per_person_tiers": tiers or [],
        "round_up_to_minutes": round_up_to_minutes,
        "room_hourly": {"price_cents_per_hour": room_rate, "round_up_to_minutes": 60},
        "teaching": _teaching_config(min_people=min_people),
    }


AREA_A_WEEKDAY_TIERS = [
    _tier(1, 2, 90_00),
    _tier(2, 3, 180_00),
    _tier(3, 4, 250_00),
    _tier(4, 5, 300_00),
    _tier(5, None, 350_00),
]

AREA_A_HOLIDAY_TIERS = [
    _tier(1, 2, 100_00),
    _tier(2, 3, 200_00),
    _tier(3, 4, 300_00),
    _tier(4, 5, 350_00),
    _tier(5, 6, 400_00),
    _tier(6, None, 450_00),
]


PLANS: Dict[str, Dict[str, Any]] = {
    # Open seating in area A.
    "A區-Default": {
        "weekday": _rules_config(tiers=AREA_A_WEEKDAY_TIERS),
        "holiday": _rules_config(tiers=AREA_A_HOLIDAY_TIERS),
    },
    # Forest / city private rooms: 600 per hour, teaching needs 6 people.
    "森林/城市包廂": {
        "weekday": _rules_config(room_rate=600_00, min_people=6),
        "holiday": _rules_config(room_rate=600_00, min_people=6),
    },
    "B區包廂": {
        "weekday": _rules_config(room_rate=800_00, min_people=7),
        "holiday": _rules_config(room_rate=800_00, min_people=7),
    },
}

BINDINGS: List[Dict[str, Any]] = [
    {"scope": "area", "area": "A區", "plan": "A區-Default", "priority": 100},
    {"scope": "tableName", "table_name": "森林包廂", "plan": "森林/城市包廂", "priority": 200},
    {"scope": "tableName", "table_name": "城市包廂", "plan": "森林/城市包廂", "priority": 200},
    {"scope": "tableName", "table_name": "B區包廂", "plan": "B區包廂", "priority": 200},
]

# Extra public holidays, YYYY-MM-DD in local time. Weekends are always holidays.
HOLIDAY_DATES: List[str] = []


BASELINE_PRICING: Dict[str, Any] = {
    "name": "Baseline Pricing",
    "plans": PLANS,
    "bindings": BINDINGS,
    "holiday_dates": HOLIDAY_DATES,
}


def build_default_pricing() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the payload safely."""
    return copy.deepcopy(BASELINE_PRICING)
