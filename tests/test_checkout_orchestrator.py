from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from plans import DayType, build_default_registry, build_registry  # noqa: E402
from pricing.api import (  # noqa: E402
    MODE_PER_PERSON,
    MODE_ROOM_HOURLY,
    MODE_TEACHING,
    TicketSpan,
    compute_checkout,
    price_for_room_session,
    price_per_ticket,
)
from pricing.engine import compute_teaching_per_person, resolve_plan  # noqa: E402
from pricing_defaults import build_default_pricing  # noqa: E402

UTC = datetime.timezone.utc
# Monday 2 June 2025, 14:00 in Taipei.
NOW = datetime.datetime(2025, 6, 2, 6, 0, tzinfo=UTC)


def _ago(minutes: int) -> datetime.datetime:
    return NOW - datetime.timedelta(minutes=minutes)


class OpenSeatingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = build_default_registry()

    def test_price_per_ticket_uses_tiers_and_floors_minutes(self) -> None:
        pricing = price_per_ticket(self.registry, "A1", "A區", _ago(125), NOW)
        self.assertEqual(pricing.minutes, 125)
        self.assertEqual(pricing.matched_hours, 3)
        self.assertEqual(pricing.price_cents, 250_00)
        self.assertEqual(pricing.day, DayType.WEEKDAY)

    def test_clock_skew_bills_minimum_unit(self) -> None:
        pricing = price_per_ticket(self.registry, "A1", "A區", NOW + datetime.timedelta(minutes=3), NOW)
        self.assertEqual(pricing.minutes, 1)
        self.assertEqual(pricing.price_cents, 90_00)

    def test_checkout_prices_each_open_ticket_independently(self) -> None:
        tickets = [
            TicketSpan("a", _ago(30)),
            TicketSpan("b", _ago(125)),
            TicketSpan("c", _ago(200), ended_at=_ago(100)),
        ]
        result = compute_checkout(self.registry, "A1", "A區", tickets, NOW, is_room=False)
        self.assertEqual(result.mode, MODE_PER_PERSON)
        by_id = {charge.ticket_id: charge for charge in result.charges}
        self.assertEqual(set(by_id), {"a", "b"})
        self.assertEqual(by_id["a"].price_cents, 90_00)
        self.assertEqual(by_id["b"].price_cents, 250_00)
        self.assertEqual(result.total_cents, 340_00)

    def test_holiday_rules_follow_ticket_start(self) -> None:
        saturday_noon = datetime.datetime(2025, 6, 7, 4, 0, tzinfo=UTC)
        pricing = price_per_ticket(
            self.registry, "A1", "A區", saturday_noon, saturday_noon + datetime.timedelta(minutes=61)
        )
        self.assertEqual(pricing.day, DayType.HOLIDAY)
        self.assertEqual(pricing.price_cents, 200_00)


class RoomHourlyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = build_default_registry()

    def test_three_guests_split_two_billed_hours(self) -> None:
        tickets = [TicketSpan(idx, _ago(95)) for idx in range(3)]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True)
        self.assertEqual(result.mode, MODE_ROOM_HOURLY)
        self.assertEqual(result.billed_hours, 2)
        self.assertEqual(result.total_cents, 120000)
        self.assertEqual([charge.price_cents for charge in result.charges], [40000, 40000, 40000])
        self.assertTrue(all(charge.minutes == 95 for charge in result.charges))

    def test_remainder_goes_to_earliest_arrivals(self) -> None:
        payload = build_default_pricing()
        payload["plans"]["森林/城市包廂"]["weekday"]["room_hourly"]["price_cents_per_hour"] = 10000
        registry = build_registry(payload)
        tickets = [
            TicketSpan("late", _ago(20)),
            TicketSpan("mid", _ago(40)),
            TicketSpan("first", _ago(50)),
        ]
        result = compute_checkout(registry, "城市包廂", "", tickets, NOW, is_room=True)
        shares = {charge.ticket_id: charge.price_cents for charge in result.charges}
        self.assertEqual(shares, {"first": 3334, "mid": 3333, "late": 3333})
        self.assertEqual([charge.ticket_id for charge in result.charges], ["first", "mid", "late"])
        self.assertEqual({charge.ticket_id: charge.minutes for charge in result.charges}["late"], 20)

    def test_closed_tickets_set_earliest_start_but_are_not_charged(self) -> None:
        tickets = [
            TicketSpan("gone", _ago(200), ended_at=_ago(150)),
            TicketSpan("x", _ago(60)),
            TicketSpan("y", _ago(30)),
        ]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True)
        self.assertEqual(result.billed_minutes, 200)
        self.assertEqual(result.total_cents, 4 * 60000)
        self.assertEqual([charge.ticket_id for charge in result.charges], ["x", "y"])
        self.assertEqual(sum(charge.price_cents for charge in result.charges), 240000)

    def test_b_room_rate(self) -> None:
        tickets = [TicketSpan(1, _ago(30))]
        result = compute_checkout(self.registry, "B區包廂", "", tickets, NOW, is_room=True)
        self.assertEqual(result.total_cents, 80000)

    def test_no_open_tickets_produces_no_charges(self) -> None:
        tickets = [TicketSpan("gone", _ago(60), ended_at=_ago(10))]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True)
        self.assertEqual(result.charges, [])
        self.assertEqual(result.total_cents, 0)

    def test_empty_session_falls_back_to_opened_at(self) -> None:
        result = compute_checkout(
            self.registry, "森林包廂", "", [], NOW, is_room=True, session_opened_at=_ago(90)
        )
        self.assertEqual(result.billed_minutes, 90)
        self.assertEqual(result.charges, [])


class TeachingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = build_default_registry()

    def test_four_students_billed_as_six(self) -> None:
        tickets = [TicketSpan(idx, _ago(120)) for idx in range(4)]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True, teaching=True)
        self.assertEqual(result.mode, MODE_TEACHING)
        self.assertEqual(result.actual_people, 4)
        self.assertEqual(result.billed_people, 6)
        self.assertEqual(result.total_cents, 210000)
        self.assertEqual(sum(charge.price_cents for charge in result.charges), 210000)
        self.assertEqual([charge.price_cents for charge in result.charges], [52500] * 4)

    def test_uneven_stays_rescale_with_last_absorbing_remainder(self) -> None:
        # B room needs 7 people; three stayed 250, 200 and 120 minutes.
        tickets = [
            TicketSpan("short", _ago(120)),
            TicketSpan("long", _ago(250)),
            TicketSpan("medium", _ago(200)),
        ]
        result = compute_checkout(self.registry, "B區包廂", "", tickets, NOW, is_room=True, teaching=True)
        self.assertEqual(result.billed_people, 7)
        self.assertEqual(result.total_cents, 280000)
        self.assertEqual(
            [(charge.ticket_id, charge.price_cents) for charge in result.charges],
            [("long", 105000), ("medium", 93333), ("short", 81667)],
        )
        self.assertEqual([charge.minutes for charge in result.charges], [250, 200, 120])

    def test_full_group_keeps_individual_prices(self) -> None:
        minutes = [120, 181, 241, 60, 90, 300]
        tickets = [TicketSpan(idx, _ago(mins)) for idx, mins in enumerate(minutes)]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True, teaching=True)
        rules = resolve_plan(self.registry, "森林包廂", "", NOW).rules
        expected = {idx: compute_teaching_per_person(mins, rules) for idx, mins in enumerate(minutes)}
        self.assertEqual(result.billed_people, 6)
        self.assertEqual({charge.ticket_id: charge.price_cents for charge in result.charges}, expected)
        self.assertEqual(result.total_cents, sum(expected.values()))

    def test_closed_tickets_do_not_count_as_people(self) -> None:
        tickets = [TicketSpan("gone", _ago(120), ended_at=_ago(60))] + [
            TicketSpan(idx, _ago(60)) for idx in range(6)
        ]
        result = compute_checkout(self.registry, "森林包廂", "", tickets, NOW, is_room=True, teaching=True)
        self.assertEqual(result.actual_people, 6)
        self.assertNotIn("gone", [charge.ticket_id for charge in result.charges])
        self.assertTrue(all(charge.price_cents == 350_00 for charge in result.charges))

    def test_room_session_quote(self) -> None:
        hourly = price_for_room_session(self.registry, "森林包廂", "", _ago(95), NOW, people=3, teaching=False)
        self.assertEqual(hourly.total_cents, 120000)
        self.assertEqual(hourly.billed_hours, 2)
        teaching = price_for_room_session(self.registry, "森林包廂", "", _ago(95), NOW, people=4, teaching=True)
        self.assertEqual(teaching.billed_people, 6)
        self.assertEqual(teaching.total_cents, 6 * 350_00)


if __name__ == "__main__":
    unittest.main()
