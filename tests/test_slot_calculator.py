from dataclasses import dataclass
from datetime import date, datetime, time

from careslot.services.slot_calculator import (
    Booking,
    compute_slots,
    day_of_week,
    find_conflict,
    fits_availability,
    format_slots,
    open_intervals,
)


@dataclass
class Rule:
    day_of_week: int
    start_time: time
    end_time: time
    active: bool = True


MONDAY = date(2024, 1, 8)
MONDAY_RULE = Rule(1, time(9, 0), time(17, 0))


def test_day_of_week_is_sunday_based():
    assert day_of_week(date(2024, 1, 7)) == 0  # Sunday
    assert day_of_week(MONDAY) == 1
    assert day_of_week(date(2024, 1, 13)) == 6  # Saturday


def test_full_day_slots_step_by_duration():
    slots = format_slots(compute_slots(MONDAY, [MONDAY_RULE], 45, 15))

    assert slots[0] == "09:00"
    assert slots == [
        "09:00", "09:45", "10:30", "11:15", "12:00",
        "12:45", "13:30", "14:15", "15:00", "15:45",
    ]
    # Nothing starts after 17:00 - 45min
    assert all(s <= "16:15" for s in slots)


def test_existing_booking_blocks_padded_overlaps():
    booked = [Booking(datetime(2024, 1, 8, 10, 0), 45)]

    slots = format_slots(compute_slots(MONDAY, [MONDAY_RULE], 45, 15, booked))

    assert "10:00" not in slots
    assert "09:30" not in slots
    # [09:45, 10:45) hits the padded booking [10:00, 11:00)
    assert "09:45" not in slots
    assert "10:30" not in slots
    # Half-open: [09:00, 10:00) only touches [10:00, 11:00)
    assert "09:00" in slots
    assert "11:15" in slots


def test_slot_calculation_is_repeatable():
    rules = [MONDAY_RULE, Rule(1, time(18, 0), time(20, 0))]
    booked = [Booking(datetime(2024, 1, 8, 12, 0), 45)]

    first = compute_slots(MONDAY, rules, 30, 15, booked)
    second = compute_slots(MONDAY, rules, 30, 15, booked)

    assert first == second
    assert first == sorted(first)


def test_other_days_and_inactive_rules_produce_nothing():
    assert compute_slots(date(2024, 1, 9), [MONDAY_RULE], 45, 15) == []
    assert compute_slots(MONDAY, [Rule(1, time(9, 0), time(17, 0), active=False)], 45, 15) == []
    assert compute_slots(MONDAY, [], 45, 15) == []


def test_overlapping_rules_are_merged():
    rules = [Rule(1, time(9, 0), time(12, 0)), Rule(1, time(11, 0), time(13, 0))]

    assert open_intervals(rules, 1) == [(9 * 60, 13 * 60)]
    slots = format_slots(compute_slots(MONDAY, rules, 60, 0))
    assert slots == ["09:00", "10:00", "11:00", "12:00"]


def test_touching_rules_merge_into_one_window():
    rules = [Rule(1, time(9, 0), time(10, 0)), Rule(1, time(10, 0), time(11, 0))]

    assert open_intervals(rules, 1) == [(9 * 60, 11 * 60)]
    assert fits_availability(rules, datetime(2024, 1, 8, 9, 30), 60)


def test_booking_late_on_previous_day_reaches_past_midnight():
    rules = [Rule(1, time(0, 0), time(2, 0))]
    booked = [Booking(datetime(2024, 1, 7, 23, 30), 45)]

    slots = format_slots(compute_slots(MONDAY, rules, 30, 15, booked))

    # Padded booking runs to 00:30 on Monday
    assert "00:00" not in slots
    assert "00:30" in slots


def test_zero_duration_yields_no_slots():
    assert compute_slots(MONDAY, [MONDAY_RULE], 0, 15) == []


def test_fits_availability():
    rules = [MONDAY_RULE]

    assert fits_availability(rules, datetime(2024, 1, 8, 9, 0), 45)
    # Off-grid starts are fine as long as they fit the window
    assert fits_availability(rules, datetime(2024, 1, 8, 9, 10), 45)
    assert fits_availability(rules, datetime(2024, 1, 8, 16, 15), 45)
    assert not fits_availability(rules, datetime(2024, 1, 8, 16, 30), 45)
    assert not fits_availability(rules, datetime(2024, 1, 8, 8, 45), 45)
    assert not fits_availability(rules, datetime(2024, 1, 9, 10, 0), 45)
    assert not fits_availability(rules, datetime(2024, 1, 8, 10, 0, 30), 45)


def test_find_conflict_uses_padded_half_open_intervals():
    existing = [Booking(datetime(2024, 1, 8, 10, 0), 45)]

    assert find_conflict(datetime(2024, 1, 8, 10, 30), 45, 15, existing) == existing[0]
    assert find_conflict(datetime(2024, 1, 8, 9, 15), 45, 15, existing) == existing[0]
    assert find_conflict(datetime(2024, 1, 8, 11, 0), 45, 15, existing) is None
    assert find_conflict(datetime(2024, 1, 8, 9, 0), 45, 15, existing) is None
