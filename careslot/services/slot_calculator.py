"""
Slot calculation.

Pure functions shared by the slot listing (advisory) and the booking authority
(authoritative re-check at commit time). Both must agree, so nothing here reads
the clock, the database or any configuration.

All wall-clock comparisons are done in minutes since local midnight of the
target day. Bookings on the previous or next day simply map to negative
values or values past 1440, which keeps cross-midnight buffers visible.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

MINUTES_PER_DAY = 24 * 60


class RuleLike(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    active: bool


@dataclass(frozen=True)
class Booking:
    """An existing non-cancelled booking.

    `compute_slots` expects `start` as the provider's naive local time;
    `find_conflict` accepts any frame as long as the request uses the same one.
    """
    start: datetime
    duration_minutes: int


def day_of_week(value: date) -> int:
    """Sunday-based weekday: Sunday = 0 ... Saturday = 6."""
    return (value.weekday() + 1) % 7


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def time_of(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval intersection."""
    return a_start < b_end and b_start < a_end


def open_intervals(rules: Iterable[RuleLike], weekday: int) -> List[Tuple[int, int]]:
    """Union of the active rules for `weekday`, as sorted disjoint minute ranges.

    Overlapping or touching rules merge into one interval so a window is never
    counted twice.
    """
    ranges = sorted(
        (minutes_of(r.start_time), minutes_of(r.end_time))
        for r in rules
        if r.active and r.day_of_week == weekday and minutes_of(r.start_time) < minutes_of(r.end_time)
    )

    merged: List[Tuple[int, int]] = []
    for start, end in ranges:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _booking_ranges(
    target_date: date,
    bookings: Iterable[Booking],
    buffer_minutes: int,
) -> List[Tuple[int, int]]:
    midnight = datetime.combine(target_date, time(0, 0))
    ranges = []
    for b in bookings:
        start = int((b.start - midnight).total_seconds() // 60)
        ranges.append((start, start + b.duration_minutes + buffer_minutes))
    return ranges


def compute_slots(
    target_date: date,
    rules: Sequence[RuleLike],
    duration_minutes: int,
    buffer_minutes: int,
    existing_bookings: Sequence[Booking] = (),
) -> List[time]:
    """
    Bookable start times for `target_date`.

    Walks each open interval from its start in steps of `duration_minutes`,
    keeping a candidate when it ends inside the interval and its padded range
    [start, start + duration + buffer) misses every booking's padded range
    [b, b + b_duration + buffer). Returns sorted, de-duplicated start times;
    an empty list when nothing is open that day.
    """
    if duration_minutes <= 0:
        return []

    taken = _booking_ranges(target_date, existing_bookings, buffer_minutes)
    starts = set()

    for open_start, open_end in open_intervals(rules, day_of_week(target_date)):
        candidate = open_start
        while candidate + duration_minutes <= min(open_end, MINUTES_PER_DAY):
            padded_end = candidate + duration_minutes + buffer_minutes
            if not any(intervals_overlap(candidate, padded_end, b_start, b_end) for b_start, b_end in taken):
                starts.add(candidate)
            candidate += duration_minutes

    return [time_of(m) for m in sorted(starts)]


def fits_availability(
    rules: Sequence[RuleLike],
    local_start: datetime,
    duration_minutes: int,
) -> bool:
    """True when [local_start, local_start + duration) lies inside one open interval."""
    start = local_start.hour * 60 + local_start.minute
    if local_start.second or local_start.microsecond:
        return False
    end = start + duration_minutes
    return any(
        open_start <= start and end <= open_end
        for open_start, open_end in open_intervals(rules, day_of_week(local_start.date()))
    )


def find_conflict(
    start: datetime,
    duration_minutes: int,
    buffer_minutes: int,
    bookings: Iterable[Booking],
) -> Optional[Booking]:
    """First booking whose padded interval intersects the padded request, if any."""
    pad = timedelta(minutes=buffer_minutes)
    end = start + timedelta(minutes=duration_minutes) + pad
    for b in bookings:
        b_end = b.start + timedelta(minutes=b.duration_minutes) + pad
        if start < b_end and b.start < end:
            return b
    return None


def format_slots(slots: Iterable[time]) -> List[str]:
    return [s.strftime("%H:%M") for s in slots]
