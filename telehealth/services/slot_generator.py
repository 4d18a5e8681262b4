"""Derive bookable slots from a provider's working window.

Times are wall-clock ``datetime.time`` values in the provider's timezone.
Everything here is pure: no database access, no clock reads.
"""

from dataclasses import dataclass
from datetime import time
from typing import Iterable


@dataclass(frozen=True, order=True)
class SlotWindow:
    start_time: time
    end_time: time

    def overlaps(self, other: 'SlotWindow') -> bool:
        return self.start_time < other.end_time and self.end_time > other.start_time


def _to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` string."""
    hours, _, minutes = value.strip().partition(':')
    return time(int(hours), int(minutes or 0))


def validate_window(
    start_time: time,
    end_time: time,
    duration_minutes: int,
    break_start: time | None = None,
    break_end: time | None = None,
) -> None:
    if duration_minutes <= 0:
        raise ValueError('Slot duration must be greater than zero minutes.')

    for value in (start_time, end_time, break_start, break_end):
        if value is not None and (value.second or value.microsecond):
            raise ValueError('Times must be whole minutes.')

    if start_time >= end_time:
        raise ValueError('Start time must be before end time.')

    if (break_start is None) != (break_end is None):
        raise ValueError('Break start and break end must be given together.')

    if break_start is not None:
        if break_start >= break_end:
            raise ValueError('Break start must be before break end.')
        if break_start < start_time or break_end > end_time:
            raise ValueError('Break must lie within the working hours.')


def generate_slots(
    start_time: time,
    end_time: time,
    duration_minutes: int,
    break_start: time | None = None,
    break_end: time | None = None,
) -> list[SlotWindow]:
    """Walk from ``start_time`` to ``end_time`` in ``duration_minutes`` steps.

    A candidate slot that intersects ``[break_start, break_end)`` is dropped
    whole, and a trailing interval shorter than ``duration_minutes`` is
    dropped as well.
    """
    validate_window(start_time, end_time, duration_minutes, break_start, break_end)

    day_end = _to_minutes(end_time)
    break_window = None
    if break_start is not None:
        break_window = SlotWindow(break_start, break_end)

    slots: list[SlotWindow] = []
    current = _to_minutes(start_time)

    while current + duration_minutes <= day_end:
        candidate = SlotWindow(_from_minutes(current), _from_minutes(current + duration_minutes))
        if break_window is None or not candidate.overlaps(break_window):
            slots.append(candidate)
        current += duration_minutes

    return slots


def merge_with_booked(generated: Iterable[SlotWindow], booked: Iterable[SlotWindow]) -> list[SlotWindow]:
    """Combine a fresh schedule with slots that are already booked.

    Booked slots are kept exactly as they are. A generated slot is kept only
    if it does not overlap any booked slot.
    """
    booked_slots = sorted(set(booked))
    merged = list(booked_slots)

    for candidate in generated:
        if not any(candidate.overlaps(existing) for existing in booked_slots):
            merged.append(candidate)

    return sorted(merged)
