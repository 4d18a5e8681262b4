from datetime import time

import pytest

from telehealth.services.slot_generator import SlotWindow, generate_slots, merge_with_booked, parse_clock


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def test_generate_slots_for_working_day_with_lunch_break() -> None:
    slots = generate_slots(time(9, 0), time(17, 0), 30, time(13, 0), time(14, 0))

    assert len(slots) == 14
    assert slots[0] == SlotWindow(time(9, 0), time(9, 30))
    assert slots[-1] == SlotWindow(time(16, 30), time(17, 0))
    assert SlotWindow(time(13, 0), time(13, 30)) not in slots
    assert SlotWindow(time(13, 30), time(14, 0)) not in slots


@pytest.mark.parametrize(
    ('start', 'end', 'duration'),
    [
        (time(9, 0), time(17, 0), 30),
        (time(9, 0), time(17, 0), 45),
        (time(8, 15), time(12, 0), 20),
        (time(10, 0), time(10, 50), 25),
        (time(0, 0), time(23, 59), 60),
    ],
)
def test_generate_slots_without_break_are_contiguous_and_exact(start: time, end: time, duration: int) -> None:
    slots = generate_slots(start, end, duration)

    assert len(slots) == (_minutes(end) - _minutes(start)) // duration
    assert slots[0].start_time == start
    for slot in slots:
        assert _minutes(slot.end_time) - _minutes(slot.start_time) == duration
    for previous, current in zip(slots, slots[1:]):
        assert previous.end_time == current.start_time


def test_generate_slots_drops_trailing_partial_interval() -> None:
    slots = generate_slots(time(9, 0), time(10, 10), 30)

    assert slots == [
        SlotWindow(time(9, 0), time(9, 30)),
        SlotWindow(time(9, 30), time(10, 0)),
    ]


@pytest.mark.parametrize(
    ('duration', 'break_start', 'break_end'),
    [
        (30, time(13, 0), time(14, 0)),
        (45, time(12, 10), time(12, 50)),
        (20, time(9, 5), time(9, 15)),
        (60, time(15, 30), time(17, 0)),
    ],
)
def test_generate_slots_never_intersect_the_break(duration: int, break_start: time, break_end: time) -> None:
    slots = generate_slots(time(9, 0), time(17, 0), duration, break_start, break_end)

    assert slots
    for slot in slots:
        assert not (slot.start_time < break_end and slot.end_time > break_start)


def test_generate_slots_drops_slot_straddling_break_whole() -> None:
    slots = generate_slots(time(9, 0), time(11, 0), 45, time(10, 0), time(10, 15))

    # 09:45-10:30 touches the break and is dropped, 10:30-11:15 runs past the end.
    assert slots == [SlotWindow(time(9, 0), time(9, 45))]


def test_generate_slots_is_deterministic() -> None:
    first = generate_slots(time(9, 0), time(17, 0), 30, time(13, 0), time(14, 0))
    second = generate_slots(time(9, 0), time(17, 0), 30, time(13, 0), time(14, 0))

    assert first == second


@pytest.mark.parametrize(
    ('start', 'end', 'duration', 'break_start', 'break_end', 'message'),
    [
        (time(9, 0), time(17, 0), 0, None, None, 'Slot duration must be greater than zero minutes.'),
        (time(17, 0), time(9, 0), 30, None, None, 'Start time must be before end time.'),
        (time(9, 0), time(17, 0), 30, time(13, 0), None, 'Break start and break end must be given together.'),
        (time(9, 0), time(17, 0), 30, time(14, 0), time(13, 0), 'Break start must be before break end.'),
        (time(9, 0), time(17, 0), 30, time(8, 0), time(9, 30), 'Break must lie within the working hours.'),
        (time(9, 0, 30), time(10, 0), 30, None, None, 'Times must be whole minutes.'),
        (time(9, 0), time(10, 0, 0, 500), 30, None, None, 'Times must be whole minutes.'),
        (time(9, 0), time(17, 0), 30, time(13, 0, 15), time(14, 0), 'Times must be whole minutes.'),
    ],
)
def test_generate_slots_rejects_invalid_windows(start, end, duration, break_start, break_end, message) -> None:
    with pytest.raises(ValueError) as exception_info:
        generate_slots(start, end, duration, break_start, break_end)

    assert str(exception_info.value) == message


def test_merge_with_booked_keeps_booked_and_skips_overlaps() -> None:
    generated = generate_slots(time(9, 0), time(12, 0), 60)
    booked = [SlotWindow(time(9, 30), time(10, 0))]

    merged = merge_with_booked(generated, booked)

    assert merged == [
        SlotWindow(time(9, 30), time(10, 0)),
        SlotWindow(time(10, 0), time(11, 0)),
        SlotWindow(time(11, 0), time(12, 0)),
    ]


def test_merge_with_booked_and_nothing_generated_returns_booked_only() -> None:
    booked = [SlotWindow(time(15, 0), time(15, 30)), SlotWindow(time(9, 0), time(9, 30))]

    assert merge_with_booked([], booked) == sorted(booked)


def test_parse_clock_reads_hours_and_minutes() -> None:
    assert parse_clock('09:30') == time(9, 30)
    assert parse_clock(' 13:00 ') == time(13, 0)
