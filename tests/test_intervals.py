from datetime import UTC, datetime, timedelta

import pytest

from instructor_booking.services.intervals import (
    Interval,
    covered_minutes,
    ensure_utc,
    is_minute_aligned,
    merge_intervals,
    slice_intervals,
    subtract_intervals,
    widen_to_minutes,
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 7, hour, minute, tzinfo=UTC)


def _span(start: tuple[int, int], end: tuple[int, int]) -> Interval:
    return Interval(_at(*start), _at(*end))


def test_interval_rejects_naive_and_inverted_bounds() -> None:
    with pytest.raises(ValueError):
        Interval(datetime(2030, 1, 7, 9), datetime(2030, 1, 7, 10))
    with pytest.raises(ValueError):
        Interval(_at(10), _at(9))
    with pytest.raises(ValueError):
        Interval(_at(10), _at(10))


def test_half_open_intervals_touching_do_not_overlap() -> None:
    morning = _span((9, 0), (10, 0))
    later = _span((10, 0), (11, 0))

    assert not morning.overlaps(later)
    assert morning.overlaps(_span((9, 59), (10, 30)))


def test_merge_intervals_unions_overlapping_and_adjacent_ranges() -> None:
    merged = merge_intervals(
        [
            _span((13, 0), (14, 0)),
            _span((9, 0), (10, 0)),
            _span((9, 30), (11, 0)),
            _span((11, 0), (12, 0)),
        ],
    )

    assert merged == [_span((9, 0), (12, 0)), _span((13, 0), (14, 0))]


def test_subtract_intervals_splits_around_busy_ranges() -> None:
    free = subtract_intervals(
        [_span((9, 0), (17, 0))],
        [_span((12, 0), (13, 0)), _span((8, 0), (9, 30)), _span((16, 45), (18, 0))],
    )

    assert free == [
        _span((9, 30), (12, 0)),
        _span((13, 0), (16, 45)),
    ]


def test_subtract_intervals_with_fully_covering_busy_range_returns_nothing() -> None:
    assert subtract_intervals([_span((9, 0), (10, 0))], [_span((8, 0), (11, 0))]) == []


def test_slice_intervals_walks_forward_from_each_window_start() -> None:
    slices = slice_intervals(
        [_span((9, 10), (10, 30)), _span((11, 0), (11, 20))],
        timedelta(minutes=30),
    )

    assert slices == [
        _span((9, 10), (9, 40)),
        _span((9, 40), (10, 10)),
    ]


def test_slice_intervals_requires_positive_step() -> None:
    with pytest.raises(ValueError):
        slice_intervals([_span((9, 0), (10, 0))], timedelta(0))


def test_covered_minutes_includes_partial_first_minute() -> None:
    interval = Interval(_at(9, 0) + timedelta(seconds=30), _at(9, 2))

    assert covered_minutes(interval) == [_at(9, 0), _at(9, 1)]


def test_ensure_utc_treats_naive_values_as_utc() -> None:
    naive = datetime(2030, 1, 7, 9, 0)

    assert ensure_utc(naive) == _at(9)
    assert ensure_utc(naive).tzinfo is UTC


def test_widen_to_minutes_rounds_outward_and_keeps_aligned_bounds() -> None:
    ragged = Interval(_at(9, 30) + timedelta(seconds=20), _at(10, 14) + timedelta(seconds=10))

    assert widen_to_minutes(ragged) == _span((9, 30), (10, 15))
    assert widen_to_minutes(_span((9, 0), (9, 30))) == _span((9, 0), (9, 30))
    assert is_minute_aligned(_at(9))
    assert not is_minute_aligned(_at(9) + timedelta(seconds=30))
