from __future__ import annotations

import math

import pytest

from iotview.view_transform import (
    ViewMode,
    baseline,
    display_frame,
    is_effectively_absolute,
    median,
    transform_series,
    validate_gain,
)


class TestMedian:
    def test_odd_count(self) -> None:
        assert median([10, 12, 11, 13, 9]) == 11.0

    def test_even_count_averages_central_values(self) -> None:
        assert median([4, 1, 3, 2]) == 2.5

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            median([])


def test_baseline_uses_leading_samples_only() -> None:
    assert baseline([10, 12, 11, 13, 9, 1000, 1000]) == 11.0
    assert baseline([4.0, 6.0]) == 5.0


def test_relative_transform_example() -> None:
    raw = [10.0, 12.0, 11.0, 13.0, 9.0, 15.0]
    display = transform_series(raw, ViewMode.relative, 10)
    assert display[-1] == 40.0
    assert display[0] == -10.0


def test_gain_one_is_absolute_even_in_relative_mode() -> None:
    raw = [10.0, 12.0, 11.0, 13.0, 9.0, 15.0]
    assert transform_series(raw, "relative", 1) == raw
    assert is_effectively_absolute(ViewMode.relative, 1) is True
    assert is_effectively_absolute(ViewMode.relative, 2) is False


def test_absolute_mode_is_identity() -> None:
    raw = [1.5, -2.0, 3.25]
    assert transform_series(raw, ViewMode.absolute, 200) == raw


def test_transform_does_not_mutate_raw() -> None:
    raw = [1.0, 2.0, 3.0]
    transform_series(raw, ViewMode.relative, 50)
    assert raw == [1.0, 2.0, 3.0]


def test_empty_series_transforms_to_empty() -> None:
    assert transform_series([], ViewMode.relative, 100) == []


def test_infinite_sample_does_not_raise() -> None:
    display = transform_series([1.0, 1.0, math.inf], ViewMode.relative, 100)
    assert display[0] == 0.0
    assert math.isinf(display[-1])


def test_display_frame_uses_per_series_baseline() -> None:
    frame = display_frame([[1.0, 2.0], [100.0, 101.0]], ViewMode.relative, 10)
    assert frame == [[-5.0, 5.0], [-5.0, 5.0]]


@pytest.mark.parametrize("gain", [0, 201, -5, 1.5, True, "10", None])
def test_validate_gain_rejects(gain) -> None:
    with pytest.raises(ValueError):
        validate_gain(gain)


def test_validate_gain_accepts_bounds() -> None:
    assert validate_gain(1) == 1
    assert validate_gain(200) == 200
