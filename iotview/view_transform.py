"""Raw-window to display-value transform.

Pure functions: nothing here mutates the raw windows, and every call
recomputes the whole frame from its three inputs (raw data, mode, gain).
"""

from __future__ import annotations

import enum
from collections.abc import Sequence

import numpy as np

from .constants import BASELINE_SAMPLES, GAIN_MAX, GAIN_MIN


class ViewMode(enum.StrEnum):
    absolute = "absolute"
    relative = "relative"


def validate_gain(gain: object, gain_min: int = GAIN_MIN, gain_max: int = GAIN_MAX) -> int:
    """Return *gain* as an int or raise ``ValueError`` if it is not a usable gain."""
    if isinstance(gain, bool) or not isinstance(gain, int):
        raise ValueError(f"gain must be an integer, got {gain!r}")
    if not gain_min <= gain <= gain_max:
        raise ValueError(f"gain must be within [{gain_min}, {gain_max}], got {gain}")
    return gain


def median(values: Sequence[float]) -> float:
    """Median of *values*; an even count averages the two central values."""
    if len(values) == 0:
        raise ValueError("median of an empty sequence")
    with np.errstate(invalid="ignore"):
        return float(np.median(np.asarray(values, dtype=np.float64)))


def baseline(raw: Sequence[float], samples: int = BASELINE_SAMPLES) -> float:
    """Relative-mode reference: median of the first ``min(samples, len(raw))`` values."""
    return median(raw[: min(samples, len(raw))])


def is_effectively_absolute(mode: ViewMode | str, gain: int) -> bool:
    """Gain 1 always renders raw values, whatever mode is selected."""
    return ViewMode(mode) is ViewMode.absolute or gain == 1


def transform_series(
    raw: Sequence[float],
    mode: ViewMode | str,
    gain: int,
    *,
    baseline_samples: int = BASELINE_SAMPLES,
) -> list[float]:
    if len(raw) == 0:
        return []
    if is_effectively_absolute(mode, gain):
        return [float(v) for v in raw]
    arr = np.asarray(raw, dtype=np.float64)
    base = baseline(raw, baseline_samples)
    with np.errstate(invalid="ignore", over="ignore"):
        return ((arr - base) * gain).tolist()


def display_frame(
    raw_series: Sequence[Sequence[float]],
    mode: ViewMode | str,
    gain: int,
    *,
    baseline_samples: int = BASELINE_SAMPLES,
) -> list[list[float]]:
    """Transform every series independently (each gets its own baseline)."""
    return [
        transform_series(raw, mode, gain, baseline_samples=baseline_samples)
        for raw in raw_series
    ]
