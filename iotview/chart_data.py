"""Align transformed series onto one shared positional index for charting.

Series may hold different numbers of points.  Every series is right-aligned
so its newest sample sits on the last index; earlier positions with no sample
are ``None`` so the renderer can skip them instead of drawing zeros.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .constants import Y_DOMAIN_PAD_RATIO


@dataclass(slots=True)
class SeriesMeta:
    label: str
    title: str
    points: int
    y_domain: tuple[float, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "title": self.title,
            "points": self.points,
            "y_domain": list(self.y_domain),
        }


@dataclass(slots=True)
class ChartRow:
    idx: int
    values: dict[str, float | None]

    def to_dict(self) -> dict[str, Any]:
        return {"idx": self.idx, "values": self.values}


@dataclass(slots=True)
class ChartData:
    length: int = 0
    rows: list[ChartRow] = field(default_factory=list)
    series: list[SeriesMeta] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "length": self.length,
            "rows": [row.to_dict() for row in self.rows],
            "series": [meta.to_dict() for meta in self.series],
        }


def series_key(labels: Sequence[str], index: int) -> str:
    """Row key for series *index*; positional ``v<n>`` when no label is known."""
    if index < len(labels) and labels[index]:
        return labels[index]
    return f"v{index + 1}"


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


def align_series(values: Sequence[float], length: int) -> list[float | None]:
    """Right-align *values* into *length* slots, padding the front with ``None``."""
    offset = length - len(values)
    return [None] * offset + [_finite_or_none(float(v)) for v in values]


def y_domain(
    values: Sequence[float | None],
    pad_ratio: float = Y_DOMAIN_PAD_RATIO,
) -> tuple[float, float]:
    """Value range padded on both sides; ``(0, 1)`` when there is nothing to show."""
    finite = [v for v in values if v is not None and math.isfinite(v)]
    if not finite:
        return (0.0, 1.0)
    lo = min(finite)
    hi = max(finite)
    pad = ((hi - lo) or 1.0) * pad_ratio
    if not math.isfinite(pad):
        pad = 0.0
    return (lo - pad, hi + pad)


def series_title(label: str, relative: bool, gain: int) -> str:
    if relative:
        return f"{label} (Δ×{gain}x)"
    return label


def assemble_chart(
    labels: Sequence[str],
    display_series: Sequence[Sequence[float]],
    *,
    relative: bool = False,
    gain: int = 1,
) -> ChartData:
    """Build one row per position ``i`` in ``0..L-1`` holding a value per label.

    ``L`` is the longest series length.  ``idx`` is the position, not a
    timestamp, and lives outside ``values`` so no label can shadow it.
    *relative* only affects the per-series titles; the values are expected to
    be transformed already.
    """
    length = max((len(s) for s in display_series), default=0)
    keys = [series_key(labels, k) for k in range(len(display_series))]
    columns = [align_series(values, length) for values in display_series]

    pairs = list(zip(keys, columns, strict=True))
    rows = [
        ChartRow(idx=i, values={key: column[i] for key, column in pairs}) for i in range(length)
    ]

    series = [
        SeriesMeta(
            label=key,
            title=series_title(key, relative, gain),
            points=len(values),
            y_domain=y_domain(column),
        )
        for key, values, column in zip(keys, display_series, columns, strict=True)
    ]
    return ChartData(length=length, rows=rows, series=series)
