"""Per-series sliding windows and the registry that owns them.

``SeriesRegistry`` is the explicit schema of the live view: an ordered list of
``SeriesWindow`` objects keyed by position, each carrying its display label.
The registry is resized whenever a decoded message implies a different series
count; it never interpolates or gap-fills.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

from .constants import MAX_POINTS
from .decoder import DecodedSample

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SeriesWindow:
    """Bounded oldest-first history of one series."""

    capacity: int = MAX_POINTS
    raw: deque[float] = field(init=False)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"SeriesWindow.capacity must be >= 1, got {self.capacity!r}")
        self.raw = deque(maxlen=self.capacity)

    def append(self, value: float) -> None:
        # deque(maxlen=...) evicts from the head once full.
        self.raw.append(value)

    def values(self) -> list[float]:
        return list(self.raw)

    def __len__(self) -> int:
        return len(self.raw)


@dataclass(slots=True)
class IngestResult:
    """Return value of :meth:`SeriesRegistry.ingest`."""

    resized: bool = False
    previous_count: int = 0
    series_count: int = 0


class SeriesRegistry:
    def __init__(self, capacity: int = MAX_POINTS) -> None:
        self._capacity = max(1, int(capacity))
        self._labels: list[str] = []
        self._windows: list[SeriesWindow] = []
        # Incremented on every raw-data mutation; consumers cache derived
        # frames against it.
        self.generation: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def __len__(self) -> int:
        return len(self._windows)

    def resize(self, labels: Sequence[str]) -> None:
        """Match the series count to *labels*, keeping surviving history.

        New empty series are appended for extra slots; trailing series beyond
        the new count are discarded together with their history.  The label
        set is replaced wholesale.
        """
        count = len(labels)
        while len(self._windows) < count:
            self._windows.append(SeriesWindow(capacity=self._capacity))
        del self._windows[count:]
        self._labels = list(labels)
        self.generation += 1

    def ingest(self, sample: DecodedSample) -> IngestResult:
        """Append one decoded sample, resizing first if its shape changed."""
        previous = len(self._windows)
        resized = False
        if previous == 0 or previous != len(sample):
            self.resize(sample.labels)
            resized = True
            if previous:
                LOGGER.info(
                    "Series count changed %d -> %d; labels now %s",
                    previous,
                    len(sample),
                    ", ".join(sample.labels),
                )
        for window, value in zip(self._windows, sample.values, strict=True):
            window.append(value)
        self.generation += 1
        return IngestResult(resized=resized, previous_count=previous, series_count=len(sample))

    def clear(self) -> None:
        self._labels = []
        self._windows = []
        self.generation += 1

    def raw_series(self) -> list[list[float]]:
        """Snapshot of every window, oldest sample first."""
        return [window.values() for window in self._windows]

    def point_counts(self) -> list[int]:
        return [len(window) for window in self._windows]
