"""Inbound payload decoding: raw MQTT bytes to labelled numeric samples.

Device payloads are not schema-validated.  Anything that is not a JSON array
or object with at least one numeric entry is dropped by returning ``None``;
nothing here raises for bad input.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

from .constants import MAX_SERIES

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DecodedSample:
    """Equal-length, order-matched labels and values from one message."""

    labels: tuple[str, ...]
    values: tuple[float, ...]

    def __len__(self) -> int:
        return len(self.values)


def _reject_constant(name: str) -> Any:
    # json.loads accepts NaN/Infinity by default; device JSON must be strict.
    raise ValueError(f"non-standard JSON constant {name!r}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_float(value: int | float) -> float:
    try:
        return float(value)
    except OverflowError:
        # Integers beyond double range behave like a browser's JSON.parse.
        return math.copysign(math.inf, value)


def payload_text(payload: bytes | bytearray | memoryview | str) -> str:
    """Decode a raw payload as UTF-8, replacing invalid byte sequences."""
    if isinstance(payload, str):
        return payload
    return bytes(payload).decode("utf-8", errors="replace")


def parse_json(text: str) -> Any | None:
    """Parse strict JSON, returning ``None`` on any failure."""
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return None


def extract_series(
    payload: bytes | bytearray | memoryview | str,
    max_series: int = MAX_SERIES,
) -> DecodedSample | None:
    """Extract up to *max_series* labelled numbers from one payload.

    - JSON array: the first *max_series* numeric elements, labelled
      ``v1, v2, …`` in their original order.
    - JSON object: numeric-valued entries sorted by key, first *max_series*
      kept, labelled by key.
    - Anything else (invalid JSON, scalars, ``null``, no numeric entries):
      ``None``.
    """
    obj = parse_json(payload_text(payload))
    if obj is None:
        LOGGER.debug("Dropping payload that is not valid JSON")
        return None

    if isinstance(obj, list):
        numbers = [item for item in obj if _is_number(item)][:max_series]
        if not numbers:
            return None
        return DecodedSample(
            labels=tuple(f"v{i + 1}" for i in range(len(numbers))),
            values=tuple(_as_float(n) for n in numbers),
        )

    if isinstance(obj, dict):
        entries = sorted(
            ((key, value) for key, value in obj.items() if _is_number(value)),
            key=lambda kv: kv[0],
        )[:max_series]
        if not entries:
            return None
        return DecodedSample(
            labels=tuple(key for key, _ in entries),
            values=tuple(_as_float(value) for _, value in entries),
        )

    return None
