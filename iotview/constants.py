"""Shared viewer constants (single source of truth).

Every numeric literal that appears in more than one module should live here
so that a change only needs to happen in one place.  Runtime-tunable values
are mirrored in :data:`iotview.config.DEFAULT_CONFIG`.
"""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Series extraction and windowing
# ---------------------------------------------------------------------------
MAX_SERIES: Final[int] = 4
"""Maximum number of numeric series extracted from one inbound message."""

MAX_POINTS: Final[int] = 50
"""Capacity of each per-series sliding window (oldest samples evicted)."""

# ---------------------------------------------------------------------------
# View transform
# ---------------------------------------------------------------------------
BASELINE_SAMPLES: Final[int] = 5
"""Leading raw samples whose median is the relative-mode baseline."""

GAIN_MIN: Final[int] = 1
"""Lowest gain.  At this value the relative view degrades to absolute."""

GAIN_MAX: Final[int] = 200

DEFAULT_GAIN: Final[int] = 100
"""100x makes a 0.1 change from baseline show up as 10."""

Y_DOMAIN_PAD_RATIO: Final[float] = 0.1
"""Fraction of the value span added above and below a chart's y-range."""

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
DEFAULT_CONNECT_TIMEOUT_S: Final[float] = 30.0
DEFAULT_RECONNECT_PERIOD_S: Final[float] = 3.0
DEFAULT_KEEPALIVE_S: Final[int] = 60

DEFAULT_TOPIC: Final[str] = "devices/test_0914/telemetry"

MESSAGE_LOG_SIZE: Final[int] = 200
"""Recent raw messages retained for the message panel (newest first)."""
