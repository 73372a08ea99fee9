from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .constants import (
    BASELINE_SAMPLES,
    DEFAULT_CONNECT_TIMEOUT_S,
    DEFAULT_GAIN,
    DEFAULT_KEEPALIVE_S,
    DEFAULT_RECONNECT_PERIOD_S,
    DEFAULT_TOPIC,
    GAIN_MAX,
    GAIN_MIN,
    MAX_POINTS,
    MAX_SERIES,
    MESSAGE_LOG_SIZE,
)

PACKAGE_DIR = Path(__file__).resolve().parent
"""Directory of the installed ``iotview`` package."""

LOGGER = logging.getLogger(__name__)

VALID_VIEW_MODES: tuple[str, ...] = ("absolute", "relative")
VALID_LOG_LEVELS: tuple[str, ...] = ("debug", "info", "warning", "error", "critical")

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 8080, "log_level": "info"},
    "presign": {
        "endpoint_url": "http://127.0.0.1:3000/api/iot-presign",
        "timeout_s": 10.0,
        "client_id_prefix": "web-",
    },
    "mqtt": {
        "connect_timeout_s": DEFAULT_CONNECT_TIMEOUT_S,
        "reconnect_period_s": DEFAULT_RECONNECT_PERIOD_S,
        "keepalive_s": DEFAULT_KEEPALIVE_S,
        "qos": 0,
    },
    "viewer": {
        "max_series": MAX_SERIES,
        "max_points": MAX_POINTS,
        "baseline_samples": BASELINE_SAMPLES,
        "gain_min": GAIN_MIN,
        "gain_max": GAIN_MAX,
        "default_gain": DEFAULT_GAIN,
        "default_mode": "relative",
        "default_topic": DEFAULT_TOPIC,
        "ui_push_hz": 10,
        "message_log_size": MESSAGE_LOG_SIZE,
        "auto_connect": True,
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _clamp_int(section: str, name: str, value: int, minimum: int, maximum: int) -> int:
    if value < minimum or value > maximum:
        clamped = max(minimum, min(maximum, value))
        LOGGER.warning(
            "%s.%s=%s is outside %s..%s; clamped to %s",
            section,
            name,
            value,
            minimum,
            maximum,
            clamped,
        )
        return clamped
    return value


_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _as_bool(section: str, name: str, value: Any, default: bool) -> bool:
    """Read a YAML flag; quoted words like ``'false'`` count, anything else falls back."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    LOGGER.warning("%s.%s=%r is not a boolean; using %s", section, name, value, default)
    return default


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int
    log_level: str

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"ServerConfig.port must be 1–65535, got {self.port!r}")
        level = str(self.log_level).lower()
        if level not in VALID_LOG_LEVELS:
            LOGGER.warning("server.log_level=%r is unknown; using 'info'", self.log_level)
            level = "info"
        object.__setattr__(self, "log_level", level)


@dataclass(slots=True)
class PresignConfig:
    endpoint_url: str
    timeout_s: float
    client_id_prefix: str

    def __post_init__(self) -> None:
        scheme = urlsplit(self.endpoint_url).scheme
        if scheme not in ("http", "https"):
            raise ValueError(
                f"presign.endpoint_url must be an http(s) URL, got {self.endpoint_url!r}"
            )
        if not isinstance(self.timeout_s, (int, float)) or self.timeout_s <= 0:
            LOGGER.warning("presign.timeout_s=%s is not positive; using 10s", self.timeout_s)
            object.__setattr__(self, "timeout_s", 10.0)


@dataclass(slots=True)
class MQTTConfig:
    connect_timeout_s: float
    reconnect_period_s: float
    keepalive_s: int
    qos: int

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            LOGGER.warning(
                "mqtt.connect_timeout_s=%s is not positive; using %s",
                self.connect_timeout_s,
                DEFAULT_CONNECT_TIMEOUT_S,
            )
            object.__setattr__(self, "connect_timeout_s", DEFAULT_CONNECT_TIMEOUT_S)
        if self.reconnect_period_s <= 0:
            LOGGER.warning(
                "mqtt.reconnect_period_s=%s is not positive; using %s",
                self.reconnect_period_s,
                DEFAULT_RECONNECT_PERIOD_S,
            )
            object.__setattr__(self, "reconnect_period_s", DEFAULT_RECONNECT_PERIOD_S)
        object.__setattr__(
            self, "keepalive_s", _clamp_int("mqtt", "keepalive_s", self.keepalive_s, 5, 65535)
        )
        object.__setattr__(self, "qos", _clamp_int("mqtt", "qos", self.qos, 0, 1))


@dataclass(slots=True)
class ViewerConfig:
    max_series: int
    max_points: int
    baseline_samples: int
    gain_min: int
    gain_max: int
    default_gain: int
    default_mode: str
    default_topic: str
    ui_push_hz: int
    message_log_size: int
    auto_connect: bool

    def __post_init__(self) -> None:
        # --- positive-integer guards ------------------------------------------------
        _POS_FIELDS: dict[str, int] = {
            "max_series": 1,
            "max_points": 1,
            "baseline_samples": 1,
            "ui_push_hz": 1,
            "message_log_size": 1,
        }
        for field_name, minimum in _POS_FIELDS.items():
            val = getattr(self, field_name)
            if val < minimum:
                LOGGER.warning(
                    "viewer.%s=%s is below minimum %s; clamped to %s",
                    field_name,
                    val,
                    minimum,
                    minimum,
                )
                object.__setattr__(self, field_name, minimum)

        # --- gain range must be non-empty and start at 1 or above ------------------
        if self.gain_min < 1 or self.gain_max < self.gain_min:
            raise ValueError(
                f"viewer gain range must satisfy 1 <= gain_min <= gain_max, "
                f"got [{self.gain_min}, {self.gain_max}]"
            )
        object.__setattr__(
            self,
            "default_gain",
            _clamp_int("viewer", "default_gain", self.default_gain, self.gain_min, self.gain_max),
        )

        if self.default_mode not in VALID_VIEW_MODES:
            LOGGER.warning(
                "viewer.default_mode=%r is unknown; using 'relative'", self.default_mode
            )
            object.__setattr__(self, "default_mode", "relative")


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    presign: PresignConfig
    mqtt: MQTTConfig
    viewer: ViewerConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def documented_default_config() -> dict[str, Any]:
    """Return runtime defaults in the shape documented by config.example.yaml."""
    return deepcopy(DEFAULT_CONFIG)


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (PACKAGE_DIR.parent / "config.yaml")
    path = path.resolve()
    override = _read_config_file(path)
    merged = _deep_merge(DEFAULT_CONFIG, override)

    server_cfg = merged["server"]
    presign_cfg = merged["presign"]
    mqtt_cfg = merged["mqtt"]
    viewer_cfg = merged["viewer"]

    return AppConfig(
        server=ServerConfig(
            host=str(server_cfg["host"]),
            port=int(server_cfg["port"]),
            log_level=str(server_cfg.get("log_level", "info")),
        ),
        presign=PresignConfig(
            endpoint_url=str(presign_cfg["endpoint_url"]),
            timeout_s=float(presign_cfg.get("timeout_s", 10.0)),
            client_id_prefix=str(presign_cfg.get("client_id_prefix", "web-")),
        ),
        mqtt=MQTTConfig(
            connect_timeout_s=float(mqtt_cfg["connect_timeout_s"]),
            reconnect_period_s=float(mqtt_cfg["reconnect_period_s"]),
            keepalive_s=int(mqtt_cfg.get("keepalive_s", DEFAULT_KEEPALIVE_S)),
            qos=int(mqtt_cfg.get("qos", 0)),
        ),
        viewer=ViewerConfig(
            max_series=int(viewer_cfg["max_series"]),
            max_points=int(viewer_cfg["max_points"]),
            baseline_samples=int(viewer_cfg.get("baseline_samples", BASELINE_SAMPLES)),
            gain_min=int(viewer_cfg["gain_min"]),
            gain_max=int(viewer_cfg["gain_max"]),
            default_gain=int(viewer_cfg["default_gain"]),
            default_mode=str(viewer_cfg["default_mode"]),
            default_topic=str(viewer_cfg["default_topic"]),
            ui_push_hz=int(viewer_cfg["ui_push_hz"]),
            message_log_size=int(viewer_cfg.get("message_log_size", MESSAGE_LOG_SIZE)),
            auto_connect=_as_bool("viewer", "auto_connect", viewer_cfg.get("auto_connect"), True),
        ),  # NOTE: ViewerConfig.__post_init__ validates & clamps all fields
        config_path=path,
    )
