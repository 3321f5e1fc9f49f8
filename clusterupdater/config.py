"""Environment-variable configuration loading for clusterupdater.

Every setting is read from a ``CLUSTERUPDATER_*`` variable.  Numeric settings
are clamped into their allowed range; unparseable numbers and unknown log
levels raise ``ValueError``.  Command-line flags are applied on top of the
loaded config with :func:`dataclasses.replace` by the CLI.
"""

from __future__ import annotations

import os

from clusterupdater.models.config import ClusterConfig, LogConfig, LoopConfig, MetricsConfig, UpdaterConfig
from clusterupdater.observability.logging import LOG_LEVELS

_PREFIX = "CLUSTERUPDATER_"

_TRUTHY = frozenset({"1", "true", "yes", "on"})

_POLL_TIMEOUT_MIN, _POLL_TIMEOUT_MAX = 1, 300
_MIN_INTERVAL_MIN, _MIN_INTERVAL_MAX = 0.1, 300.0
_METRICS_PORT_MIN, _METRICS_PORT_MAX = 1024, 65535


def _env(name: str) -> str | None:
    value = os.environ.get(_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid number for {_PREFIX}{name}: {value!r}") from exc


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def validate_log_level(level: str) -> str:
    """Normalise and validate a log level name."""
    normalised = level.strip().lower()
    if normalised not in LOG_LEVELS:
        raise ValueError(f"Invalid log level {level!r}; expected one of {', '.join(LOG_LEVELS)}")
    return normalised


def clamp_metrics_port(port: int) -> int:
    """0 keeps the exporter disabled; anything else is clamped to an unprivileged port."""
    if port == 0:
        return 0
    return int(_clamp(port, _METRICS_PORT_MIN, _METRICS_PORT_MAX))


def load_config() -> UpdaterConfig:
    """Build an :class:`UpdaterConfig` from the process environment."""
    resource_name = _env("RESOURCE_NAME") or ClusterConfig().resource_name

    return UpdaterConfig(
        force=_env_bool("FORCE", False),
        log=LogConfig(level=validate_log_level(_env("LOG_LEVEL") or LogConfig().level)),
        cluster=ClusterConfig(resource_name=resource_name),
        loop=LoopConfig(
            poll_timeout_seconds=int(
                _clamp(
                    _env_int("POLL_TIMEOUT", LoopConfig().poll_timeout_seconds),
                    _POLL_TIMEOUT_MIN,
                    _POLL_TIMEOUT_MAX,
                )
            ),
            min_interval_seconds=_clamp(
                _env_float("MIN_INTERVAL", LoopConfig().min_interval_seconds),
                _MIN_INTERVAL_MIN,
                _MIN_INTERVAL_MAX,
            ),
        ),
        metrics=MetricsConfig(port=clamp_metrics_port(_env_int("METRICS_PORT", MetricsConfig().port))),
    )
