"""Configuration data structures for clusterupdater."""

from __future__ import annotations

from dataclasses import dataclass, field

from clusterupdater.models.cluster_version import CLUSTER_VERSION_NAME


@dataclass(frozen=True)
class LogConfig:
    level: str = "warning"


@dataclass(frozen=True)
class ClusterConfig:
    """Addressing of the watched ClusterVersion singleton."""

    resource_name: str = CLUSTER_VERSION_NAME


@dataclass(frozen=True)
class LoopConfig:
    """Control loop cadence.

    ``poll_timeout_seconds`` bounds each watch used to refresh the cache;
    ``min_interval_seconds`` is the floor between two cycle starts.
    """

    poll_timeout_seconds: int = 30
    min_interval_seconds: float = 1.0


@dataclass(frozen=True)
class MetricsConfig:
    port: int = 0  # 0 disables the HTTP exporter


@dataclass(frozen=True)
class UpdaterConfig:
    """Top-level configuration."""

    force: bool = False
    log: LogConfig = field(default_factory=LogConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
