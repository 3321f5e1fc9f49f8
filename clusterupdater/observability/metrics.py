"""Prometheus metrics for clusterupdater."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Reconciler metrics
reconcile_cycles_total = Counter(
    "clusterupdater_reconcile_cycles_total",
    "Total reconciliation cycles by outcome",
    ["outcome"],
)

update_requests_total = Counter(
    "clusterupdater_update_requests_total",
    "Total desiredUpdate patch requests",
    ["result"],
)

desired_version_info = Gauge(
    "clusterupdater_desired_version_info",
    "Version most recently requested by the controller (always 1)",
    ["version"],
)

# Cache metrics
cache_refresh_errors_total = Counter(
    "clusterupdater_cache_refresh_errors_total",
    "Total failed live-view cache refreshes",
)

cache_relists_total = Counter(
    "clusterupdater_cache_relists_total",
    "Total full relists of the watched resource",
    ["reason"],
)
