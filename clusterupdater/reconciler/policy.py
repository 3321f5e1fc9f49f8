"""Decision policy for the update reconciler.

Everything here is a pure function of one ClusterVersion snapshot and the
controller's force flag, so re-running on the same snapshot always yields the
same decision.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from clusterupdater.models.cluster_version import ClusterUpdate, ClusterVersion


class ReconcileState(StrEnum):
    """State derived from a snapshot at the start of each cycle."""

    NO_RESOURCE = "no_resource"
    UPDATE_IN_PROGRESS = "update_in_progress"
    IDLE = "idle"


def observe(resource: ClusterVersion | None) -> ReconcileState:
    """Classify a snapshot.

    An update is in progress when the most recent history entry has no
    completion time.
    """
    if resource is None:
        return ReconcileState.NO_RESOURCE
    status = resource.status
    if status is not None and status.history and status.history[0].completion_time is None:
        return ReconcileState.UPDATE_IN_PROGRESS
    return ReconcileState.IDLE


def select_update(candidates: Iterable[ClusterUpdate] | None) -> ClusterUpdate | None:
    """Return the highest-versioned candidate, or None if there are none.

    Ties keep the first candidate seen.
    """
    if candidates is None:
        return None
    return max(candidates, default=None)


def plan_update(resource: ClusterVersion, force: bool) -> ClusterUpdate | None:
    """Pick the update to request, with ``force`` set to the controller's policy."""
    if resource.status is None:
        return None
    selected = select_update(resource.status.available_updates)
    if selected is None:
        return None
    return dataclasses.replace(selected, force=force)


def build_patch(resource: ClusterVersion, update: ClusterUpdate) -> dict[str, Any]:
    """Build the merge-patch body requesting ``update``.

    Type and identity metadata are copied from the snapshot; ``status`` is
    never included.
    """
    return {
        "apiVersion": resource.api_version,
        "kind": resource.kind,
        "metadata": dict(resource.metadata),
        "spec": {"desiredUpdate": update.to_dict()},
    }
