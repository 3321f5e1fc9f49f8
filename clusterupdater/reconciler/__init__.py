"""Reconciliation core for clusterupdater.

Submodules:
    policy      -- Pure decision functions: in-progress detection, selection, patch construction.
    submitter   -- Write path: merge-patches spec.desiredUpdate on the ClusterVersion.
    loop        -- One reconciliation cycle and the control loop that repeats it.
"""

from clusterupdater.reconciler.loop import ControlLoop, CycleOutcome, Reconciler
from clusterupdater.reconciler.submitter import SubmitError, UpdateSubmitter

__all__ = ["ControlLoop", "CycleOutcome", "Reconciler", "SubmitError", "UpdateSubmitter"]
