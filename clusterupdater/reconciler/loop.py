"""Reconciliation cycle and the control loop that repeats it.

One cycle is refresh -> read -> decide -> submit.  Every failure inside a
cycle is logged and ends that cycle; the next cycle re-derives everything
from fresh cache state, which is the only form of retry.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
from typing import Any, Protocol

from clusterupdater.cache.reflector import CacheError
from clusterupdater.models.cluster_version import ClusterVersion
from clusterupdater.observability.logging import get_logger, is_trace_enabled
from clusterupdater.observability.metrics import (
    desired_version_info,
    reconcile_cycles_total,
    update_requests_total,
)
from clusterupdater.reconciler.policy import ReconcileState, build_patch, observe, plan_update
from clusterupdater.reconciler.submitter import SubmitError

_DEFAULT_MIN_INTERVAL_S: float = 1.0


class LiveViewCache(Protocol):
    async def refresh(self) -> None: ...

    def read_all(self) -> list[ClusterVersion]: ...


class Submitter(Protocol):
    async def submit(self, patch: dict[str, Any]) -> None: ...


class CycleOutcome(StrEnum):
    """How a single reconciliation cycle ended."""

    READ_FAILED = "read_failed"
    NO_RESOURCE = "no_resource"
    IN_PROGRESS = "in_progress"
    NOTHING_TO_DO = "nothing_to_do"
    SUBMITTED = "submitted"
    SUBMIT_FAILED = "submit_failed"


class Reconciler:
    """Runs one reconciliation cycle against a cache and a submitter.

    Holds no state between cycles beyond its collaborators.
    """

    def __init__(self, cache: LiveViewCache, submitter: Submitter, force: bool = False) -> None:
        self._cache = cache
        self._submitter = submitter
        self._force = force
        self._log = get_logger("reconciler")

    async def reconcile_once(self) -> CycleOutcome:
        outcome = await self._reconcile()
        reconcile_cycles_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _reconcile(self) -> CycleOutcome:
        try:
            await self._cache.refresh()
        except CacheError as exc:
            # Stale reads are acceptable; carry on with what the cache holds.
            self._log.error("cache_refresh_failed", error=str(exc))

        try:
            versions = self._cache.read_all()
        except Exception as exc:
            self._log.error("cluster_version_read_failed", error=str(exc))
            return CycleOutcome.READ_FAILED

        # The watch is filtered to a single name; if more than one shows up
        # the last one returned is used.
        resource = versions[-1] if versions else None

        state = observe(resource)
        if state is ReconcileState.NO_RESOURCE:
            self._log.error("cluster_version_not_found")
            return CycleOutcome.NO_RESOURCE
        assert resource is not None

        if state is ReconcileState.UPDATE_IN_PROGRESS:
            self._log.debug("waiting_for_update_to_complete")
            return CycleOutcome.IN_PROGRESS

        if is_trace_enabled():
            self._log.debug("cluster_version_status", status=repr(resource.status))

        update = plan_update(resource, self._force)
        if update is None:
            self._log.debug("no_available_updates")
            return CycleOutcome.NOTHING_TO_DO

        self._log.info("attempting_update", version=str(update.version), image=update.image, force=update.force)
        try:
            await self._submitter.submit(build_patch(resource, update))
        except SubmitError as exc:
            update_requests_total.labels(result="failed").inc()
            self._log.error("apply_update_failed", version=str(update.version), error=str(exc))
            return CycleOutcome.SUBMIT_FAILED

        update_requests_total.labels(result="submitted").inc()
        desired_version_info.clear()
        desired_version_info.labels(version=str(update.version)).set(1)
        return CycleOutcome.SUBMITTED


class ControlLoop:
    """Runs :class:`Reconciler` cycles back to back until stopped.

    Lifecycle::

        loop = ControlLoop(reconciler, min_interval_s=1.0)
        await loop.start()
        # ... runs until stop() is called or the task is cancelled
        await loop.stop()
    """

    def __init__(self, reconciler: Reconciler, min_interval_s: float = _DEFAULT_MIN_INTERVAL_S) -> None:
        self._reconciler = reconciler
        self._min_interval_s = min_interval_s
        self._log = get_logger("reconciler.loop")

        self._running: bool = False
        self._task: asyncio.Task[None] | None = None
        self.cycles: int = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start :meth:`run_forever` as a background asyncio task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run_forever(), name="control-loop")
        self._log.info("control_loop_started", min_interval_s=self._min_interval_s)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to exit."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._log.info("control_loop_stopped", cycles=self.cycles)

    async def wait(self) -> None:
        """Block until the background task finishes."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def run_forever(self) -> None:
        """Run cycles until :attr:`running` is cleared.

        A cycle that raises is logged and does not end the loop.  Consecutive
        cycle starts are at least ``min_interval_s`` apart.
        """
        self._running = True
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            try:
                await self._reconciler.reconcile_once()
            except Exception as exc:
                reconcile_cycles_total.labels(outcome="crashed").inc()
                self._log.error("reconcile_cycle_crashed", error=str(exc), exc_info=True)
            self.cycles += 1

            delay = self._min_interval_s - (loop.time() - started)
            if delay > 0 and self._running:
                await asyncio.sleep(delay)
