"""Unit tests for clusterupdater.reconciler.loop: Reconciler and ControlLoop."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from clusterupdater.cache.reflector import CacheError, ClusterVersionReflector
from clusterupdater.models.cluster_version import ClusterVersion, ResourceDecodeError
from clusterupdater.reconciler.loop import ControlLoop, CycleOutcome, Reconciler
from clusterupdater.reconciler.submitter import SubmitError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw(
    available: list[dict[str, Any]] | None = None,
    history: list[dict[str, Any]] | None = None,
    with_status: bool = True,
    name: str = "version",
) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "apiVersion": "config.openshift.io/v1",
        "kind": "ClusterVersion",
        "metadata": {"name": name, "resourceVersion": "10"},
        "spec": {},
    }
    if with_status:
        status: dict[str, Any] = {"history": history or []}
        if available is not None:
            status["availableUpdates"] = available
        raw["status"] = status
    return raw


def _candidate(version: str, force: bool = False) -> dict[str, Any]:
    return {"version": version, "image": f"quay.io/openshift-release-dev/ocp-release:{version}", "force": force}


class _FakeCache:
    """In-memory stand-in for ClusterVersionReflector."""

    def __init__(self, raws: list[dict[str, Any]] | None = None) -> None:
        self.raws = raws or []
        self.refresh_calls = 0
        self.refresh_error: Exception | None = None
        self.read_error: Exception | None = None

    async def refresh(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error

    def read_all(self) -> list[ClusterVersion]:
        if self.read_error is not None:
            raise self.read_error
        return [ClusterVersion.from_dict(r) for r in self.raws]


def _make_reconciler(cache: _FakeCache, force: bool = False) -> tuple[Reconciler, AsyncMock]:
    submitter = MagicMock()
    submitter.submit = AsyncMock()
    return Reconciler(cache, submitter, force=force), submitter.submit


# ===========================================================================
# Reconciler
# ===========================================================================


class TestReconcileOnce:
    async def test_requests_highest_available_version(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.1.0"), _candidate("4.2.0"), _candidate("4.1.5")])])
        reconciler, submit = _make_reconciler(cache)

        outcome = await reconciler.reconcile_once()

        assert outcome is CycleOutcome.SUBMITTED
        submit.assert_awaited_once()
        patch_body = submit.await_args.args[0]
        assert patch_body["spec"]["desiredUpdate"]["version"] == "4.2.0"
        assert "status" not in patch_body

    async def test_in_progress_update_suppresses_submission(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0")], history=[{"completionTime": None}])])
        reconciler, submit = _make_reconciler(cache)

        outcome = await reconciler.reconcile_once()

        assert outcome is CycleOutcome.IN_PROGRESS
        submit.assert_not_awaited()

    async def test_absent_status_is_a_no_op(self) -> None:
        reconciler, submit = _make_reconciler(_FakeCache([_raw(with_status=False)]))

        assert await reconciler.reconcile_once() is CycleOutcome.NOTHING_TO_DO
        submit.assert_not_awaited()

    async def test_absent_available_updates_is_a_no_op(self) -> None:
        reconciler, submit = _make_reconciler(_FakeCache([_raw(available=None)]))

        assert await reconciler.reconcile_once() is CycleOutcome.NOTHING_TO_DO
        submit.assert_not_awaited()

    async def test_empty_available_updates_is_a_no_op(self) -> None:
        reconciler, submit = _make_reconciler(_FakeCache([_raw(available=[])]))

        assert await reconciler.reconcile_once() is CycleOutcome.NOTHING_TO_DO
        submit.assert_not_awaited()

    async def test_force_flag_overrides_candidate(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0", force=False)])])
        reconciler, submit = _make_reconciler(cache, force=True)

        await reconciler.reconcile_once()

        assert submit.await_args.args[0]["spec"]["desiredUpdate"]["force"] is True

    async def test_unforced_controller_clears_candidate_force(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0", force=True)])])
        reconciler, submit = _make_reconciler(cache, force=False)

        await reconciler.reconcile_once()

        assert submit.await_args.args[0]["spec"]["desiredUpdate"]["force"] is False

    async def test_empty_cache_skips_cycle(self) -> None:
        cache = _FakeCache([])
        reconciler, submit = _make_reconciler(cache)

        assert await reconciler.reconcile_once() is CycleOutcome.NO_RESOURCE
        submit.assert_not_awaited()

    async def test_last_resource_wins(self) -> None:
        cache = _FakeCache(
            [
                _raw(available=[_candidate("4.9.0")], name="first"),
                _raw(available=[_candidate("4.2.0")], name="second"),
            ]
        )
        reconciler, submit = _make_reconciler(cache)

        await reconciler.reconcile_once()

        patch_body = submit.await_args.args[0]
        assert patch_body["metadata"]["name"] == "second"
        assert patch_body["spec"]["desiredUpdate"]["version"] == "4.2.0"

    async def test_refresh_failure_still_reads_cached_state(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0")])])
        cache.refresh_error = CacheError("connection refused")
        reconciler, submit = _make_reconciler(cache)

        assert await reconciler.reconcile_once() is CycleOutcome.SUBMITTED
        submit.assert_awaited_once()

    async def test_read_failure_ends_cycle(self) -> None:
        cache = _FakeCache()
        cache.read_error = ResourceDecodeError("invalid update version 'latest'")
        reconciler, submit = _make_reconciler(cache)

        assert await reconciler.reconcile_once() is CycleOutcome.READ_FAILED
        submit.assert_not_awaited()

    async def test_submit_failure_is_reported_not_raised(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0")])])
        reconciler, submit = _make_reconciler(cache)
        submit.side_effect = SubmitError("409 Conflict")

        assert await reconciler.reconcile_once() is CycleOutcome.SUBMIT_FAILED

    async def test_refresh_called_once_per_cycle(self) -> None:
        cache = _FakeCache([_raw(available=[])])
        reconciler, _ = _make_reconciler(cache)

        await reconciler.reconcile_once()
        await reconciler.reconcile_once()

        assert cache.refresh_calls == 2

    async def test_identical_state_yields_identical_requests(self) -> None:
        cache = _FakeCache([_raw(available=[_candidate("4.2.0"), _candidate("4.2.0"), _candidate("4.1.0")])])
        reconciler, submit = _make_reconciler(cache)

        await reconciler.reconcile_once()
        await reconciler.reconcile_once()

        first, second = (call.args[0] for call in submit.await_args_list)
        assert first == second

    async def test_trace_dumps_status(self) -> None:
        cache = _FakeCache([_raw(available=[])])
        reconciler, _ = _make_reconciler(cache)
        reconciler._log = MagicMock()

        with patch("clusterupdater.reconciler.loop.is_trace_enabled", return_value=True):
            await reconciler.reconcile_once()

        events = [c.args[0] for c in reconciler._log.debug.call_args_list]
        assert "cluster_version_status" in events

    async def test_stalled_watch_does_not_block_cycle(self) -> None:
        api = MagicMock()
        api.list_cluster_custom_object = AsyncMock(
            return_value={"items": [_raw(available=[_candidate("4.2.0")])], "metadata": {"resourceVersion": "10"}}
        )
        reflector = ClusterVersionReflector(api, name="version", poll_timeout_s=1)
        await reflector.init()

        async def _stream(func: Any, *args: Any, **kwargs: Any):  # type: ignore[no-untyped-def]
            await asyncio.Event().wait()
            yield {}

        w = MagicMock()
        w.stream = _stream
        w.close = AsyncMock()
        submitter = MagicMock()
        submitter.submit = AsyncMock()
        reconciler = Reconciler(reflector, submitter, force=False)

        with (
            patch("clusterupdater.cache.reflector._WATCH_GRACE_S", 0.1),
            patch("clusterupdater.cache.reflector.watch.Watch", return_value=w),
        ):
            outcome = await asyncio.wait_for(reconciler.reconcile_once(), timeout=3)

        assert outcome is CycleOutcome.SUBMITTED
        submitter.submit.assert_awaited_once()


# ===========================================================================
# ControlLoop
# ===========================================================================


class TestControlLoop:
    async def test_runs_until_stopped(self) -> None:
        reconciler = MagicMock()
        loop = ControlLoop(reconciler, min_interval_s=0.0)

        async def _cycle() -> CycleOutcome:
            if loop.cycles == 2:
                loop._running = False
            return CycleOutcome.NOTHING_TO_DO

        reconciler.reconcile_once = AsyncMock(side_effect=_cycle)
        await loop.run_forever()

        assert reconciler.reconcile_once.await_count == 3
        assert loop.cycles == 3

    async def test_crashing_cycle_does_not_end_loop(self) -> None:
        reconciler = MagicMock()
        loop = ControlLoop(reconciler, min_interval_s=0.0)
        calls = 0

        async def _cycle() -> CycleOutcome:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            loop._running = False
            return CycleOutcome.SUBMITTED

        reconciler.reconcile_once = AsyncMock(side_effect=_cycle)
        await loop.run_forever()

        assert calls == 2

    async def test_min_interval_enforced_between_fast_cycles(self) -> None:
        reconciler = MagicMock()
        loop = ControlLoop(reconciler, min_interval_s=5.0)

        async def _cycle() -> CycleOutcome:
            if loop.cycles == 1:
                loop._running = False
            return CycleOutcome.READ_FAILED

        reconciler.reconcile_once = AsyncMock(side_effect=_cycle)
        with patch("clusterupdater.reconciler.loop.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await loop.run_forever()

        mock_sleep.assert_awaited_once()
        assert 0 < mock_sleep.await_args.args[0] <= 5.0

    async def test_start_and_stop(self) -> None:
        reconciler = MagicMock()
        reconciler.reconcile_once = AsyncMock(return_value=CycleOutcome.NOTHING_TO_DO)
        loop = ControlLoop(reconciler, min_interval_s=0.01)

        await loop.start()
        await asyncio.sleep(0.05)
        await loop.stop()

        assert loop.running is False
        assert reconciler.reconcile_once.await_count >= 1

    async def test_start_is_idempotent(self) -> None:
        reconciler = MagicMock()
        reconciler.reconcile_once = AsyncMock(return_value=CycleOutcome.NOTHING_TO_DO)
        loop = ControlLoop(reconciler, min_interval_s=0.01)

        await loop.start()
        task = loop._task
        await loop.start()

        assert loop._task is task
        await loop.stop()
