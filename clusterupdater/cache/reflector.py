"""List+watch mirror of the ClusterVersion singleton.

The reflector keeps an eventually-consistent local copy of every
ClusterVersion matching ``metadata.name==<name>``:

- :meth:`ClusterVersionReflector.init` performs the initial list.  Failure
  here is fatal to the process.
- :meth:`ClusterVersionReflector.refresh` opens one watch stream resuming
  from the last seen resourceVersion and applies events until the server
  closes it after ``poll_timeout_s``.  This is what paces the control loop.
  A stream still open ``_WATCH_GRACE_S`` past that is abandoned.
- :meth:`ClusterVersionReflector.read_all` decodes the mirrored objects.

A ``410 Gone`` (resourceVersion too old) triggers a relist that replaces the
store.  Any other failure raises :class:`CacheError` and leaves the store as
it was after the last applied event.
"""

from __future__ import annotations

import asyncio
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from clusterupdater.models.cluster_version import (
    CLUSTER_VERSION_GROUP,
    CLUSTER_VERSION_NAME,
    CLUSTER_VERSION_PLURAL,
    CLUSTER_VERSION_VERSION,
    ClusterVersion,
)
from clusterupdater.observability.logging import get_logger
from clusterupdater.observability.metrics import cache_refresh_errors_total, cache_relists_total

_DEFAULT_POLL_TIMEOUT_S: int = 30
_HTTP_GONE: int = 410
# Client-side bounds; the server-side timeout_seconds does not cover a
# half-open connection.
_WATCH_GRACE_S: float = 10.0
_LIST_BUDGET_S: float = 30.0


class CacheError(Exception):
    """Raised when the cache cannot list or watch the resource."""


class ClusterVersionReflector:
    """Local mirror of the watched ClusterVersion resource(s).

    Example::

        reflector = ClusterVersionReflector(CustomObjectsApi())
        await reflector.init()
        await reflector.refresh()
        versions = reflector.read_all()
    """

    def __init__(
        self,
        api: Any,
        name: str = CLUSTER_VERSION_NAME,
        poll_timeout_s: int = _DEFAULT_POLL_TIMEOUT_S,
    ) -> None:
        """Initialise the reflector.

        Args:
            api: A kubernetes_asyncio ``CustomObjectsApi`` instance.
            name: Name of the ClusterVersion to mirror.
            poll_timeout_s: Server-side timeout for each refresh watch.
        """
        self._api = api
        self._name = name
        self._poll_timeout_s = poll_timeout_s
        self._log = get_logger("cache.reflector")

        # name -> raw object, in first-seen order
        self._store: dict[str, dict[str, Any]] = {}
        self._resource_version: str = ""

    @property
    def resource_version(self) -> str:
        return self._resource_version

    @property
    def _watch_budget_s(self) -> float:
        return self._poll_timeout_s + _WATCH_GRACE_S

    @property
    def field_selector(self) -> str:
        return f"metadata.name=={self._name}"

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Perform the initial list.

        Raises:
            CacheError: if the list call fails.
        """
        try:
            await self._relist()
        except ApiException as exc:
            raise CacheError(f"initial list of {CLUSTER_VERSION_PLURAL} failed: {exc.status} {exc.reason}") from exc
        except TimeoutError as exc:
            raise CacheError(f"initial list of {CLUSTER_VERSION_PLURAL} timed out after {_LIST_BUDGET_S}s") from exc
        except Exception as exc:
            raise CacheError(f"initial list of {CLUSTER_VERSION_PLURAL} failed: {exc}") from exc
        self._log.info("reflector_initialised", name=self._name, resource_version=self._resource_version)

    async def refresh(self) -> None:
        """Apply watch events that arrived since the last refresh.

        Raises:
            CacheError: on any failure other than ``410 Gone``.
        """
        try:
            await self._watch_once()
        except ApiException as exc:
            if exc.status == _HTTP_GONE:
                await self._recover_gone()
                return
            cache_refresh_errors_total.inc()
            raise CacheError(f"watch failed: {exc.status} {exc.reason}") from exc
        except TimeoutError as exc:
            cache_refresh_errors_total.inc()
            raise CacheError(f"watch stalled: stream still open after {self._watch_budget_s}s") from exc
        except Exception as exc:
            cache_refresh_errors_total.inc()
            raise CacheError(f"watch failed: {exc}") from exc

    def read_all(self) -> list[ClusterVersion]:
        """Return the mirrored resources, oldest first.

        Raises:
            ResourceDecodeError: if a mirrored document is malformed.
        """
        return [ClusterVersion.from_dict(raw) for raw in self._store.values()]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _relist(self) -> None:
        """List the resource from scratch and replace the store."""
        async with asyncio.timeout(_LIST_BUDGET_S):
            result = await self._api.list_cluster_custom_object(
                CLUSTER_VERSION_GROUP,
                CLUSTER_VERSION_VERSION,
                CLUSTER_VERSION_PLURAL,
                field_selector=self.field_selector,
            )
        items = result.get("items") or []
        store: dict[str, dict[str, Any]] = {}
        for item in items:
            if isinstance(item, dict):
                store[_object_name(item)] = item

        metadata = result.get("metadata") or {}
        self._store = store
        self._resource_version = str(metadata.get("resourceVersion", "") or "")
        self._log.debug("reflector_listed", count=len(store), resource_version=self._resource_version)

    async def _recover_gone(self) -> None:
        self._log.warning("watch_gone_410", name=self._name, resource_version=self._resource_version)
        cache_relists_total.labels(reason="410").inc()
        self._resource_version = ""
        try:
            await self._relist()
        except ApiException as exc:
            cache_refresh_errors_total.inc()
            raise CacheError(f"relist failed: {exc.status} {exc.reason}") from exc
        except TimeoutError as exc:
            cache_refresh_errors_total.inc()
            raise CacheError(f"relist timed out after {_LIST_BUDGET_S}s") from exc
        except Exception as exc:
            cache_refresh_errors_total.inc()
            raise CacheError(f"relist failed: {exc}") from exc

    async def _watch_once(self) -> None:
        """Open one bounded watch stream and apply every event it yields."""
        kwargs: dict[str, Any] = {
            "field_selector": self.field_selector,
            "timeout_seconds": self._poll_timeout_s,
            "allow_watch_bookmarks": True,
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        w = watch.Watch()
        try:
            async with asyncio.timeout(self._watch_budget_s):
                async for raw_event in w.stream(
                    self._api.list_cluster_custom_object,
                    CLUSTER_VERSION_GROUP,
                    CLUSTER_VERSION_VERSION,
                    CLUSTER_VERSION_PLURAL,
                    **kwargs,
                ):
                    self._apply_event(raw_event)
        finally:
            await w.close()

    def _apply_event(self, raw_event: dict[str, Any]) -> None:
        event_type = str(raw_event.get("type", ""))
        raw = raw_event.get("raw_object")
        if not isinstance(raw, dict):
            raw = raw_event.get("object")
        if not isinstance(raw, dict):
            raw = {}

        if event_type == "ERROR":
            code = raw.get("code")
            raise ApiException(status=code if isinstance(code, int) else 500, reason=str(raw.get("message", "")))

        rv = _extract_rv(raw)
        if event_type == "BOOKMARK":
            if rv:
                self._resource_version = rv
            return

        name = _object_name(raw)
        if event_type in ("ADDED", "MODIFIED"):
            self._store[name] = raw
        elif event_type == "DELETED":
            self._store.pop(name, None)
        else:
            self._log.debug("watch_event_ignored", event_type=event_type)
            return

        if rv:
            self._resource_version = rv
        self._log.debug("watch_event_applied", event_type=event_type, name=name, resource_version=rv)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _extract_rv(raw: dict[str, Any]) -> str:
    metadata = raw.get("metadata")
    if isinstance(metadata, dict):
        return str(metadata.get("resourceVersion", "") or "")
    return ""


def _object_name(raw: dict[str, Any]) -> str:
    metadata = raw.get("metadata")
    if isinstance(metadata, dict):
        return str(metadata.get("name", ""))
    return ""
