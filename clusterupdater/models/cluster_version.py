"""ClusterVersion resource data structures.

Snapshots of the ``config.openshift.io/v1`` ClusterVersion singleton, decoded
from the raw JSON dicts held by the live-view cache.  They are rebuilt every
reconciliation cycle and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import semver

from clusterupdater.observability.logging import get_logger

CLUSTER_VERSION_GROUP: str = "config.openshift.io"
CLUSTER_VERSION_VERSION: str = "v1"
CLUSTER_VERSION_PLURAL: str = "clusterversions"
CLUSTER_VERSION_NAME: str = "version"


class ResourceDecodeError(ValueError):
    """Raised when a ClusterVersion document cannot be decoded."""


@dataclass(frozen=True, order=True)
class ClusterUpdate:
    """A candidate (or requested) cluster update.

    Equality and ordering use ``version`` only: two updates with the same
    version but different images compare equal.
    """

    version: semver.Version
    image: str = field(default="", compare=False)
    force: bool = field(default=False, compare=False)

    @classmethod
    def from_dict(cls, raw: Any) -> ClusterUpdate:
        if not isinstance(raw, dict):
            raise ResourceDecodeError(f"update must be an object, got {type(raw).__name__}")
        try:
            version = semver.Version.parse(str(raw.get("version", "")))
        except ValueError as exc:
            raise ResourceDecodeError(f"invalid update version {raw.get('version')!r}") from exc
        return cls(
            version=version,
            image=str(raw.get("image") or ""),
            force=bool(raw.get("force", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"version": str(self.version), "image": self.image, "force": self.force}


@dataclass(frozen=True)
class HistoricalEntry:
    """One entry of ``status.history``; ``completion_time`` is None while in progress."""

    completion_time: datetime | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> HistoricalEntry:
        if not isinstance(raw, dict):
            raise ResourceDecodeError(f"history entry must be an object, got {type(raw).__name__}")
        value = raw.get("completionTime")
        if value is None:
            return cls()
        try:
            return cls(completion_time=datetime.fromisoformat(str(value)))
        except ValueError as exc:
            raise ResourceDecodeError(f"invalid completionTime {value!r}") from exc


@dataclass(frozen=True)
class ClusterVersionSpec:
    desired_update: ClusterUpdate | None = None


@dataclass(frozen=True)
class ClusterVersionStatus:
    """Server-managed status.  ``available_updates`` is None when the key is absent."""

    available_updates: list[ClusterUpdate] | None = None
    history: list[HistoricalEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ClusterVersionStatus:
        updates_raw = raw.get("availableUpdates")
        available: list[ClusterUpdate] | None = None
        if updates_raw is not None:
            if not isinstance(updates_raw, list):
                raise ResourceDecodeError("status.availableUpdates must be a list")
            available = [ClusterUpdate.from_dict(u) for u in updates_raw]

        history_raw = raw.get("history") or []
        if not isinstance(history_raw, list):
            raise ResourceDecodeError("status.history must be a list")
        return cls(
            available_updates=available,
            history=[HistoricalEntry.from_dict(h) for h in history_raw],
        )


@dataclass(frozen=True)
class ClusterVersion:
    """Snapshot of the ClusterVersion resource.

    ``metadata`` is kept as the raw dict so that identity fields round-trip
    into patches unchanged.
    """

    api_version: str
    kind: str
    metadata: dict[str, Any]
    spec: ClusterVersionSpec
    status: ClusterVersionStatus | None = None

    @property
    def name(self) -> str:
        return str(self.metadata.get("name", ""))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ClusterVersion:
        """Decode a raw ClusterVersion document.

        Raises:
            ResourceDecodeError: if any field has the wrong shape or an
                unparseable version/timestamp.
        """
        if not isinstance(raw, dict):
            raise ResourceDecodeError(f"ClusterVersion must be an object, got {type(raw).__name__}")

        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ResourceDecodeError("metadata must be an object")

        spec_raw = raw.get("spec") or {}
        if not isinstance(spec_raw, dict):
            raise ResourceDecodeError("spec must be an object")
        spec = ClusterVersionSpec(desired_update=_decode_desired_update(spec_raw.get("desiredUpdate")))

        status_raw = raw.get("status")
        status: ClusterVersionStatus | None = None
        if status_raw is not None:
            if not isinstance(status_raw, dict):
                raise ResourceDecodeError("status must be an object")
            status = ClusterVersionStatus.from_dict(status_raw)

        return cls(
            api_version=str(raw.get("apiVersion", f"{CLUSTER_VERSION_GROUP}/{CLUSTER_VERSION_VERSION}")),
            kind=str(raw.get("kind", "ClusterVersion")),
            metadata=metadata,
            spec=spec,
            status=status,
        )


def _decode_desired_update(raw: Any) -> ClusterUpdate | None:
    # Image-only requests carry no semver; they decode as absent.
    if raw is None:
        return None
    try:
        return ClusterUpdate.from_dict(raw)
    except ResourceDecodeError as exc:
        get_logger("models.cluster_version").debug("desired_update_undecodable", error=str(exc))
        return None
