"""Write path for desiredUpdate requests."""

from __future__ import annotations

import asyncio
from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException

from clusterupdater.models.cluster_version import (
    CLUSTER_VERSION_GROUP,
    CLUSTER_VERSION_NAME,
    CLUSTER_VERSION_PLURAL,
    CLUSTER_VERSION_VERSION,
)
from clusterupdater.observability.logging import get_logger

_MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"
_PATCH_BUDGET_S: float = 30.0


class SubmitError(Exception):
    """Raised when the patch request is rejected or cannot be sent."""


class UpdateSubmitter:
    """Sends merge patches to the ClusterVersion singleton by name."""

    def __init__(self, api: Any, name: str = CLUSTER_VERSION_NAME) -> None:
        """Initialise the submitter.

        Args:
            api: A kubernetes_asyncio ``CustomObjectsApi`` instance.
            name: Name of the ClusterVersion to patch.
        """
        self._api = api
        self._name = name
        self._log = get_logger("reconciler.submitter")

    async def submit(self, patch: dict[str, Any]) -> None:
        """Patch the named ClusterVersion with ``patch``.

        Raises:
            SubmitError: if the API call fails.
        """
        try:
            async with asyncio.timeout(_PATCH_BUDGET_S):
                await self._api.patch_cluster_custom_object(
                    CLUSTER_VERSION_GROUP,
                    CLUSTER_VERSION_VERSION,
                    CLUSTER_VERSION_PLURAL,
                    self._name,
                    patch,
                    _content_type=_MERGE_PATCH_CONTENT_TYPE,
                )
        except ApiException as exc:
            raise SubmitError(f"patch of {CLUSTER_VERSION_PLURAL}/{self._name} failed: {exc.status} {exc.reason}") from exc
        except TimeoutError as exc:
            raise SubmitError(f"patch of {CLUSTER_VERSION_PLURAL}/{self._name} timed out after {_PATCH_BUDGET_S}s") from exc
        except Exception as exc:
            raise SubmitError(f"patch of {CLUSTER_VERSION_PLURAL}/{self._name} failed: {exc}") from exc
        self._log.debug("patch_submitted", name=self._name)
