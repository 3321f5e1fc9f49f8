"""Application bootstrap for clusterupdater.

Wires the components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> K8s client -> reflector -> metrics
              -> control loop

Only the K8s client and the reflector's initial list are mandatory; if either
fails the process exits non-zero.  Everything after startup is self-healing.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from clusterupdater.config import load_config
from clusterupdater.models.config import UpdaterConfig
from clusterupdater.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from clusterupdater.cache.reflector import ClusterVersionReflector
    from clusterupdater.reconciler.loop import ControlLoop

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class UpdaterApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: UpdaterConfig | None = None) -> None:
        self.config: UpdaterConfig | None = config

        self._api_client: Any | None = None
        self._custom_api: Any | None = None
        self._reflector: ClusterVersionReflector | None = None
        self._loop: ControlLoop | None = None

        self._running = False
        self._log: FilteringBoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("clusterupdater starting", version=_updater_version(), force=self.config.force)

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Live-view cache ------------------------------------------
        await self._start_reflector()

        # --- 5. Metrics exporter -----------------------------------------
        self._start_metrics()

        # --- 6. Control loop ---------------------------------------------
        await self._start_control_loop()

        self._running = True
        self._log.info("clusterupdater started", resource=self.config.cluster.resource_name)

    async def _start_k8s_client(self) -> None:
        """Build the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
            self._custom_api = k8s_client.CustomObjectsApi(self._api_client)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_reflector(self) -> None:
        """Create the reflector and perform the initial list."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting reflector")
        try:
            from clusterupdater.cache import ClusterVersionReflector

            reflector = ClusterVersionReflector(
                self._custom_api,
                name=self.config.cluster.resource_name,
                poll_timeout_s=self.config.loop.poll_timeout_seconds,
            )
            await reflector.init()
            self._reflector = reflector
        except Exception as exc:
            raise _ComponentError("reflector", exc) from exc

    def _start_metrics(self) -> None:
        """Expose Prometheus metrics over HTTP when a port is configured."""
        assert self._log is not None
        assert self.config is not None
        port = self.config.metrics.port
        if not port:
            self._log.debug("metrics exporter disabled")
            return
        try:
            from prometheus_client import start_http_server

            start_http_server(port)
            self._log.info("metrics exporter listening", port=port)
        except Exception as exc:
            # Metrics are optional; the controller keeps running without them.
            self._log.warning("metrics exporter failed to start", port=port, error=str(exc))

    async def _start_control_loop(self) -> None:
        assert self.config is not None
        from clusterupdater.reconciler import ControlLoop, Reconciler, UpdateSubmitter

        assert self._reflector is not None
        reconciler = Reconciler(
            self._reflector,
            UpdateSubmitter(self._custom_api, name=self.config.cluster.resource_name),
            force=self.config.force,
        )
        self._loop = ControlLoop(reconciler, min_interval_s=self.config.loop.min_interval_seconds)
        await self._loop.start()

    # ------------------------------------------------------------------
    # Running / shutdown
    # ------------------------------------------------------------------

    async def wait(self) -> None:
        """Block until the control loop exits."""
        if self._loop is not None:
            await self._loop.wait()

    async def stop(self) -> None:
        """Stop components in reverse startup order."""
        log = self._log or get_logger("app")
        self._running = False

        if self._loop is not None:
            try:
                await asyncio.wait_for(self._loop.stop(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component stop timed out", component="control_loop", timeout=_SHUTDOWN_GRACE_SECONDS)
            self._loop = None

        self._reflector = None
        await self._stop_k8s_client()
        log.info("clusterupdater stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None
        self._custom_api = None


def _updater_version() -> str:
    from clusterupdater import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: UpdaterConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = UpdaterApp(config)
    loop = asyncio.get_running_loop()

    shutdown_task: asyncio.Task[None] | None = None

    def _request_shutdown() -> None:
        nonlocal shutdown_task
        if shutdown_task is not None:
            return
        shutdown_task = asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await app.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        if shutdown_task is not None:
            await shutdown_task
        if app._running:
            await app.stop()
