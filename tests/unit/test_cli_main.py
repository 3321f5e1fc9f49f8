"""Unit tests for clusterupdater.cli.main."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from clusterupdater import __version__
from clusterupdater.cli.main import cli
from clusterupdater.models.config import UpdaterConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "CLUSTERUPDATER_FORCE",
        "CLUSTERUPDATER_LOG_LEVEL",
        "CLUSTERUPDATER_POLL_TIMEOUT",
        "CLUSTERUPDATER_MIN_INTERVAL",
        "CLUSTERUPDATER_METRICS_PORT",
    ):
        monkeypatch.delenv(var, raising=False)


def _run(args: list[str]) -> tuple[int, str, UpdaterConfig | None]:
    """Invoke ``run`` with the app entrypoint mocked; return exit code, output and config."""
    runner = CliRunner()
    with patch("clusterupdater.app.main", new_callable=AsyncMock) as mock_main:
        result = runner.invoke(cli, ["run", *args])
    config = mock_main.await_args.args[0] if mock_main.await_args else None
    return result.exit_code, result.output, config


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


class TestVersionCommand:
    def test_prints_version(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
        assert "clusterupdater" in result.output


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_defaults(self) -> None:
        code, _, config = _run([])
        assert code == 0
        assert config is not None
        assert config.force is False
        assert config.log.level == "warning"

    def test_force_flag(self) -> None:
        _, _, config = _run(["--force"])
        assert config is not None
        assert config.force is True

    def test_force_from_env_not_cleared_without_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLUSTERUPDATER_FORCE", "true")
        _, _, config = _run([])
        assert config is not None
        assert config.force is True

    @pytest.mark.parametrize(
        ("flags", "level"),
        [(["-v"], "info"), (["-vv"], "debug"), (["-v", "-v", "-v"], "trace"), (["-vvvvv"], "trace")],
    )
    def test_verbosity_flags(self, flags: list[str], level: str) -> None:
        _, _, config = _run(flags)
        assert config is not None
        assert config.log.level == level

    def test_env_log_level_kept_without_verbosity(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLUSTERUPDATER_LOG_LEVEL", "debug")
        _, _, config = _run([])
        assert config is not None
        assert config.log.level == "debug"

    def test_loop_overrides(self) -> None:
        _, _, config = _run(["--poll-timeout", "10", "--interval", "2.5"])
        assert config is not None
        assert config.loop.poll_timeout_seconds == 10
        assert config.loop.min_interval_seconds == 2.5

    def test_poll_timeout_clamped(self) -> None:
        _, _, config = _run(["--poll-timeout", "9999"])
        assert config is not None
        assert config.loop.poll_timeout_seconds == 300

    def test_metrics_port_override(self) -> None:
        _, _, config = _run(["--metrics-port", "9100"])
        assert config is not None
        assert config.metrics.port == 9100

    def test_invalid_env_config_is_reported(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLUSTERUPDATER_LOG_LEVEL", "loud")
        code, output, config = _run([])
        assert code != 0
        assert "Invalid log level" in output
        assert config is None
