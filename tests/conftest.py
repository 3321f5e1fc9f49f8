"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Keep structlog configuration from leaking between tests.

    setup_logging() binds structlog to the current sys.stderr, which under
    capsys is a capture stream closed once that test ends.
    """
    yield
    structlog.reset_defaults()
