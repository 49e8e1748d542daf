"""Pytest configuration and fixtures for solbuild tests.

Restores stdout/stderr after each test; Rich live displays and the CLI tests
replace them, and a closed stream breaks pytest's capture teardown on recent
Python versions.
"""

import sys
import warnings

import pytest

if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _no_worker_override(monkeypatch):  # noqa: PT004
    """Keep a developer's SOLBUILD_MAX_WORKERS from leaking into tests."""
    monkeypatch.delenv("SOLBUILD_MAX_WORKERS", raising=False)
