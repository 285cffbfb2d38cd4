"""Shared fixtures: every test gets its own terse home and a clean environment."""

import logging

import pytest

TERSE_ENV_VARS = [
    "TERSE_ENABLED",
    "TERSE_MODE",
    "TERSE_PROFILE",
    "TERSE_SAFE_MODE",
    "TERSE_SMART_PATH",
    "TERSE_SMART_PATH_MODEL",
    "TERSE_SMART_PATH_URL",
    "TERSE_SMART_PATH_TIMEOUT_MS",
]


@pytest.fixture(autouse=True)
def terse_home(tmp_path, monkeypatch):
    """Point TERSE_HOME at a temporary directory and run from a clean cwd."""
    home = tmp_path / "terse-home"
    workdir = tmp_path / "work"
    workdir.mkdir()
    for name in TERSE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TERSE_HOME", str(home))
    monkeypatch.chdir(workdir)
    return home


@pytest.fixture(autouse=True)
def restore_terse_logger():
    """Leave the `terse` logger as it was (CLI commands configure it)."""
    root = logging.getLogger("terse")
    saved = (list(root.handlers), root.level, root.propagate)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    handlers, level, propagate = saved
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = propagate
