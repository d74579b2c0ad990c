"""Shared pytest fixtures for bdh tests.

No test talks to a real bd binary or BeadHub server: processes go through
in-file fake runners and HTTP through ``httpx.MockTransport``.

Environment variables that would change settings are cleared for every
test so a developer's shell (or .env) cannot leak into assertions.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import structlog
import yaml

WORKSPACE_ID = "11111111-2222-3333-4444-555555555555"

_SETTINGS_ENV_VARS = (
    "BDH_BD_BIN",
    "BDH_GIT_BIN",
    "BDH_API_TIMEOUT_S",
    "BDH_EXPORT_TIMEOUT_S",
    "BDH_GIT_TIMEOUT_S",
    "BDH_READY_TIMEOUT_S",
    "BDH_RESERVE_TTL_SECONDS",
    "BDH_LOG_LEVEL",
    "BDH_LOG_JSON",
    "BEADHUB_URL",
    "BEADHUB_API_KEY",
    "BEADHUB_REPO_ORIGIN",
    "BEADHUB_SKIP_REPO_CHECK",
)


def workspace_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "workspace_id": WORKSPACE_ID,
        "beadhub_url": "http://beadhub.test",
        "project_slug": "demo",
        "repo_origin": "git@github.com:org/repo.git",
        "canonical_origin": "github.com/org/repo",
        "alias": "claude-1",
        "human_name": "Juan",
    }
    payload.update(overrides)
    return payload


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()


@pytest.fixture()
def repo_root(tmp_path: Path) -> Path:
    """A directory that looks like a git checkout (has a .git entry)."""
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture()
def write_workspace(repo_root: Path) -> Callable[..., Path]:
    """Write a .beadhub file into *repo_root*; keyword overrides replace fields."""

    def _write(directory: Path | None = None, **overrides: object) -> Path:
        target = (directory or repo_root) / ".beadhub"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(yaml.safe_dump(workspace_payload(**overrides)), "utf-8")
        return target

    return _write
