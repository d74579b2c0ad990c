"""Refuse to coordinate when a .beadhub file belongs to another repository.

A workspace file copied into a different checkout would otherwise claim,
reserve, and sync against the wrong project. The current origin comes from
``BEADHUB_REPO_ORIGIN`` or ``git remote get-url origin`` and is compared with
the workspace's ``canonical_origin``.
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlsplit

import structlog

from bdh.config.workspace import WorkspaceConfig
from bdh.infra.errors import ConfigError, ProcessError
from bdh.process.runner import ProcessRunner

logger = structlog.get_logger()

# git stderr fragments meaning "no repository or no origin here", not a failure.
_NO_ORIGIN_MARKERS = ("not a git repository", "No such remote", "No remote configured")
_SKIP_HINT = "set BEADHUB_SKIP_REPO_CHECK=1 to bypass"


def canonicalize_origin_url(origin: str) -> str:
    """``git@host:org/repo.git`` or ``https://host/org/repo`` to ``host/org/repo``.

    Returns "" for anything that does not name both a host and a path.
    """
    origin = origin.strip()
    if not origin:
        return ""

    if origin.startswith("git@"):
        host, sep, path = origin.partition(":")
        if not sep:
            return ""
        host = host.removeprefix("git@")
        path = path.strip("/").removesuffix(".git")
        if not host or not path:
            return ""
        return f"{host}/{path}"

    try:
        parts = urlsplit(origin)
    except ValueError:
        return ""
    host = parts.netloc.rpartition("@")[2].lower()
    path = parts.path.strip("/").removesuffix(".git")
    if not host or not path:
        return ""
    return f"{host}/{path}"


def read_git_origin(
    git: ProcessRunner, *, timeout: float | None = None, cwd: Path | None = None
) -> str | None:
    """The ``origin`` remote URL, or None when git or the remote is absent.

    Raises ConfigError for any other git failure.
    """
    try:
        result = git.run(["remote", "get-url", "origin"], timeout=timeout, cwd=cwd)
    except ProcessError as exc:
        if exc.code == "BINARY_NOT_FOUND":
            return None
        raise ConfigError(f"repo validation failed: {exc} ({_SKIP_HINT})") from exc
    if result.ok:
        return result.stdout.strip()
    if any(marker in result.stderr for marker in _NO_ORIGIN_MARKERS):
        return None
    detail = result.stderr.strip() or f"exit {result.exit_code}"
    raise ConfigError(
        f"repo validation failed: git remote get-url origin: {detail} ({_SKIP_HINT})"
    )


def ensure_repo_binding(
    config: WorkspaceConfig,
    git: ProcessRunner,
    *,
    origin_override: str | None = None,
    skip: bool = False,
    timeout: float | None = None,
    cwd: Path | None = None,
) -> None:
    """Raise ConfigError if the current repository is not the one the workspace is bound to."""
    if skip:
        logger.debug("repo_check_skipped", reason="disabled")
        return

    origin = (origin_override or "").strip()
    if not origin:
        origin = read_git_origin(git, timeout=timeout, cwd=cwd) or ""
        if not origin:
            logger.debug("repo_check_skipped", reason="no_origin")
            return

    current = canonicalize_origin_url(origin)
    if not current or not config.canonical_origin:
        return
    if current != config.canonical_origin:
        raise ConfigError(
            f"workspace repo mismatch: this workspace is bound to "
            f"'{config.canonical_origin}' but git origin resolves to '{current}'; "
            "re-run `bdh :init` in this repo"
        )
