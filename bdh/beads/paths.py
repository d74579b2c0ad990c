"""Locate the .beads directory and the issues export bd writes into it.

Worktree-aware: ``git rev-parse --git-common-dir`` points at the main
checkout's .git even from a linked worktree, so every worktree shares the
main checkout's .beads directory, matching what bd itself does.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from bdh.constants import BEADS_DIR_NAME, ISSUES_FILE_NAME
from bdh.infra.errors import ProcessError
from bdh.process.runner import ProcessRunner

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExportTarget:
    """Where to export issues and which bd flags the export must repeat."""

    issues_path: Path
    options: tuple[str, ...]

    @property
    def args(self) -> list[str]:
        return [*self.options, "export", "-o", str(self.issues_path)]


def find_beads_dir(git: ProcessRunner, *, cwd: Path | None = None, timeout: float = 5.0) -> Path:
    base = cwd or Path.cwd()
    fallback = base / BEADS_DIR_NAME
    try:
        result = git.run(["rev-parse", "--git-common-dir"], timeout=timeout, cwd=cwd)
    except ProcessError as exc:
        logger.debug("beads_dir_git_failed", error=str(exc))
        return fallback
    common_dir = result.stdout.strip()
    if not result.ok or not common_dir:
        logger.debug("beads_dir_git_failed", exit_code=result.exit_code)
        return fallback

    common_path = Path(common_dir)
    if not common_path.is_absolute():
        common_path = base / common_path
    beads_dir = common_path.resolve().parent / BEADS_DIR_NAME
    if beads_dir.is_dir():
        return beads_dir.resolve()
    return fallback


def resolve_export_target(bd_args: Sequence[str], beads_dir: Path) -> ExportTarget:
    """Mirror the database-selection flags of a bd invocation onto its export.

    ``--db <path>`` moves the export next to that database; ``--no-daemon``
    and ``--no-db`` are repeated so the export reads the same store.
    """
    db_path: str | None = None
    no_daemon = False
    no_db = False

    index = 0
    while index < len(bd_args):
        arg = bd_args[index]
        if arg == "--no-daemon":
            no_daemon = True
        elif arg == "--no-db":
            no_db = True
        elif arg.startswith("--db="):
            db_path = arg.removeprefix("--db=")
        elif arg == "--db" and index + 1 < len(bd_args):
            db_path = bd_args[index + 1]
            index += 1
        index += 1

    if db_path:
        issues_path = Path(db_path).parent / ISSUES_FILE_NAME
    else:
        issues_path = beads_dir / ISSUES_FILE_NAME

    options: list[str] = []
    if no_daemon:
        options.append("--no-daemon")
    if no_db:
        options.append("--no-db")
    if db_path:
        options.extend(["--db", db_path])
    return ExportTarget(issues_path=issues_path, options=tuple(options))
