"""Working-tree status from git porcelain output."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from bdh.constants import BEADS_DIR_NAME
from bdh.infra.errors import ProcessError
from bdh.process.runner import ProcessRunner


@dataclass(frozen=True)
class StatusEntry:
    """One porcelain v1 entry. For renames and copies ``path`` is the destination."""

    x: str
    y: str
    path: str
    orig_path: str | None = None

    @property
    def is_untracked(self) -> bool:
        return self.x == "?" and self.y == "?"

    @property
    def is_deleted(self) -> bool:
        return self.x == "D" or self.y == "D"


class WorkingTreeStatusSource(Protocol):
    def repo_root(self) -> Path: ...

    def status(self, repo_root: Path, *, include_untracked: bool) -> list[StatusEntry]: ...


class GitStatusSource:
    def __init__(
        self,
        runner: ProcessRunner,
        *,
        timeout: float = 5.0,
        cwd: Path | None = None,
    ) -> None:
        self._runner = runner
        self._timeout = timeout
        self._cwd = cwd

    def repo_root(self) -> Path:
        result = self._runner.run(
            ["rev-parse", "--show-toplevel"], timeout=self._timeout, cwd=self._cwd
        )
        if not result.ok:
            detail = result.stderr.strip() or f"exit {result.exit_code}"
            raise ProcessError(f"git rev-parse --show-toplevel failed: {detail}")
        return validate_repo_root(result.stdout.strip())

    def status(self, repo_root: Path, *, include_untracked: bool) -> list[StatusEntry]:
        untracked_mode = "normal" if include_untracked else "no"
        result = self._runner.run(
            [
                "-C",
                str(repo_root),
                "status",
                "--porcelain=v1",
                "-z",
                f"--untracked-files={untracked_mode}",
                "--",
                f":!{BEADS_DIR_NAME}/",
            ],
            timeout=self._timeout,
            cwd=self._cwd,
        )
        if not result.ok:
            detail = result.stderr.strip() or f"exit {result.exit_code}"
            raise ProcessError(f"git status failed: {detail}")
        return parse_porcelain_z(result.stdout)


def validate_repo_root(raw: str) -> Path:
    """Check a path reported by git before handing it back to ``git -C``."""
    if not raw:
        raise ProcessError("invalid git repo path: path is empty")
    if os.path.normpath(raw) != raw:
        raise ProcessError("invalid git repo path: path contains unclean components")
    if not os.path.isabs(raw):
        raise ProcessError("invalid git repo path: path must be absolute")
    return Path(raw)


def parse_porcelain_z(output: str) -> list[StatusEntry]:
    """Parse ``git status --porcelain=v1 -z`` output.

    With ``-z`` a rename or copy is written as ``XY <to> NUL <from> NUL``,
    so the entry path is the destination and the following field is the source.
    """
    parts = output.split("\0")
    entries: list[StatusEntry] = []
    index = 0
    while index < len(parts):
        part = parts[index]
        index += 1
        if not part:
            continue
        if len(part) < 4 or part[2] != " ":
            raise ProcessError(f"unexpected porcelain entry: {part!r}")
        x, y, path = part[0], part[1], part[3:]
        orig_path = None
        if "R" in (x, y) or "C" in (x, y):
            if index >= len(parts) or not parts[index]:
                raise ProcessError(f"missing rename/copy source for: {path!r}")
            orig_path = parts[index]
            index += 1
        entries.append(StatusEntry(x=x, y=y, path=path, orig_path=orig_path))
    return entries
