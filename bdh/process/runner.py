"""Process execution behind a narrow runner interface.

The interceptor, reservation reconciler, and sync manager only ever see a
ProcessRunner, so tests can substitute a fake instead of real binaries.
"""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from bdh.infra.errors import ProcessError


@dataclass(frozen=True)
class ProcessResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner(Protocol):
    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult: ...

    def export(self, path: Path, options: Sequence[str] = ()) -> int: ...


class SubprocessRunner:
    """Run one binary with arguments passed through unmodified.

    A non-zero exit is a normal result. Only a missing binary or a timeout
    raises ProcessError.

    Output is decoded as UTF-8 with *decode_errors* as the codec error
    handler, so undecodable bytes never raise. Use ``"surrogateescape"``
    where the output carries file names that must round-trip through
    ``os.fsencode``.
    """

    def __init__(
        self,
        binary: str,
        *,
        export_timeout: float = 10.0,
        decode_errors: str = "replace",
    ) -> None:
        self.binary = binary
        self.export_timeout = export_timeout
        self.decode_errors = decode_errors

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult:
        command = [self.binary, *args]
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                check=False,
                encoding="utf-8",
                errors=self.decode_errors,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise ProcessError(
                f"missing binary while running {' '.join(command)}: {exc}",
                code="BINARY_NOT_FOUND",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProcessError(f"timed out after {timeout}s: {' '.join(command)}") from exc
        except OSError as exc:
            raise ProcessError(f"could not run {' '.join(command)}: {exc}") from exc
        return ProcessResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
        )

    def export(self, path: Path, options: Sequence[str] = ()) -> int:
        """Run ``<binary> [options] export -o <path>`` and return its exit code."""
        result = self.run([*options, "export", "-o", str(path)], timeout=self.export_timeout)
        return result.exit_code
