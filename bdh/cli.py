"""Command-line entry point: ``bdh <bd args...>``."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import TextIO

from pydantic import ValidationError

from bdh.client.beadhub import BeadHubClient
from bdh.config.settings import Settings, get_settings
from bdh.config.workspace import LoadedWorkspace
from bdh.coordination.interceptor import CommandInterceptor
from bdh.coordination.output import OutputSession, render
from bdh.infra.errors import BdhError
from bdh.infra.logging import setup_logging
from bdh.process.runner import SubprocessRunner


def build_interceptor(settings: Settings) -> CommandInterceptor:
    def client_factory(workspace: LoadedWorkspace) -> BeadHubClient:
        return BeadHubClient(
            settings.beadhub.url or workspace.config.beadhub_url,
            api_key=settings.beadhub.api_key,
            timeout=settings.bdh.api_timeout_s,
        )

    return CommandInterceptor(
        bd=SubprocessRunner(settings.bdh.bd_bin, export_timeout=settings.bdh.export_timeout_s),
        git=SubprocessRunner(settings.bdh.git_bin, decode_errors="surrogateescape"),
        client_factory=client_factory,
        settings=settings.bdh,
        beadhub=settings.beadhub,
    )


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    interceptor: CommandInterceptor | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    tokens = list(sys.argv[1:] if argv is None else argv)
    out = stdout or sys.stdout
    err = stderr or sys.stderr

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"error: invalid settings: {exc}", file=err)
        return 1
    setup_logging(json_output=settings.bdh.log_json, log_level=settings.bdh.log_level)

    resolved = interceptor or build_interceptor(settings)
    try:
        result = resolved.run(tokens)
    except BdhError as exc:
        print(f"error: {exc}", file=err)
        return 1

    out.write(render(result, OutputSession(alias=result.alias)))
    out.flush()
    return result.process_exit_code


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
