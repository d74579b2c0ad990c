"""Run one bd command under BeadHub coordination.

Pipeline for a single invocation:

1. strip ``--:local-config`` / ``--:jump-in``, load the workspace file, and
   check it is bound to this repository
2. pre-flight the command line with BeadHub (blocking only on rejection or 410)
3. gather team context for ``ready``
4. reconcile file reservations with the working tree
5. run bd with the cleaned arguments
6. upload issue state after a successful mutation
7. look up related in-flight work after a successful close
8. notify claimants when a jump-in overrode a rejection

Without a .beadhub file bd runs directly with a warning.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import structlog

from bdh.beads.paths import find_beads_dir, resolve_export_target
from bdh.client.beadhub import BeadHubClient
from bdh.client.models import CommandRequest, WorkItem
from bdh.config.settings import BdhSettings, BeadHubSettings
from bdh.config.workspace import LoadedWorkspace, load_workspace
from bdh.coordination.autoreserve import AutoReserver, AutoReserveResult
from bdh.coordination.decision import (
    Decision,
    OverrideDirective,
    PendingDecision,
    on_preflight_error,
    on_preflight_response,
)
from bdh.coordination.invocation import CommandInvocation, parse_invocation
from bdh.coordination.ready import ReadyContext, fetch_ready_context
from bdh.coordination.related_work import RelatedWorkItem, find_related_work_in_progress
from bdh.coordination.repo_binding import ensure_repo_binding
from bdh.infra.errors import BeadHubError, InvalidInvocationError
from bdh.process.git import GitStatusSource
from bdh.process.runner import ProcessRunner
from bdh.sync.manager import SyncManager, SyncOutcome

logger = structlog.get_logger()


class ClientFactory(Protocol):
    def __call__(self, workspace: LoadedWorkspace) -> BeadHubClient: ...


@dataclass
class PassthroughResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    json_mode: bool = False
    alias: str = ""

    warning: str = ""
    rejected: bool = False
    rejection_reason: str = ""
    beads_in_progress: list[WorkItem] = field(default_factory=list)

    sync: SyncOutcome | None = None
    auto_reserve: AutoReserveResult | None = None
    ready: ReadyContext | None = None
    related_work: list[RelatedWorkItem] = field(default_factory=list)
    notified: list[str] = field(default_factory=list)

    @property
    def process_exit_code(self) -> int:
        """1 for a rejection, otherwise whatever bd returned. Warnings never count."""
        if self.rejected:
            return 1
        return self.exit_code


class CommandInterceptor:
    def __init__(
        self,
        *,
        bd: ProcessRunner,
        git: ProcessRunner,
        client_factory: ClientFactory,
        settings: BdhSettings | None = None,
        beadhub: BeadHubSettings | None = None,
        cwd: Path | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._bd = bd
        self._git = git
        self._client_factory = client_factory
        self._settings = settings or BdhSettings()
        self._beadhub = beadhub or BeadHubSettings()
        self._cwd = cwd
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def run(self, tokens: Sequence[str]) -> PassthroughResult:
        invocation = parse_invocation(tokens)
        result = PassthroughResult(json_mode=invocation.json_mode)

        config_path = Path(invocation.local_config_path) if invocation.local_config_path else None
        workspace = load_workspace(config_path, cwd=self._cwd)
        if workspace is None:
            if invocation.jump_in:
                raise InvalidInvocationError(
                    "--:jump-in requires a configured workspace - run 'bdh :init' first"
                )
            logger.info("coordination_disabled", reason="no_config")
            result.warning = "No .beadhub config found - running without coordination"
            self._run_bd(invocation, result)
            return result

        config = workspace.config
        ensure_repo_binding(
            config,
            self._git,
            origin_override=self._beadhub.repo_origin,
            skip=self._beadhub.skip_repo_check,
            timeout=self._settings.git_timeout_s,
            cwd=self._cwd,
        )
        result.alias = config.alias
        structlog.contextvars.bind_contextvars(alias=config.alias)
        try:
            with self._client_factory(workspace) as client:
                self._coordinate(client, workspace, invocation, result)
        finally:
            structlog.contextvars.unbind_contextvars("alias")
        return result

    def _coordinate(
        self,
        client: BeadHubClient,
        workspace: LoadedWorkspace,
        invocation: CommandInvocation,
        result: PassthroughResult,
    ) -> None:
        config = workspace.config
        decision = self._preflight(client, workspace, invocation)
        result.warning = decision.warning
        result.beads_in_progress = list(decision.in_flight)

        if decision.blocks_execution:
            logger.info("command_rejected", command=invocation.command, reason=decision.reason)
            result.rejected = True
            result.rejection_reason = decision.reason
            return

        if invocation.is_ready:
            result.ready = fetch_ready_context(
                client,
                workspace_id=config.workspace_id,
                alias=config.alias,
                now=self._clock(),
                timeout=self._settings.ready_timeout_s,
            )

        reserver = AutoReserver(
            client=client,
            status_source=GitStatusSource(
                self._git, timeout=self._settings.git_timeout_s, cwd=self._cwd
            ),
            alias=config.alias,
            enabled=config.auto_reserve,
            reserve_untracked=config.reserve_untracked,
            ttl_seconds=self._settings.reserve_ttl_seconds,
            clock=self._clock,
        )
        result.auto_reserve = reserver.reconcile()

        self._run_bd(invocation, result)
        succeeded = result.exit_code == 0

        beads_dir: Path | None = None
        if succeeded and invocation.is_mutation:
            beads_dir = self._beads_dir()
            manager = SyncManager(
                client=client, bd=self._bd, workspace=workspace, beads_dir=beads_dir
            )
            result.sync = manager.sync(invocation.args)

        if succeeded and invocation.is_close and invocation.bead_id and decision.answered:
            beads_dir = beads_dir or self._beads_dir()
            target = resolve_export_target(invocation.args, beads_dir)
            result.related_work = find_related_work_in_progress(
                invocation.bead_id,
                config.workspace_id,
                decision.in_flight,
                target.issues_path,
            )

        if decision.override is not None:
            result.notified = self._notify(client, config.alias, decision.override)

    def _preflight(
        self,
        client: BeadHubClient,
        workspace: LoadedWorkspace,
        invocation: CommandInvocation,
    ) -> Decision:
        config = workspace.config
        request = CommandRequest(
            workspace_id=config.workspace_id,
            repo_id=config.repo_id,
            alias=config.alias,
            human_name=config.human_name,
            repo_origin=config.repo_origin,
            role=config.role,
            command_line=invocation.command_line,
        )
        decision = Decision()
        try:
            response = client.command(request)
        except BeadHubError as exc:
            logger.info("preflight_failed", error=str(exc), code=exc.code)
            return on_preflight_error(decision, exc, beadhub_url=client.base_url)
        decision = on_preflight_response(
            decision, response, invocation, workspace_id=config.workspace_id
        )
        if decision.state is PendingDecision.OVERRIDE_APPLIED:
            logger.info(
                "jump_in_applied",
                bead_id=invocation.bead_id,
                notify=len(decision.override.notify_list) if decision.override else 0,
            )
        return decision

    def _run_bd(self, invocation: CommandInvocation, result: PassthroughResult) -> None:
        completed = self._bd.run(list(invocation.args), cwd=self._cwd)
        result.stdout = completed.stdout
        result.stderr = completed.stderr
        result.exit_code = completed.exit_code
        logger.debug("bd_finished", command=invocation.command, exit_code=completed.exit_code)

    def _beads_dir(self) -> Path:
        return find_beads_dir(self._git, cwd=self._cwd, timeout=self._settings.git_timeout_s)

    def _notify(
        self, client: BeadHubClient, alias: str, override: OverrideDirective
    ) -> list[str]:
        body = f"{alias} is joining work on {override.target_bead_id}: {override.message}"
        notified = []
        for item in override.notify_list:
            try:
                client.send_message(item.workspace_id, body)
            except BeadHubError as exc:
                logger.debug(
                    "jump_in_notify_failed", workspace_id=item.workspace_id, error=str(exc)
                )
                continue
            notified.append(item.workspace_id)
        return notified
