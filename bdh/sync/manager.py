"""Upload local issue state to BeadHub after a mutating bd command.

The export is forced first so daemon-buffered writes cannot produce a stale
upload. Every failure is reported as a warning on the outcome; stored
hashes only advance after the service confirms the upload, so the next run
always retries a superset of what failed.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Protocol

import structlog

from bdh.beads.paths import resolve_export_target
from bdh.client.models import SyncRequest, SyncResponse, SyncStats
from bdh.config.workspace import LoadedWorkspace
from bdh.infra.errors import BeadHubError, BeadHubHTTPError, ProcessError
from bdh.process.runner import ProcessRunner
from bdh.sync.hashing import (
    compute_issue_hashes,
    extract_issues_by_id,
    find_changed_issues,
    find_deleted_issues,
)
from bdh.sync.state import SyncState, load_state, save_state

logger = structlog.get_logger()

SyncMode = Literal["full", "incremental"]


class SyncClient(Protocol):
    def sync(self, request: SyncRequest) -> SyncResponse: ...


@dataclass
class SyncOutcome:
    synced: bool = False
    warning: str = ""
    issues_count: int = 0
    mode: SyncMode | None = None
    stats: SyncStats | None = None


class SyncManager:
    def __init__(
        self,
        *,
        client: SyncClient,
        bd: ProcessRunner,
        workspace: LoadedWorkspace,
        beads_dir: Path,
        now_fn: Callable[[], str] | None = None,
    ) -> None:
        self._client = client
        self._bd = bd
        self._workspace = workspace
        self._beads_dir = beads_dir
        self._now_fn = now_fn or _utc_now

    def sync(self, bd_args: Sequence[str]) -> SyncOutcome:
        target = resolve_export_target(bd_args, self._beads_dir)
        try:
            exit_code = self._bd.export(target.issues_path, target.options)
        except ProcessError as exc:
            logger.info("sync_export_failed", error=str(exc))
            return SyncOutcome(
                warning="bd export failed - aborting sync to prevent stale data upload"
            )
        if exit_code != 0:
            logger.info("sync_export_failed", exit_code=exit_code)
            return SyncOutcome(
                warning=(
                    f"bd export failed (exit {exit_code}) - "
                    "aborting sync to prevent stale data upload"
                )
            )

        try:
            content = target.issues_path.read_text("utf-8")
        except FileNotFoundError:
            logger.debug("sync_no_issues_file", path=str(target.issues_path))
            return SyncOutcome()
        except (OSError, UnicodeDecodeError) as exc:
            logger.info("sync_read_failed", path=str(target.issues_path), error=str(exc))
            return SyncOutcome(warning=f"could not read {target.issues_path}: {exc}")

        state = load_state(self._workspace.sync_state_path)
        try:
            current_hashes = compute_issue_hashes(content)
        except ValueError as exc:
            return SyncOutcome(warning=f"could not compute issue hashes: {exc}")

        command_line = " ".join(bd_args)
        mode: SyncMode
        if state.needs_full_sync:
            mode = "full"
            request = self._full_request(command_line, content, state)
        else:
            mode = "incremental"
            changed_ids = find_changed_issues(current_hashes, state.issue_hashes)
            deleted_ids = find_deleted_issues(current_hashes, state.issue_hashes)
            if not changed_ids and not deleted_ids:
                logger.debug("sync_no_changes", issues=len(current_hashes))
                return SyncOutcome(mode=mode)
            changed_issues = extract_issues_by_id(content, changed_ids)
            if not changed_issues.strip() and not deleted_ids:
                return SyncOutcome(
                    mode=mode, warning="sync skipped - no changed issues found in JSONL"
                )
            request = SyncRequest(
                **self._identity(command_line),
                sync_mode="incremental",
                changed_issues=changed_issues,
                deleted_ids=deleted_ids,
                sync_protocol_version=state.protocol_version,
            )

        try:
            try:
                response = self._client.sync(request)
            except BeadHubHTTPError as exc:
                if exc.status_code != 409:
                    raise
                logger.info("sync_protocol_mismatch", previous_mode=mode)
                mode = "full"
                response = self._client.sync(self._full_request(command_line, content, state))
        except BeadHubHTTPError as exc:
            logger.info("sync_failed", status=exc.status_code, mode=mode)
            return SyncOutcome(
                mode=mode,
                warning=f"sync failed ({exc.status_code}) - changes saved locally only",
            )
        except BeadHubError as exc:
            logger.info("sync_failed", error=str(exc), mode=mode)
            return SyncOutcome(
                mode=mode,
                warning=f"sync failed - changes saved locally only ({exc})",
            )

        if response.sync_protocol_version > 0:
            state.protocol_version = response.sync_protocol_version
        state.issue_hashes = current_hashes
        state.last_sync = self._now_fn()

        outcome = SyncOutcome(
            synced=response.synced,
            issues_count=response.issues_count,
            mode=mode,
            stats=response.stats,
        )
        try:
            save_state(self._workspace.sync_state_path, state)
        except OSError as exc:
            logger.info("sync_state_save_failed", error=str(exc))
            outcome.warning = "sync succeeded but could not save sync state"
        logger.info(
            "sync_completed",
            mode=mode,
            issues=response.issues_count,
            protocol_version=state.protocol_version,
        )
        return outcome

    def _identity(self, command_line: str) -> dict[str, str | None]:
        config = self._workspace.config
        return {
            "workspace_id": config.workspace_id,
            "repo_id": config.repo_id,
            "alias": config.alias,
            "human_name": config.human_name,
            "repo_origin": config.repo_origin,
            "role": config.role,
            "command_line": command_line,
        }

    def _full_request(self, command_line: str, content: str, state: SyncState) -> SyncRequest:
        return SyncRequest(
            **self._identity(command_line),
            sync_mode="full",
            issues_jsonl=content,
            sync_protocol_version=state.protocol_version,
        )


def _utc_now() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")
