"""Team context shown after ``bd ready``: own claims, team focus, others' locks.

Fetched with a short timeout; any failure silently leaves that part empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from bdh.client.models import Claim, ReservationRecord, Workspace, WorkspaceList
from bdh.constants import (
    READY_TEAM_LIMIT,
    READY_TEAM_QUERY_OVERFLOW,
    TEAM_ACTIVITY_THRESHOLD_HOURS,
)
from bdh.infra.errors import BeadHubError
from bdh.infra.timeutil import parse_timestamp

logger = structlog.get_logger()


class ReadyClient(Protocol):
    def team_workspaces(
        self,
        *,
        always_include_workspace_id: str,
        limit: int,
        include_claims: bool = True,
        include_presence: bool = True,
        only_with_claims: bool = False,
        timeout: float | None = None,
    ) -> WorkspaceList: ...

    def reservation_list(self, *, timeout: float | None = None) -> list[ReservationRecord]: ...


@dataclass
class ReadyContext:
    my_alias: str
    my_claims: list[Claim] = field(default_factory=list)
    my_focus_apex_id: str = ""
    my_focus_apex_title: str = ""
    my_focus_apex_type: str = ""
    team_status: list[Workspace] = field(default_factory=list)
    team_status_limit: int = 0
    team_status_more: bool = False
    active_locks: list[ReservationRecord] = field(default_factory=list)


def is_workspace_recently_active(workspace: Workspace, threshold: datetime) -> bool:
    """Active if either the focus update or the last-seen time is after *threshold*.

    A workspace with no parseable timestamp at all counts as active.
    """
    has_timestamp = False
    for value in (workspace.focus_updated_at, workspace.last_seen):
        parsed = parse_timestamp(value)
        if parsed is None:
            continue
        has_timestamp = True
        if parsed > threshold:
            return True
    return not has_timestamp


def fetch_ready_context(
    client: ReadyClient,
    *,
    workspace_id: str,
    alias: str,
    now: datetime,
    timeout: float,
    team_limit: int = READY_TEAM_LIMIT,
) -> ReadyContext:
    context = ReadyContext(my_alias=alias)
    query_limit = team_limit + READY_TEAM_QUERY_OVERFLOW

    try:
        listing = client.team_workspaces(
            always_include_workspace_id=workspace_id,
            limit=query_limit,
            timeout=timeout,
        )
    except BeadHubError as exc:
        logger.debug("ready_team_status_unavailable", error=str(exc))
    else:
        threshold = now - timedelta(hours=TEAM_ACTIVITY_THRESHOLD_HOURS)
        active: list[Workspace] = []
        for workspace in listing.workspaces:
            if workspace.workspace_id == workspace_id:
                context.my_claims = list(workspace.claims)
                context.my_focus_apex_id = workspace.focus_apex_id
                context.my_focus_apex_title = workspace.focus_apex_title
                context.my_focus_apex_type = workspace.focus_apex_type
            elif workspace.focus_apex_id or workspace.claims:
                if is_workspace_recently_active(workspace, threshold):
                    active.append(workspace)
        context.team_status_limit = team_limit
        if len(active) > team_limit:
            context.team_status_more = True
            active = active[:team_limit]
        elif len(listing.workspaces) >= query_limit:
            context.team_status_more = True
        context.team_status = active

    try:
        locks = client.reservation_list(timeout=timeout)
    except BeadHubError as exc:
        logger.debug("ready_locks_unavailable", error=str(exc))
    else:
        context.active_locks = sorted(
            locks, key=lambda lock: (lock.resource_key, lock.holder_alias)
        )

    return context
