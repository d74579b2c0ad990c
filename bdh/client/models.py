"""Wire models for the BeadHub coordination API.

Responses are validated here at the client boundary so the rest of the
package works with typed records instead of nested dicts. Servers may send
``null`` for optional strings; those collapse to the field default.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from bdh.constants import AUTO_RESERVE_REASON


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None and info.field_name is not None:
            field = cls.model_fields[info.field_name]
            if not field.is_required():
                return field.get_default(call_default_factory=True)
        return v


class WorkItem(_WireModel):
    """A bead some workspace currently has in progress."""

    bead_id: str = ""
    workspace_id: str = ""
    alias: str = ""
    human_name: str = ""
    started_at: str = ""
    title: str = ""
    role: str = ""


class CommandContext(_WireModel):
    messages_waiting: int = 0
    beads_in_progress: list[WorkItem] = Field(default_factory=list)


class CommandRequest(BaseModel):
    workspace_id: str
    repo_id: str | None = None
    alias: str
    human_name: str
    repo_origin: str
    role: str | None = None
    command_line: str


class CommandResponse(_WireModel):
    approved: bool = False
    reason: str = ""
    context: CommandContext | None = None

    @property
    def in_flight(self) -> list[WorkItem]:
        if self.context is None:
            return []
        return self.context.beads_in_progress


class SyncStats(_WireModel):
    received: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.inserted or self.updated or self.deleted)


class SyncRequest(BaseModel):
    workspace_id: str
    repo_id: str | None = None
    alias: str
    human_name: str
    repo_origin: str
    role: str | None = None
    command_line: str
    sync_mode: Literal["full", "incremental"]
    issues_jsonl: str | None = None
    changed_issues: str | None = None
    deleted_ids: list[str] | None = None
    sync_protocol_version: int = 0


class SyncResponse(_WireModel):
    synced: bool = False
    issues_count: int = 0
    stats: SyncStats | None = None
    sync_protocol_version: int = 0


class ReservationRecord(_WireModel):
    resource_key: str = ""
    holder_alias: str = ""
    holder_agent_id: str = ""
    acquired_at: str = ""
    expires_at: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def reason(self) -> str | None:
        value = self.metadata.get("reason")
        return value if isinstance(value, str) else None

    @property
    def is_auto_managed(self) -> bool:
        return self.reason == AUTO_RESERVE_REASON


class ReservationList(_WireModel):
    reservations: list[ReservationRecord] = Field(default_factory=list)


class Claim(_WireModel):
    bead_id: str = ""
    title: str = ""
    claimed_at: str = ""
    apex_id: str = ""
    apex_title: str = ""
    apex_type: str = ""


class Workspace(_WireModel):
    workspace_id: str = ""
    alias: str = ""
    human_name: str = ""
    project_slug: str = ""
    role: str = ""
    focus_apex_id: str = ""
    focus_apex_title: str = ""
    focus_apex_type: str = ""
    focus_updated_at: str = ""
    status: str = ""
    last_seen: str = ""
    claims: list[Claim] = Field(default_factory=list)


class WorkspaceList(_WireModel):
    workspaces: list[Workspace] = Field(default_factory=list)
    count: int = 0
