"""Workspace identity loaded from the .beadhub YAML file.

The file sits at the workspace root and carries the identity sent with
every coordination call:

    workspace_id: "uuid"
    beadhub_url: "http://..."
    project_slug: "beadhub"
    repo_origin: "git@github.com:org/repo"
    canonical_origin: "github.com/org/repo"
    alias: "claude-code"
    human_name: "Juan"
    role: "reviewer"            # optional
    auto_reserve: true          # optional, default true
    reserve_untracked: false    # optional, default false

Discovery walks from the working directory up to the git root. Outside a
git checkout only the working directory itself is checked, so an unrelated
.beadhub higher up is never picked up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from bdh.constants import CACHE_DIR_NAME, CONFIG_FILE_NAME, SYNC_STATE_FILE_NAME
from bdh.infra.errors import ConfigError

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_URL_RE = re.compile(r"^https?://\S+$")
_ALIAS_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]{0,63}$")
_HUMAN_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9 '\-]{0,63}$")
_PROJECT_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")
_REPO_ORIGIN_RE = re.compile(r"^(git@[^\s:]+:\S+|https?://\S+)$")
_CANONICAL_ORIGIN_RE = re.compile(r"^[a-z0-9.-]+/[a-zA-Z0-9._-]+/[a-zA-Z0-9._-]+$")
_ROLE_WORD_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
_ROLE_MAX_LENGTH = 50
_ROLE_MAX_WORDS = 2


class WorkspaceConfig(BaseModel):
    """Validated contents of a .beadhub file."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    workspace_id: str
    beadhub_url: str
    project_slug: str
    repo_id: str | None = None
    repo_origin: str
    canonical_origin: str
    alias: str
    human_name: str
    role: str | None = None
    auto_reserve: bool = True
    reserve_untracked: bool = False

    @field_validator(
        "workspace_id",
        "beadhub_url",
        "project_slug",
        "repo_origin",
        "canonical_origin",
        "alias",
        "human_name",
        mode="before",
    )
    @classmethod
    def _strip_required(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("is required")
        return v

    @field_validator("repo_id", "role", mode="before")
    @classmethod
    def _blank_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("workspace_id")
    @classmethod
    def _validate_workspace_id(cls, v: str) -> str:
        if not _UUID_RE.match(v):
            raise ValueError("must be a valid UUID")
        return v

    @field_validator("repo_id")
    @classmethod
    def _validate_repo_id(cls, v: str | None) -> str | None:
        if v is not None and not _UUID_RE.match(v):
            raise ValueError("must be a valid UUID")
        return v

    @field_validator("beadhub_url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        if not _URL_RE.match(v):
            raise ValueError("must be a valid HTTP(S) URL")
        return v

    @field_validator("project_slug")
    @classmethod
    def _validate_project_slug(cls, v: str) -> str:
        if not _PROJECT_SLUG_RE.match(v) or len(v) > 63:
            raise ValueError("must be lowercase alphanumeric with hyphens")
        return v

    @field_validator("repo_origin")
    @classmethod
    def _validate_repo_origin(cls, v: str) -> str:
        if not _REPO_ORIGIN_RE.match(v):
            raise ValueError("must be a git SSH URL (git@host:path) or HTTPS URL")
        return v

    @field_validator("canonical_origin")
    @classmethod
    def _validate_canonical_origin(cls, v: str) -> str:
        if not _CANONICAL_ORIGIN_RE.match(v):
            raise ValueError("must be in format host/org/repo (e.g., github.com/org/repo)")
        return v

    @field_validator("alias")
    @classmethod
    def _validate_alias(cls, v: str) -> str:
        if not _ALIAS_RE.match(v):
            raise ValueError(
                "must start with an alphanumeric and contain only alphanumerics, "
                "dashes, or underscores (max 64 chars)"
            )
        return v

    @field_validator("human_name")
    @classmethod
    def _validate_human_name(cls, v: str) -> str:
        if not _HUMAN_NAME_RE.match(v):
            raise ValueError(
                "must start with a letter and contain only letters, digits, spaces, "
                "hyphens, or apostrophes (max 64 chars)"
            )
        return v

    @field_validator("role")
    @classmethod
    def _normalize_role(cls, v: str | None) -> str | None:
        if v is None:
            return None
        normalized = " ".join(v.split()).lower()
        words = normalized.split(" ")
        if (
            len(normalized) > _ROLE_MAX_LENGTH
            or len(words) > _ROLE_MAX_WORDS
            or not all(_ROLE_WORD_RE.match(word) for word in words)
        ):
            raise ValueError(
                "must be 1-2 words (letters/numbers) with hyphens/underscores allowed; "
                f"max {_ROLE_MAX_LENGTH} chars"
            )
        return normalized


@dataclass(frozen=True)
class LoadedWorkspace:
    path: Path
    config: WorkspaceConfig

    @property
    def root(self) -> Path:
        return self.path.parent

    @property
    def sync_state_path(self) -> Path:
        return self.root / CACHE_DIR_NAME / SYNC_STATE_FILE_NAME


def find_git_root(start: Path) -> Path | None:
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def find_config_path(cwd: Path) -> Path | None:
    """Return the nearest .beadhub between *cwd* and the git root, if any."""
    cwd = cwd.resolve()
    git_root = find_git_root(cwd)
    if git_root is None:
        candidate = cwd / CONFIG_FILE_NAME
        return candidate if candidate.is_file() else None

    for directory in (cwd, *cwd.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
        if directory == git_root:
            break
    return None


def load_workspace(
    path: Path | None = None,
    *,
    cwd: Path | None = None,
) -> LoadedWorkspace | None:
    """Load and validate the workspace file.

    Returns None when no file exists (explicit *path* missing, or nothing
    found by discovery). Raises ConfigError when a file exists but cannot
    be parsed or fails validation.
    """
    if path is None:
        path = find_config_path(cwd or Path.cwd())
        if path is None:
            return None
    elif not path.is_absolute():
        path = (cwd or Path.cwd()) / path

    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"reading {path}: {exc}") from exc

    try:
        payload = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"parsing {path}: expected a mapping at the top level")

    try:
        config = WorkspaceConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"invalid .beadhub config: {_first_error(exc)}") from exc
    return LoadedWorkspace(path=path.resolve(), config=config)


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "config"
    message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
    if error.get("type") == "missing":
        message = "is required"
    return f"{field} {message}"
