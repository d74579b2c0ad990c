"""Persisted sync state for incremental uploads.

Concurrent bdh processes in one workspace are last-writer-wins on this
file. The worst case is a redundant upload on the next run, never a missed
change, because hashes only advance after a confirmed upload.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass
class SyncState:
    last_sync: str | None = None
    protocol_version: int = 0
    issue_hashes: dict[str, str] = field(default_factory=dict)

    @property
    def needs_full_sync(self) -> bool:
        return not self.issue_hashes

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> SyncState:
        hashes = payload.get("issue_hashes") or {}
        if not isinstance(hashes, dict):
            hashes = {}
        version = payload.get("protocol_version") or 0
        last_sync = payload.get("last_sync")
        return cls(
            last_sync=last_sync if isinstance(last_sync, str) else None,
            protocol_version=version if isinstance(version, int) else 0,
            issue_hashes={
                str(issue_id): digest
                for issue_id, digest in hashes.items()
                if isinstance(digest, str)
            },
        )

    def to_mapping(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "last_sync": self.last_sync,
            "issue_hashes": dict(sorted(self.issue_hashes.items())),
        }
        if self.protocol_version:
            payload["protocol_version"] = self.protocol_version
        return payload


def load_state(path: Path) -> SyncState:
    """Read sync state; a missing or corrupt file yields an empty state."""
    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return SyncState()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("sync_state_unreadable", path=str(path), error=str(exc))
        return SyncState()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.info("sync_state_corrupt", path=str(path))
        return SyncState()
    if not isinstance(payload, dict):
        logger.info("sync_state_corrupt", path=str(path))
        return SyncState()
    return SyncState.from_mapping(payload)


def save_state(path: Path, state: SyncState) -> None:
    """Write sync state atomically (temp file, then rename). Raises OSError."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(json.dumps(state.to_mapping(), indent=2) + "\n", "utf-8")
    os.replace(tmp_path, path)
