"""Content hashing for incremental sync.

Each issue line of the JSONL export is re-serialised with keys sorted at
every level and hashed with SHA-256, so key order never changes the hash
while array order still does. Hashes carry a version prefix; changing the
algorithm means bumping HASH_VERSION, which makes every stored hash stale.

- Lines without a string ``id`` are skipped (they cannot be tracked).
- Any line that is not a JSON object fails the whole computation.
- Both ``\\n`` and ``\\r\\n`` line endings are accepted.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

from bdh.constants import HASH_VERSION


def split_jsonl(content: str) -> list[str]:
    lines = []
    for raw in content.split("\n"):
        line = raw.removesuffix("\r")
        if line:
            lines.append(line)
    return lines


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_issue_hash(line: str) -> tuple[str, str] | None:
    """Return ``(issue_id, hash)`` for one JSONL line, or None if it has no id.

    Raises ValueError if the line is not a JSON object.
    """
    issue = json.loads(line)
    if not isinstance(issue, dict):
        raise ValueError(f"issue line is not a JSON object: {line[:80]!r}")
    issue_id = issue.get("id")
    if not isinstance(issue_id, str) or not issue_id:
        return None
    digest = hashlib.sha256(canonical_json(issue).encode("utf-8")).hexdigest()
    return issue_id, f"{HASH_VERSION}:{digest}"


def compute_issue_hashes(content: str) -> dict[str, str]:
    hashes: dict[str, str] = {}
    for line in split_jsonl(content):
        computed = compute_issue_hash(line)
        if computed is not None:
            issue_id, digest = computed
            hashes[issue_id] = digest
    return hashes


def find_changed_issues(current: Mapping[str, str], last_synced: Mapping[str, str]) -> list[str]:
    """Ids that are new or whose hash differs from the last sync, sorted."""
    return sorted(
        issue_id for issue_id, digest in current.items() if last_synced.get(issue_id) != digest
    )


def find_deleted_issues(current: Mapping[str, str], last_synced: Mapping[str, str]) -> list[str]:
    return sorted(issue_id for issue_id in last_synced if issue_id not in current)


def extract_issues_by_id(content: str, ids: Iterable[str]) -> str:
    """Return the original JSONL lines for *ids*, joined by newlines.

    Lines are passed through byte-for-byte; unparseable lines are skipped.
    """
    wanted = set(ids)
    if not wanted:
        return ""
    selected = []
    for line in split_jsonl(content):
        try:
            issue = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(issue, dict) and issue.get("id") in wanted:
            selected.append(line)
    return "\n".join(selected)
