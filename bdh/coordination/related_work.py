"""Find other agents' in-flight work related to a bead that was just closed.

Two relations are recognised, first match wins:

- "blocked by <closed>": the issue has a ``blocks`` dependency on the closed bead
- "same parent epic": the issue shares the closed bead's ``parent-child`` parent

Lookup failures are cosmetic and produce no related work.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from bdh.client.models import WorkItem

logger = structlog.get_logger()

DEP_BLOCKS = "blocks"
DEP_PARENT_CHILD = "parent-child"
DEP_DISCOVERED_FROM = "discovered-from"


@dataclass(frozen=True)
class Dependency:
    issue_id: str
    depends_on_id: str
    type: str


@dataclass(frozen=True)
class Issue:
    id: str
    title: str = ""
    status: str = ""
    dependencies: tuple[Dependency, ...] = ()

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> Issue | None:
        issue_id = payload.get("id")
        if not isinstance(issue_id, str):
            return None
        raw_deps = payload.get("dependencies") or []
        if not isinstance(raw_deps, list):
            return None
        dependencies = []
        for raw in raw_deps:
            if not isinstance(raw, dict):
                return None
            dependencies.append(
                Dependency(
                    issue_id=str(raw.get("issue_id") or ""),
                    depends_on_id=str(raw.get("depends_on_id") or ""),
                    type=str(raw.get("type") or ""),
                )
            )
        return cls(
            id=issue_id,
            title=str(payload.get("title") or ""),
            status=str(payload.get("status") or ""),
            dependencies=tuple(dependencies),
        )


@dataclass(frozen=True)
class RelatedWorkItem:
    bead_id: str
    title: str
    alias: str
    human_name: str
    workspace_id: str
    relation: str


def load_issues(path: Path) -> list[Issue]:
    """Parse the JSONL export, skipping malformed lines.

    Raises OSError if unreadable and UnicodeDecodeError if the file is not UTF-8.
    """
    issues = []
    for line in path.read_text("utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(payload, dict):
            continue
        issue = Issue.from_mapping(payload)
        if issue is not None:
            issues.append(issue)
    return issues


def find_related_bead_ids(closed_id: str, issues: Iterable[Issue]) -> dict[str, str]:
    """Map related bead id to a short relation description."""
    issues = list(issues)
    closed = next((issue for issue in issues if issue.id == closed_id), None)
    if closed is None:
        return {}

    parent_id = next(
        (
            dep.depends_on_id
            for dep in closed.dependencies
            if dep.type == DEP_PARENT_CHILD and dep.issue_id == closed_id
        ),
        "",
    )

    related: dict[str, str] = {}
    for issue in issues:
        if issue.id == closed_id:
            continue
        if any(
            dep.type == DEP_BLOCKS and dep.depends_on_id == closed_id for dep in issue.dependencies
        ):
            related[issue.id] = f"blocked by {closed_id}"
        elif parent_id and any(
            dep.type == DEP_PARENT_CHILD
            and dep.issue_id == issue.id
            and dep.depends_on_id == parent_id
            for dep in issue.dependencies
        ):
            related[issue.id] = "same parent epic"
    return related


def find_related_work_in_progress(
    closed_id: str,
    my_workspace_id: str,
    in_flight: Iterable[WorkItem],
    issues_path: Path,
) -> list[RelatedWorkItem]:
    try:
        issues = load_issues(issues_path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("related_work_unavailable", path=str(issues_path), error=str(exc))
        return []

    related = find_related_bead_ids(closed_id, issues)
    if not related:
        return []

    items = []
    for work in in_flight:
        if work.workspace_id == my_workspace_id:
            continue
        if not work.workspace_id or not work.alias:
            continue
        relation = related.get(work.bead_id)
        if relation is None:
            continue
        items.append(
            RelatedWorkItem(
                bead_id=work.bead_id,
                title=work.title,
                alias=work.alias,
                human_name=work.human_name,
                workspace_id=work.workspace_id,
                relation=relation,
            )
        )
    return items
