"""Render a PassthroughResult as terminal text or a single JSON document."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from bdh.constants import READY_LOCKS_LIMIT, READY_TEAM_LIMIT, STALE_CLAIM_THRESHOLD_HOURS
from bdh.coordination.interceptor import PassthroughResult
from bdh.coordination.ready import ReadyContext
from bdh.infra.timeutil import (
    format_duration,
    format_time_ago,
    is_older_than,
    ttl_remaining_seconds,
)

_STALE_CLAIM_AGE = timedelta(hours=STALE_CLAIM_THRESHOLD_HOURS)

# Usage lines in bd help output that should point at bdh instead.
_HELP_REPLACEMENTS = (
    ("\n  bd ", "\n  bdh "),
    ("`bd ", "`bdh "),
    ("'bd ", "'bdh "),
    ('"bd ', '"bdh '),
)


@dataclass
class OutputSession:
    """Per-command output state; the coordination header is emitted at most once."""

    alias: str = ""
    header_printed: bool = False

    def header(self) -> str:
        if self.header_printed or not self.alias:
            return ""
        self.header_printed = True
        return f"\n# Coordination Info for {self.alias} (you, the agent)\n"


def rewrite_bd_help_output(output: str) -> str:
    if "Usage:\n  bd " not in output:
        return output
    for old, new in _HELP_REPLACEMENTS:
        output = output.replace(old, new)
    return output


def render(
    result: PassthroughResult,
    session: OutputSession | None = None,
    *,
    now: datetime | None = None,
) -> str:
    if result.json_mode:
        return format_json(result)
    return format_text(result, session or OutputSession(alias=result.alias), now=now)


def format_text(
    result: PassthroughResult,
    session: OutputSession,
    *,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(tz=UTC)
    parts: list[str] = []

    if result.warning:
        parts.append(f"Warning: {result.warning}\n\n")

    if result.rejected:
        parts.append(_format_rejection(result))

    if result.stdout:
        stdout = rewrite_bd_help_output(result.stdout.rstrip("\n"))
        if stdout:
            parts.append(f"{stdout}\n")
    if result.stderr:
        parts.append(rewrite_bd_help_output(result.stderr))

    if result.ready is not None:
        parts.append(_format_ready(result.ready, session, now))

    if result.related_work:
        parts.append("\nRELATED WORK IN PROGRESS:\n")
        for item in result.related_work:
            if item.title:
                parts.append(
                    f'  {item.bead_id} — {item.alias} — "{item.title}" ({item.relation})\n'
                )
            else:
                parts.append(f"  {item.bead_id} — {item.alias} ({item.relation})\n")
        parts.append("\nConsider notifying related agents:\n")
        for item in result.related_work:
            parts.append(
                f"  → bdh :aweb mail send {item.alias} "
                '"Finished work on related bead. Details: ..."\n'
            )

    sync = result.sync
    if sync is not None and sync.stats is not None and sync.stats.has_changes:
        stats = sync.stats
        counts = []
        if stats.inserted:
            counts.append(f"+{stats.inserted} inserted")
        if stats.updated:
            counts.append(f"~{stats.updated} updated")
        if stats.deleted:
            counts.append(f"-{stats.deleted} deleted")
        parts.append(f"\nSYNC: {', '.join(counts)}\n")
    if sync is not None and sync.warning:
        parts.append(f"\nWarning: {sync.warning}\n")

    parts.append(_format_reserved_files(result, session))
    return "".join(parts)


def _format_rejection(result: PassthroughResult) -> str:
    lines = [f"REJECTED: {result.rejection_reason}\n\n"]
    if result.beads_in_progress:
        lines.append("Beads in progress:\n")
        for item in result.beads_in_progress:
            if item.title:
                lines.append(
                    f'  {item.bead_id} — {item.alias} ({item.human_name}) — "{item.title}"\n'
                )
            else:
                lines.append(f"  {item.bead_id} — {item.alias} ({item.human_name})\n")
        lines.append("\n")
    lines.append("Options:\n")
    lines.append("  - Pick different work: bdh ready\n")
    lines.append('  - Message them: bdh :aweb mail send <agent-name> "message"\n')
    lines.append('  - Escalate: bdh :escalate "subject" "situation"\n')
    lines.append("\n")
    return "".join(lines)


def _format_ready(ready: ReadyContext, session: OutputSession, now: datetime) -> str:
    parts: list[str] = []

    if ready.my_claims:
        apexes = {
            claim.apex_id: claim.apex_title or claim.apex_id
            for claim in ready.my_claims
            if claim.apex_id
        }
        if apexes:
            parts.append(session.header())
            parts.append("\n## Your Current Epics\n")
            for apex_id in sorted(apexes):
                parts.append(f'- {apex_id} "{apexes[apex_id]}"\n')

        parts.append(session.header())
        parts.append("\n## Your Claims\n")
        parts.append("Issues you have claimed and should complete:\n")
        has_stale = False
        for claim in ready.my_claims:
            age = format_time_ago(claim.claimed_at, now)
            stale = ""
            if is_older_than(claim.claimed_at, now, _STALE_CLAIM_AGE):
                stale = " ⚠️ stale"
                has_stale = True
            if claim.title:
                parts.append(f'- {claim.bead_id} "{claim.title}" — {age}{stale}\n')
            else:
                parts.append(f"- {claim.bead_id} — {age}{stale}\n")
        if has_stale:
            parts.append(
                '  → Release stale claims: `bdh close <id> --reason "releasing stale claim"`\n'
            )
    elif ready.my_focus_apex_id.strip():
        parts.append(session.header())
        parts.append("\n## Your Focus\n")
        if ready.my_focus_apex_title.strip():
            parts.append(f'- {ready.my_focus_apex_id} "{ready.my_focus_apex_title}"\n')
        else:
            parts.append(f"- {ready.my_focus_apex_id}\n")

    if ready.team_status:
        limit = ready.team_status_limit or READY_TEAM_LIMIT
        parts.append(session.header())
        parts.append("\n## Team Status\n")
        parts.append("Check before claiming work to avoid conflicts:\n")
        for workspace in ready.team_status[:limit]:
            if workspace.focus_apex_id:
                if workspace.focus_apex_title:
                    parts.append(
                        f"- {workspace.alias} — focused on {workspace.focus_apex_id} "
                        f'"{workspace.focus_apex_title}"\n'
                    )
                else:
                    parts.append(f"- {workspace.alias} — focused on {workspace.focus_apex_id}\n")
            else:
                for claim in workspace.claims:
                    if claim.title:
                        parts.append(
                            f'- {workspace.alias} — working on {claim.bead_id} "{claim.title}"\n'
                        )
                    else:
                        parts.append(f"- {workspace.alias} — working on {claim.bead_id}\n")
        if ready.team_status_more:
            parts.append("  → More agents: `bdh :aweb who`\n")

    others_locks = [lock for lock in ready.active_locks if lock.holder_alias != ready.my_alias]
    if others_locks:
        parts.append(session.header())
        parts.append("\n## File Reservations\n")
        parts.append("These files are locked by other agents. Do not edit them:\n")
        for lock in others_locks[:READY_LOCKS_LIMIT]:
            expires_in = format_duration(ttl_remaining_seconds(lock.expires_at, now))
            owner = lock.holder_alias or "unknown"
            line = f"- `{lock.resource_key}` — {owner} (expires in {expires_in})"
            reason = (lock.reason or "").strip()
            if reason:
                line += f' "{reason}"'
            parts.append(f"{line}\n")
        hidden = len(others_locks) - READY_LOCKS_LIMIT
        if hidden > 0:
            parts.append(f"  → {hidden} more locks: `bdh :aweb locks`\n")

    return "".join(parts)


def _format_reserved_files(result: PassthroughResult, session: OutputSession) -> str:
    auto = result.auto_reserve
    if auto is None or not auto.has_content:
        return ""

    parts = [session.header(), "\n## Your File Reservations\n"]
    if auto.warning:
        parts.append(f"⚠️ Warning: {auto.warning}\n")
    for verb, paths in (
        ("locked", auto.acquired),
        ("renewed", auto.renewed),
        ("released", auto.released),
    ):
        if paths:
            parts.append(f"You {verb} {len(paths)} path(s):\n")
            parts.extend(f"- `{path}`\n" for path in paths)
    if auto.conflicts:
        parts.append("\n**CONFLICT: Do not edit these files** — held by other agents:\n")
        for conflict in auto.conflicts:
            expires_in = format_duration(conflict.retry_after_seconds)
            parts.append(
                f"- `{conflict.resource_key}` — {conflict.held_by} (expires in {expires_in})\n"
            )
        parts.append("\nYour options:\n")
        parts.append('- Coordinate: `bdh :aweb chat send <alias> "Need <path>..."`\n')
        parts.append("- Stash your changes: `git stash`\n")
        parts.append("- Wait for expiry\n")
    return "".join(parts)


def format_json(result: PassthroughResult) -> str:
    """Serialise the whole result as one JSON object; stdout stays pure JSON."""
    payload: dict[str, Any] = {"rejected": result.rejected}
    if result.rejection_reason:
        payload["rejection_reason"] = result.rejection_reason
    if result.warning:
        payload["warning"] = result.warning

    sync = result.sync
    if sync is not None:
        if sync.warning:
            payload["sync_warning"] = sync.warning
        if sync.stats is not None:
            payload["sync_stats"] = sync.stats.model_dump()
        if sync.mode:
            payload["sync_mode"] = sync.mode

    if result.beads_in_progress:
        payload["beads_in_progress"] = [item.model_dump() for item in result.beads_in_progress]

    auto = result.auto_reserve
    if auto is not None and auto.has_content:
        auto_payload: dict[str, Any] = {}
        if auto.warning:
            auto_payload["warning"] = auto.warning
        for key, paths in (
            ("reserved", auto.acquired),
            ("renewed", auto.renewed),
            ("released", auto.released),
        ):
            if paths:
                auto_payload[key] = list(paths)
        if auto.conflicts:
            auto_payload["conflicts"] = [asdict(conflict) for conflict in auto.conflicts]
        payload["auto_reserve"] = auto_payload

    payload["bd_exit_code"] = result.exit_code
    stdout = result.stdout.strip()
    if stdout:
        try:
            payload["bd_stdout"] = json.loads(stdout)
        except json.JSONDecodeError:
            payload["bd_stdout_text"] = stdout
    stderr = result.stderr.strip()
    if stderr:
        payload["bd_stderr"] = stderr

    if result.ready is not None:
        payload["ready_context"] = _ready_payload(result.ready)
    if result.related_work:
        payload["related_work"] = [asdict(item) for item in result.related_work]

    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def _ready_payload(ready: ReadyContext) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if ready.my_claims:
        payload["my_claims"] = [claim.model_dump() for claim in ready.my_claims]
    for key in ("my_focus_apex_id", "my_focus_apex_title", "my_focus_apex_type"):
        value = getattr(ready, key)
        if value:
            payload[key] = value
    if ready.team_status:
        payload["team_status"] = [workspace.model_dump() for workspace in ready.team_status]
    if ready.team_status_limit:
        payload["team_status_limit"] = ready.team_status_limit
    if ready.team_status_more:
        payload["team_status_more"] = True
    if ready.active_locks:
        payload["active_locks"] = [lock.model_dump() for lock in ready.active_locks]
    return payload
