"""Pre-flight decision state machine.

A decision starts UNEVALUATED and moves exactly once, driven by either a
pre-flight error or a pre-flight response:

    UNEVALUATED --error------------------------------> APPROVED (warning)
    UNEVALUATED --error, HTTP 410--------------------> raises WorkspaceGoneError
    UNEVALUATED --rejected, no jump-in---------------> REJECTED
    UNEVALUATED --rejected, jump-in------------------> OVERRIDE_APPLIED
    UNEVALUATED --approved close, other claimants----> REJECTED / OVERRIDE_APPLIED
    UNEVALUATED --approved---------------------------> APPROVED

Transitions are pure: no network or process calls happen here.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from bdh.client.models import CommandResponse, WorkItem
from bdh.coordination.invocation import CommandInvocation
from bdh.infra.errors import BdhError, BeadHubError, BeadHubHTTPError, WorkspaceGoneError

_HTTP_GONE = 410


class PendingDecision(StrEnum):
    UNEVALUATED = "unevaluated"
    APPROVED = "approved"
    REJECTED = "rejected"
    OVERRIDE_APPLIED = "override_applied"


@dataclass(frozen=True)
class OverrideDirective:
    """A jump-in that overrode a rejection; the notify list gets a message after bd runs."""

    message: str
    target_bead_id: str
    notify_list: tuple[WorkItem, ...]


@dataclass(frozen=True)
class Decision:
    state: PendingDecision = PendingDecision.UNEVALUATED
    reason: str = ""
    warning: str = ""
    in_flight: tuple[WorkItem, ...] = ()
    override: OverrideDirective | None = None
    # True once the service actually answered, so in_flight is trustworthy.
    answered: bool = False

    @property
    def blocks_execution(self) -> bool:
        return self.state is PendingDecision.REJECTED


def on_preflight_error(decision: Decision, error: BeadHubError, *, beadhub_url: str) -> Decision:
    """Service errors never block bd, except a 410 for a deleted workspace."""
    _require_unevaluated(decision)
    if isinstance(error, BeadHubHTTPError):
        if error.status_code == _HTTP_GONE:
            raise WorkspaceGoneError()
        warning = f"BeadHub error ({error.status_code}) - running without coordination"
    else:
        warning = f"BeadHub unreachable at {beadhub_url} - running without coordination"
    return Decision(state=PendingDecision.APPROVED, warning=warning)


def on_preflight_response(
    decision: Decision,
    response: CommandResponse,
    invocation: CommandInvocation,
    *,
    workspace_id: str,
) -> Decision:
    _require_unevaluated(decision)
    in_flight = tuple(response.in_flight)

    if not response.approved:
        if not invocation.jump_in:
            return Decision(
                state=PendingDecision.REJECTED,
                reason=response.reason,
                in_flight=in_flight,
                answered=True,
            )
        bead_id = invocation.bead_id
        if not bead_id:
            return Decision(
                state=PendingDecision.OVERRIDE_APPLIED,
                warning="--:jump-in used but couldn't extract bead ID from command",
                in_flight=in_flight,
                answered=True,
            )
        return Decision(
            state=PendingDecision.OVERRIDE_APPLIED,
            in_flight=in_flight,
            override=OverrideDirective(
                message=invocation.jump_in_message,
                target_bead_id=bead_id,
                notify_list=other_claimants(bead_id, workspace_id, in_flight),
            ),
            answered=True,
        )

    if invocation.is_close and invocation.bead_id:
        bead_id = invocation.bead_id
        claimants = other_claimants(bead_id, workspace_id, in_flight)
        if claimants:
            if invocation.jump_in:
                return Decision(
                    state=PendingDecision.OVERRIDE_APPLIED,
                    in_flight=in_flight,
                    override=OverrideDirective(
                        message=invocation.jump_in_message,
                        target_bead_id=bead_id,
                        notify_list=claimants,
                    ),
                    answered=True,
                )
            names = ", ".join(f"{item.alias} ({item.human_name})" for item in claimants)
            return Decision(
                state=PendingDecision.REJECTED,
                reason=(
                    f"{bead_id} has active claims by: {names}. "
                    'Use --:jump-in "reason" to close anyway and notify them.'
                ),
                in_flight=in_flight,
                answered=True,
            )

    return Decision(state=PendingDecision.APPROVED, in_flight=in_flight, answered=True)


def other_claimants(
    bead_id: str, workspace_id: str, in_flight: Iterable[WorkItem]
) -> tuple[WorkItem, ...]:
    return tuple(
        item for item in in_flight if item.bead_id == bead_id and item.workspace_id != workspace_id
    )


def _require_unevaluated(decision: Decision) -> None:
    if decision.state is not PendingDecision.UNEVALUATED:
        raise BdhError(
            f"pre-flight decision already evaluated ({decision.state})",
            code="INVALID_TRANSITION",
        )
