"""Keep file reservations in step with the agent's uncommitted changes.

Each pass compares the paths that should be held (from working-tree
status) with what this agent holds on the service:

    to_acquire = desired - held_any
    to_renew   = desired & held_auto
    to_release = held_auto - desired

Only reservations stamped with the auto-reserve reason are ever released.
Reservations this agent took by hand, or whose provenance is unknown, are
left alone. A held reservation is taken at face value from the list
response; if its lease lapses before the renew call, the renew fails with
a warning and the next pass acquires it again.

Nothing here blocks bd: every failure degrades to a warning.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

import structlog

from bdh.client.models import ReservationRecord
from bdh.constants import AUTO_RESERVE_REASON
from bdh.infra.errors import BeadHubError, ProcessError, ReservationHeldError
from bdh.infra.timeutil import ttl_remaining_seconds
from bdh.process.git import StatusEntry, WorkingTreeStatusSource

logger = structlog.get_logger()


class ReservationClient(Protocol):
    def reservation_list(self, *, timeout: float | None = None) -> list[ReservationRecord]: ...

    def reservation_acquire(
        self, resource_key: str, *, ttl_seconds: int, reason: str
    ) -> dict[str, Any]: ...

    def reservation_renew(self, resource_key: str, *, ttl_seconds: int) -> dict[str, Any]: ...

    def reservation_release(self, resource_key: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class ReservationConflict:
    resource_key: str
    held_by: str
    retry_after_seconds: int
    expires_at: str = ""


@dataclass
class AutoReserveResult:
    acquired: list[str] = field(default_factory=list)
    renewed: list[str] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    conflicts: list[ReservationConflict] = field(default_factory=list)
    warning: str = ""

    @property
    def has_content(self) -> bool:
        return bool(
            self.warning or self.acquired or self.renewed or self.released or self.conflicts
        )


@dataclass(frozen=True)
class ReservationPlan:
    to_acquire: tuple[str, ...] = ()
    to_renew: tuple[str, ...] = ()
    to_release: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.to_acquire or self.to_renew or self.to_release)


def is_safe_path(path: str) -> bool:
    """Reject empty, absolute, or traversing paths before they become resource keys.

    Names that are not valid UTF-8 (surrogate-escaped by the git runner) are
    rejected too, since a resource key has to survive a JSON round trip.
    """
    if not path or "\0" in path:
        return False
    try:
        path.encode("utf-8")
    except UnicodeEncodeError:
        return False
    pure = PurePosixPath(path)
    return not pure.is_absolute() and ".." not in pure.parts


def desired_lock_paths(
    entries: Iterable[StatusEntry],
    *,
    reserve_untracked: bool,
    repo_root: Path | None = None,
) -> set[str]:
    """Paths that should be reserved. With *repo_root*, symlinks are resolved
    and anything landing outside the checkout is dropped.
    """
    root = repo_root.resolve() if repo_root is not None else None
    desired: set[str] = set()
    for entry in entries:
        if not entry.path:
            continue
        if entry.is_untracked and not reserve_untracked:
            continue
        if entry.is_deleted:
            continue
        if not is_safe_path(entry.path) or (
            root is not None and not (root / entry.path).resolve().is_relative_to(root)
        ):
            logger.warning("autoreserve_unsafe_path", path=repr(entry.path))
            continue
        desired.add(entry.path)
    return desired


def partition_held(
    reservations: Iterable[ReservationRecord], alias: str
) -> tuple[set[str], set[str]]:
    """Split this agent's reservations into (held_any, held_auto)."""
    held_any: set[str] = set()
    held_auto: set[str] = set()
    for reservation in reservations:
        if reservation.holder_alias != alias or not reservation.resource_key:
            continue
        held_any.add(reservation.resource_key)
        if reservation.is_auto_managed:
            held_auto.add(reservation.resource_key)
    return held_any, held_auto


def plan_reservations(
    desired: set[str], held_any: set[str], held_auto: set[str]
) -> ReservationPlan:
    return ReservationPlan(
        to_acquire=tuple(sorted(desired - held_any)),
        to_renew=tuple(sorted(desired & held_auto)),
        to_release=tuple(sorted(held_auto - desired)),
    )


class AutoReserver:
    def __init__(
        self,
        *,
        client: ReservationClient,
        status_source: WorkingTreeStatusSource,
        alias: str,
        enabled: bool = True,
        reserve_untracked: bool = False,
        ttl_seconds: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._status_source = status_source
        self._alias = alias
        self._enabled = enabled
        self._reserve_untracked = reserve_untracked
        self._ttl_seconds = ttl_seconds
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def reconcile(self) -> AutoReserveResult | None:
        """Run one reconciliation pass.

        Returns None when disabled or when there is nothing to change, in
        which case no acquire, renew, or release call is made.
        """
        if not self._enabled:
            return None

        result = AutoReserveResult()
        try:
            repo_root = self._status_source.repo_root()
        except ProcessError as exc:
            result.warning = f"Auto-reserve: git repo not detected ({exc})"
            return result
        try:
            entries = self._status_source.status(
                repo_root, include_untracked=self._reserve_untracked
            )
        except ProcessError as exc:
            result.warning = f"Auto-reserve: git status failed ({exc})"
            return result

        # An empty desired set still matters: it releases stale auto locks.
        desired = desired_lock_paths(
            entries, reserve_untracked=self._reserve_untracked, repo_root=repo_root
        )

        try:
            reservations = self._client.reservation_list()
        except BeadHubError as exc:
            result.warning = f"Auto-reserve: unable to list current locks ({exc})"
            return result

        held_any, held_auto = partition_held(reservations, self._alias)
        plan = plan_reservations(desired, held_any, held_auto)
        if plan.is_empty:
            return None
        return self._execute(plan, result, repo_root)

    def _execute(
        self, plan: ReservationPlan, result: AutoReserveResult, repo_root: Path
    ) -> AutoReserveResult:
        logger.debug(
            "autoreserve_plan",
            repo_root=str(repo_root),
            acquire=len(plan.to_acquire),
            renew=len(plan.to_renew),
            release=len(plan.to_release),
        )
        for path in plan.to_acquire:
            try:
                self._client.reservation_acquire(
                    path, ttl_seconds=self._ttl_seconds, reason=AUTO_RESERVE_REASON
                )
            except ReservationHeldError as exc:
                conflict = ReservationConflict(
                    resource_key=path,
                    held_by=exc.holder_alias,
                    retry_after_seconds=ttl_remaining_seconds(exc.expires_at, self._clock()),
                    expires_at=exc.expires_at,
                )
                logger.info("autoreserve_conflict", path=path, held_by=exc.holder_alias)
                result.conflicts.append(conflict)
                continue
            except BeadHubError as exc:
                result.warning = f"Auto-reserve: unable to acquire reservations ({exc})"
                return result
            result.acquired.append(path)

        for path in plan.to_renew:
            try:
                self._client.reservation_renew(path, ttl_seconds=self._ttl_seconds)
            except BeadHubError as exc:
                result.warning = f"Auto-reserve: unable to renew reservations ({exc})"
                return result
            result.renewed.append(path)

        for path in plan.to_release:
            try:
                self._client.reservation_release(path)
            except BeadHubError as exc:
                result.warning = f"Auto-reserve: unable to release locks ({exc})"
                return result
            result.released.append(path)

        return result
