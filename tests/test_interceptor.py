"""End-to-end tests for CommandInterceptor with fake bd/git and a mock BeadHub.

Covers:
- running without a .beadhub file, and --:jump-in refused without one
- rejection blocks bd and exits 1; jump-in overrides and notifies claimants
- close gating on other claimants
- 410 aborts, other service failures degrade to a warning
- sync only after a successful mutation
- ready context, auto-reserve, and related work wiring
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from bdh.client.beadhub import BeadHubClient
from bdh.config.settings import BeadHubSettings
from bdh.config.workspace import LoadedWorkspace
from bdh.coordination.interceptor import CommandInterceptor
from bdh.infra.errors import ConfigError, InvalidInvocationError, WorkspaceGoneError
from bdh.process.runner import ProcessResult

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
MY_WS = "11111111-2222-3333-4444-555555555555"
OTHER_WS = "99999999-8888-7777-6666-555555555555"
WriteWorkspace = Callable[..., Path]


class FakeBd:
    def __init__(self, result: ProcessResult | None = None, issues: str = "") -> None:
        self.result = result or ProcessResult("ok\n", "", 0)
        self.issues = issues or '{"id":"bd-1","title":"one"}\n'
        self.calls: list[list[str]] = []
        self.exports: list[Path] = []

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult:
        self.calls.append(list(args))
        return self.result

    def export(self, path: Path, options: Sequence[str] = ()) -> int:
        self.exports.append(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.issues, "utf-8")
        return 0


class FakeGit:
    def __init__(
        self,
        repo_root: Path,
        status: str = "",
        origin: str | None = "git@github.com:org/repo.git",
    ) -> None:
        self.repo_root = repo_root
        self.status = status
        self.origin = origin
        self.calls: list[list[str]] = []

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: Path | None = None,
    ) -> ProcessResult:
        args = list(args)
        self.calls.append(args)
        if args[:2] == ["rev-parse", "--show-toplevel"]:
            return ProcessResult(f"{self.repo_root}\n", "", 0)
        if args[:2] == ["rev-parse", "--git-common-dir"]:
            return ProcessResult(f"{self.repo_root / '.git'}\n", "", 0)
        if args == ["remote", "get-url", "origin"]:
            if self.origin is None:
                return ProcessResult("", "error: No such remote 'origin'\n", 2)
            return ProcessResult(f"{self.origin}\n", "", 0)
        if "status" in args:
            return ProcessResult(self.status, "", 0)
        raise AssertionError(f"unexpected git call: {args}")

    def export(self, path: Path, options: Sequence[str] = ()) -> int:
        raise AssertionError("git never exports")


class FakeHub:
    """Routes BeadHub API calls to canned answers and records them."""

    def __init__(self) -> None:
        self.command: dict[str, Any] = {"approved": True}
        self.command_status = 200
        self.reservations: list[dict[str, Any]] = []
        self.team: dict[str, Any] = {"workspaces": [], "count": 0}
        self.unreachable = False
        self.requests: list[tuple[str, str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/v1/bdh/command":
            return httpx.Response(self.command_status, json=self.command)
        if path == "/v1/bdh/sync":
            return httpx.Response(
                200, json={"synced": True, "issues_count": 1, "sync_protocol_version": 1}
            )
        if path == "/v1/reservations" and request.method == "GET":
            return httpx.Response(200, json={"reservations": self.reservations})
        if path.startswith("/v1/reservations"):
            return httpx.Response(200, json={})
        if path == "/v1/workspaces/team":
            return httpx.Response(200, json=self.team)
        if path == "/v1/messages":
            return httpx.Response(200, json={"id": "msg-1"})
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [path for _, path, _ in self.requests]

    def bodies(self, path: str) -> list[Any]:
        return [body for _, request_path, body in self.requests if request_path == path]


@pytest.fixture()
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture()
def workspace_root(repo_root: Path, write_workspace: WriteWorkspace) -> Path:
    write_workspace()
    (repo_root / ".beads").mkdir()
    return repo_root


def _interceptor(
    cwd: Path,
    hub: FakeHub,
    bd: FakeBd,
    git: FakeGit | None = None,
    beadhub: BeadHubSettings | None = None,
) -> CommandInterceptor:
    def factory(workspace: LoadedWorkspace) -> BeadHubClient:
        return BeadHubClient(workspace.config.beadhub_url, transport=httpx.MockTransport(hub))

    return CommandInterceptor(
        bd=bd,
        git=git or FakeGit(cwd),
        client_factory=factory,
        beadhub=beadhub,
        cwd=cwd,
        clock=lambda: NOW,
    )


def _in_flight(bead_id: str, workspace_id: str = OTHER_WS, alias: str = "bob") -> dict[str, Any]:
    return {
        "bead_id": bead_id,
        "workspace_id": workspace_id,
        "alias": alias,
        "human_name": "Bob",
        "title": "Their work",
    }


class TestWithoutConfig:
    def test_runs_bd_with_warning(self, repo_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        result = _interceptor(repo_root, hub, bd).run(["list"])
        assert result.warning == "No .beadhub config found - running without coordination"
        assert bd.calls == [["list"]]
        assert result.stdout == "ok\n"
        assert hub.requests == []

    def test_jump_in_needs_config(self, repo_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        with pytest.raises(InvalidInvocationError, match="requires a configured workspace"):
            _interceptor(repo_root, hub, bd).run(["close", "bd-1", "--:jump-in", "reason"])
        assert bd.calls == []

    def test_invalid_invocation_before_anything(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        with pytest.raises(InvalidInvocationError):
            _interceptor(workspace_root, hub, bd).run(["close", "bd-1", "--:jump-in"])
        assert bd.calls == []
        assert hub.requests == []


class TestRepoBinding:
    def test_matching_https_origin_coordinates(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        git = FakeGit(workspace_root, origin="https://GitHub.com/org/repo.git")
        _interceptor(workspace_root, hub, bd, git).run(["list"])
        assert ["remote", "get-url", "origin"] in git.calls
        assert bd.calls == [["list"]]
        assert "/v1/bdh/command" in hub.paths()

    def test_mismatch_stops_before_preflight(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        git = FakeGit(workspace_root, origin="git@github.com:other/project.git")
        with pytest.raises(ConfigError, match="workspace repo mismatch") as exc_info:
            _interceptor(workspace_root, hub, bd, git).run(["list"])
        assert "github.com/other/project" in str(exc_info.value)
        assert bd.calls == []
        assert hub.requests == []

    def test_env_origin_takes_precedence(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        settings = BeadHubSettings(repo_origin="https://gitlab.com/org/repo")
        with pytest.raises(ConfigError, match="mismatch"):
            _interceptor(workspace_root, hub, bd, beadhub=settings).run(["list"])

    def test_skip_flag_bypasses_check(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        git = FakeGit(workspace_root, origin="git@github.com:other/project.git")
        settings = BeadHubSettings(skip_repo_check=True)
        _interceptor(workspace_root, hub, bd, git, beadhub=settings).run(["list"])
        assert ["remote", "get-url", "origin"] not in git.calls
        assert bd.calls == [["list"]]

    def test_no_origin_remote_skips_check(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        _interceptor(workspace_root, hub, bd, FakeGit(workspace_root, origin=None)).run(["list"])
        assert bd.calls == [["list"]]


class TestPreflight:
    def test_approved_runs_bd(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(["list", "--:local-config=.beadhub"])
        assert bd.calls == [["list"]]
        assert result.alias == "claude-1"
        assert result.process_exit_code == 0
        command = hub.bodies("/v1/bdh/command")[0]
        assert command["command_line"] == "list"
        assert command["workspace_id"] == MY_WS

    def test_rejection_blocks_bd(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command = {
            "approved": False,
            "reason": "bd-1 is being worked on by bob",
            "context": {"beads_in_progress": [_in_flight("bd-1")]},
        }
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(
            ["update", "bd-1", "--status", "in_progress"]
        )
        assert result.rejected
        assert result.rejection_reason == "bd-1 is being worked on by bob"
        assert result.process_exit_code == 1
        assert [item.alias for item in result.beads_in_progress] == ["bob"]
        assert bd.calls == []
        assert hub.paths() == ["/v1/bdh/command"]

    def test_workspace_gone(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command_status = 410
        bd = FakeBd()
        with pytest.raises(WorkspaceGoneError):
            _interceptor(workspace_root, hub, bd).run(["list"])
        assert bd.calls == []

    def test_server_error_degrades(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command_status = 503
        bd = FakeBd(ProcessResult("", "bd failed\n", 2))
        result = _interceptor(workspace_root, hub, bd).run(["list"])
        assert result.warning == "BeadHub error (503) - running without coordination"
        assert bd.calls == [["list"]]
        assert result.process_exit_code == 2

    def test_unreachable_degrades(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.unreachable = True
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(["create", "thing"])
        assert result.warning == (
            "BeadHub unreachable at http://beadhub.test - running without coordination"
        )
        assert bd.calls == [["create", "thing"]]
        assert result.sync is not None
        assert result.sync.warning.startswith("sync failed - changes saved locally only")
        assert result.auto_reserve is not None
        assert "unable to list current locks" in result.auto_reserve.warning
        assert result.process_exit_code == 0


class TestJumpIn:
    def test_override_runs_bd_and_notifies(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command = {
            "approved": False,
            "reason": "claimed",
            "context": {"beads_in_progress": [_in_flight("bd-1")]},
        }
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(
            ["update", "bd-1", "--status", "in_progress", "--:jump-in", "pairing on this"]
        )
        assert not result.rejected
        assert bd.calls == [["update", "bd-1", "--status", "in_progress"]]
        assert result.notified == [OTHER_WS]
        assert hub.bodies("/v1/messages") == [
            {"to_agent_id": OTHER_WS, "body": "claude-1 is joining work on bd-1: pairing on this"}
        ]
        # The jump-in flag is never part of the command line sent upstream.
        assert hub.bodies("/v1/bdh/command")[0]["command_line"] == (
            "update bd-1 --status in_progress"
        )


class TestCloseGating:
    def test_close_claimed_elsewhere_is_rejected(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command = {"approved": True, "context": {"beads_in_progress": [_in_flight("bd-1")]}}
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(["close", "bd-1"])
        assert result.rejected
        assert result.rejection_reason.startswith("bd-1 has active claims by: bob (Bob).")
        assert result.process_exit_code == 1
        assert bd.calls == []

    def test_close_with_jump_in_notifies(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command = {"approved": True, "context": {"beads_in_progress": [_in_flight("bd-1")]}}
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(
            ["close", "bd-1", "--:jump-in", "fixed upstream"]
        )
        assert bd.calls == [["close", "bd-1"]]
        assert result.notified == [OTHER_WS]


class TestSync:
    def test_mutation_syncs(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(["create", "New thing"])
        assert bd.exports == [workspace_root.resolve() / ".beads" / "issues.jsonl"]
        assert result.sync is not None and result.sync.synced
        assert hub.bodies("/v1/bdh/sync")[0]["sync_mode"] == "full"
        assert (workspace_root / ".beadhub-cache" / "sync-state.json").exists()

    def test_read_only_command_does_not_sync(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd()
        result = _interceptor(workspace_root, hub, bd).run(["show", "bd-1"])
        assert result.sync is None
        assert bd.exports == []
        assert "/v1/bdh/sync" not in hub.paths()

    def test_failed_bd_does_not_sync(self, workspace_root: Path, hub: FakeHub) -> None:
        bd = FakeBd(ProcessResult("", "error: no such issue\n", 1))
        result = _interceptor(workspace_root, hub, bd).run(["close", "bd-404"])
        assert result.sync is None
        assert result.process_exit_code == 1
        assert bd.exports == []


class TestContextFeatures:
    def test_auto_reserve_locks_modified_files(self, workspace_root: Path, hub: FakeHub) -> None:
        git = FakeGit(workspace_root, status=" M src/app.py\0?? scratch.txt\0")
        result = _interceptor(workspace_root, hub, FakeBd(), git).run(["list"])
        assert result.auto_reserve is not None
        assert result.auto_reserve.acquired == ["src/app.py"]
        assert hub.bodies("/v1/reservations")[-1] == {
            "resource_key": "src/app.py",
            "ttl_seconds": 300,
            "metadata": {"reason": "auto-reserve"},
        }

    def test_auto_reserve_disabled_in_config(
        self, repo_root: Path, write_workspace: WriteWorkspace, hub: FakeHub
    ) -> None:
        write_workspace(auto_reserve=False)
        git = FakeGit(repo_root, status=" M src/app.py\0")
        result = _interceptor(repo_root, hub, FakeBd(), git).run(["list"])
        assert result.auto_reserve is None
        assert not any(path.startswith("/v1/reservations") for path in hub.paths())

    def test_ready_fetches_team_context(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.team = {
            "workspaces": [
                {"workspace_id": MY_WS, "alias": "claude-1", "claims": [{"bead_id": "bd-7"}]},
            ],
            "count": 1,
        }
        result = _interceptor(workspace_root, hub, FakeBd()).run(["ready"])
        assert result.ready is not None
        assert [claim.bead_id for claim in result.ready.my_claims] == ["bd-7"]
        # Team context is gathered before reservations are reconciled.
        paths = hub.paths()
        assert paths.index("/v1/workspaces/team") < paths.index("/v1/reservations")

    def test_related_work_after_close(self, workspace_root: Path, hub: FakeHub) -> None:
        hub.command = {"approved": True, "context": {"beads_in_progress": [_in_flight("bd-2")]}}
        issues = "\n".join(
            [
                json.dumps({"id": "bd-1", "title": "one"}),
                json.dumps(
                    {
                        "id": "bd-2",
                        "title": "two",
                        "dependencies": [
                            {"issue_id": "bd-2", "depends_on_id": "bd-1", "type": "blocks"}
                        ],
                    }
                ),
            ]
        )
        result = _interceptor(workspace_root, hub, FakeBd(issues=issues)).run(["close", "bd-1"])
        assert [item.bead_id for item in result.related_work] == ["bd-2"]
        assert result.related_work[0].relation == "blocked by bd-1"
