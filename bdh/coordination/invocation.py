"""Parse a bdh command line into bd arguments plus coordination directives.

Two coordination-only flags are recognised anywhere in the argument list
and never forwarded to bd:

    --:local-config <path>   use a specific .beadhub file
    --:jump-in <message>     override a rejection and notify the claimants

Both also accept the ``--flag=value`` form. A value is only consumed when
the next token does not look like a flag.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from bdh.infra.errors import InvalidInvocationError

LOCAL_CONFIG_FLAG = "--:local-config"
JUMP_IN_FLAG = "--:jump-in"

# bd global flags that take a separate value before the subcommand.
_GLOBAL_FLAGS_WITH_VALUE = ("--db", "--actor", "--lock-timeout")
_MUTATING_COMMANDS = frozenset({"create", "close", "delete", "reopen", "dep", "sync"})
_IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class CommandInvocation:
    raw: tuple[str, ...]
    args: tuple[str, ...]
    local_config_path: str | None = None
    jump_in: bool = False
    jump_in_message: str = ""

    @property
    def command_line(self) -> str:
        return " ".join(self.args)

    @property
    def json_mode(self) -> bool:
        return "--json" in self.args

    @property
    def command(self) -> str:
        index = _command_index(self.args)
        return "" if index is None else self.args[index]

    @property
    def bead_id(self) -> str:
        """Target id of ``update``/``close``: the token right after the subcommand."""
        index = _command_index(self.args)
        if index is None or self.args[index] not in ("update", "close"):
            return ""
        if index + 1 < len(self.args):
            return self.args[index + 1]
        return ""

    @property
    def is_close(self) -> bool:
        return self.command == "close"

    @property
    def is_ready(self) -> bool:
        return self.command == "ready"

    @property
    def is_claim(self) -> bool:
        """``update <id>`` that moves the bead to in_progress."""
        index = _command_index(self.args)
        if index is None or self.args[index] != "update":
            return False
        rest = self.args[index + 1 :]
        if not rest:
            return False
        for position, arg in enumerate(rest):
            if arg in ("--status", "-s") and position + 1 < len(rest):
                if rest[position + 1] == _IN_PROGRESS:
                    return True
            if arg.startswith("--status=") and arg.removeprefix("--status=") == _IN_PROGRESS:
                return True
        return False

    @property
    def is_mutation(self) -> bool:
        command = self.command
        if command == "update":
            return self.is_claim
        return command in _MUTATING_COMMANDS


def parse_invocation(tokens: Sequence[str]) -> CommandInvocation:
    """Strip coordination flags and validate what is left.

    Raises InvalidInvocationError when no bd command remains or when
    ``--:jump-in`` is given without a message.
    """
    raw = tuple(tokens)
    args, local_config, _ = _extract_flag(raw, LOCAL_CONFIG_FLAG)
    args, message, jump_in = _extract_flag(args, JUMP_IN_FLAG)
    if not args:
        raise InvalidInvocationError("no command provided")
    message = (message or "").strip()
    if jump_in and not message:
        raise InvalidInvocationError("--:jump-in requires a message explaining why you're joining")
    return CommandInvocation(
        raw=raw,
        args=args,
        local_config_path=local_config or None,
        jump_in=jump_in,
        jump_in_message=message,
    )


def _extract_flag(tokens: Sequence[str], flag: str) -> tuple[tuple[str, ...], str | None, bool]:
    cleaned: list[str] = []
    value: str | None = None
    found = False
    prefix = f"{flag}="
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token.startswith(prefix):
            found = True
            value = token.removeprefix(prefix)
        elif token == flag:
            found = True
            if index < len(tokens) and not tokens[index].startswith("-"):
                value = tokens[index]
                index += 1
        else:
            cleaned.append(token)
    return tuple(cleaned), value, found


def _command_index(args: Sequence[str]) -> int | None:
    """Index of the bd subcommand, skipping leading global flags."""
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            index += 1
            break
        if not arg.startswith("-"):
            break
        index += 1
        takes_value = arg in _GLOBAL_FLAGS_WITH_VALUE
        if takes_value and index < len(args) and not args[index].startswith("-"):
            index += 1
    if index >= len(args):
        return None
    return index
