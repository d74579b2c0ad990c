"""Custom exception hierarchy for bdh.

All application-specific exceptions inherit from BdhError, which carries
an error code. Only fatal conditions are raised; degraded coordination is
reported as a warning on the command result instead.
"""

from __future__ import annotations


class BdhError(Exception):
    """Base exception for all bdh errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ConfigError(BdhError):
    """The .beadhub workspace file or environment settings are invalid."""

    def __init__(self, message: str, *, code: str = "CONFIG_ERROR") -> None:
        super().__init__(message, code=code)


class InvalidInvocationError(BdhError):
    """The command line cannot be executed as given."""

    def __init__(self, message: str, *, code: str = "INVALID_INVOCATION") -> None:
        super().__init__(message, code=code)


class WorkspaceGoneError(BdhError):
    """The coordination service no longer knows this workspace."""

    def __init__(
        self,
        message: str = "workspace was deleted. Run 'bdh :init' to re-register",
    ) -> None:
        super().__init__(message, code="WORKSPACE_GONE")


class ProcessError(BdhError):
    """An external binary could not be launched or timed out."""

    def __init__(self, message: str, *, code: str = "PROCESS_ERROR") -> None:
        super().__init__(message, code=code)


class BeadHubError(BdhError):
    """Errors talking to the BeadHub coordination service."""

    def __init__(self, message: str, *, code: str = "BEADHUB_ERROR") -> None:
        super().__init__(message, code=code)


class BeadHubUnreachableError(BeadHubError):
    """Connection refused, DNS failure, or timeout."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="BEADHUB_UNREACHABLE")


class BeadHubHTTPError(BeadHubError):
    """The service answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", *, code: str = "HTTP_ERROR") -> None:
        detail = body.strip()
        message = f"HTTP {status_code}"
        if detail:
            message = f"{message}: {detail[:200]}"
        super().__init__(message, code=code)
        self.status_code = status_code
        self.body = body


class ReservationHeldError(BeadHubHTTPError):
    """A reservation acquire was refused because another holder has the path."""

    def __init__(self, holder_alias: str, expires_at: str, body: str = "") -> None:
        super().__init__(409, body, code="RESERVATION_HELD")
        self.holder_alias = holder_alias
        self.expires_at = expires_at
