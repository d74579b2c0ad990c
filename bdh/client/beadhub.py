"""Synchronous HTTP client for the BeadHub coordination service.

Every call is bounded by a timeout. Transport failures surface as
BeadHubUnreachableError and non-2xx answers as BeadHubHTTPError, so callers
can apply their own blocking or non-blocking policy per operation.
"""

from __future__ import annotations

import json
from typing import Any, Self, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from bdh import __version__
from bdh.client.models import (
    CommandRequest,
    CommandResponse,
    ReservationList,
    ReservationRecord,
    SyncRequest,
    SyncResponse,
    WorkspaceList,
)
from bdh.constants import MAX_RESPONSE_BYTES
from bdh.infra.errors import (
    BeadHubError,
    BeadHubHTTPError,
    BeadHubUnreachableError,
    ReservationHeldError,
)

logger = structlog.get_logger()

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class BeadHubClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {
            "Accept": "application/json",
            "User-Agent": f"bdh/{__version__}",
        }
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---- bdh endpoints ----

    def command(self, request: CommandRequest) -> CommandResponse:
        """Pre-flight approval for a bd command line."""
        payload = self._request(
            "POST", "/v1/bdh/command", json_body=request.model_dump(exclude_none=True)
        )
        return _parse(CommandResponse, payload, "/v1/bdh/command")

    def sync(self, request: SyncRequest) -> SyncResponse:
        payload = self._request(
            "POST", "/v1/bdh/sync", json_body=request.model_dump(exclude_none=True)
        )
        return _parse(SyncResponse, payload, "/v1/bdh/sync")

    def team_workspaces(
        self,
        *,
        always_include_workspace_id: str,
        limit: int,
        include_claims: bool = True,
        include_presence: bool = True,
        only_with_claims: bool = False,
        timeout: float | None = None,
    ) -> WorkspaceList:
        params = {
            "include_claims": _bool_param(include_claims),
            "include_presence": _bool_param(include_presence),
            "only_with_claims": _bool_param(only_with_claims),
            "always_include_workspace_id": always_include_workspace_id,
            "limit": str(limit),
        }
        payload = self._request("GET", "/v1/workspaces/team", params=params, timeout=timeout)
        return _parse(WorkspaceList, payload, "/v1/workspaces/team")

    # ---- reservations ----

    def reservation_list(self, *, timeout: float | None = None) -> list[ReservationRecord]:
        payload = self._request("GET", "/v1/reservations", timeout=timeout)
        return _parse(ReservationList, payload, "/v1/reservations").reservations

    def reservation_acquire(
        self,
        resource_key: str,
        *,
        ttl_seconds: int,
        reason: str,
    ) -> dict[str, Any]:
        """Acquire a lease on *resource_key*.

        Raises ReservationHeldError when the service reports another holder.
        """
        body = {
            "resource_key": resource_key,
            "ttl_seconds": ttl_seconds,
            "metadata": {"reason": reason},
        }
        try:
            return self._request("POST", "/v1/reservations", json_body=body)
        except BeadHubHTTPError as exc:
            if exc.status_code != 409:
                raise
            holder = _holder_from_conflict(exc.body)
            if holder is None:
                raise
            raise ReservationHeldError(holder[0], holder[1], exc.body) from exc

    def reservation_renew(self, resource_key: str, *, ttl_seconds: int) -> dict[str, Any]:
        body = {"resource_key": resource_key, "ttl_seconds": ttl_seconds}
        return self._request("POST", "/v1/reservations/renew", json_body=body)

    def reservation_release(self, resource_key: str) -> dict[str, Any]:
        body = {"resource_key": resource_key}
        return self._request("POST", "/v1/reservations/release", json_body=body)

    # ---- messaging ----

    def send_message(self, to_workspace_id: str, body: str) -> dict[str, Any]:
        payload = {"to_agent_id": to_workspace_id, "body": body}
        return self._request("POST", "/v1/messages", json_body=payload)

    # ---- transport ----

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        request_timeout = httpx.USE_CLIENT_DEFAULT if timeout is None else timeout
        try:
            with self._http.stream(
                method,
                path,
                json=json_body,
                params=params,
                timeout=request_timeout,
            ) as response:
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > MAX_RESPONSE_BYTES:
                        raise BeadHubError(
                            f"response exceeds maximum size of {MAX_RESPONSE_BYTES} bytes",
                            code="INVALID_RESPONSE",
                        )
                status_code = response.status_code
        except httpx.TimeoutException as exc:
            raise BeadHubUnreachableError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise BeadHubUnreachableError(f"{method} {path} failed: {exc}") from exc
        except httpx.RequestError as exc:
            raise BeadHubError(
                f"{method} {path} failed: {exc}", code="INVALID_RESPONSE"
            ) from exc

        text = body.decode("utf-8", errors="replace")
        logger.debug("beadhub_response", method=method, path=path, status=status_code)
        if not 200 <= status_code < 300:
            raise BeadHubHTTPError(status_code, text)
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise BeadHubError(
                f"decoding response from {path}: {exc}", code="INVALID_RESPONSE"
            ) from exc


def _parse(model: type[_ModelT], payload: Any, path: str) -> _ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise BeadHubError(
            f"unexpected response from {path}: {exc.error_count()} validation error(s)",
            code="INVALID_RESPONSE",
        ) from exc


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


def _holder_from_conflict(body: str) -> tuple[str, str] | None:
    """Extract (holder_alias, expires_at) from a 409 body, if it names a holder."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    candidates = [payload]
    if isinstance(payload, dict) and isinstance(payload.get("detail"), dict):
        candidates.append(payload["detail"])
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        holder = candidate.get("holder_alias")
        if isinstance(holder, str) and holder:
            expires_at = candidate.get("expires_at")
            return holder, expires_at if isinstance(expires_at, str) else ""
    return None
