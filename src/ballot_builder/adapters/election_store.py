"""Election store API client."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from ballot_builder.domain.elections import (
    ElectionRecord,
    ElectionRejectedError,
    ElectionStoreUnavailableError,
)

_logger = logging.getLogger(__name__)

_NOT_FOUND = 404
_CONFLICT = 409
_SERVER_ERROR = 500


class ElectionStore(Protocol):
    """Interface for the backend that owns persisted elections."""

    async def create(self, record: ElectionRecord) -> str:
        """Persist a record and return the id the store keeps it under."""

    async def get(self, election_id: str) -> dict[str, object] | None:
        """Fetch a stored election, if present."""


@dataclass
class HttpxElectionStore(ElectionStore):
    """HTTPX-backed election store client."""

    base_url: str
    http_client: httpx.AsyncClient
    api_token: str | None = None

    @classmethod
    def create_client(
        cls, base_url: str, api_token: str | None = None
    ) -> "HttpxElectionStore":
        """Create a store client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            api_token=api_token,
        )

    async def create(self, record: ElectionRecord) -> str:
        """POST the record; a 409 means the id is already stored."""
        try:
            response = await self.http_client.post(
                f"{self.base_url}/elections",
                json=record.to_store_payload(),
                headers=self._headers(),
                timeout=10,
            )
        except httpx.RequestError as exc:
            raise ElectionStoreUnavailableError(
                f"Election store unreachable: {exc}"
            ) from exc

        if response.status_code == _CONFLICT:
            _logger.info("Election %s already stored", record.id)
            return record.id
        if response.status_code >= _SERVER_ERROR:
            raise ElectionStoreUnavailableError(
                f"Election store returned {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            code, message = _error_details(response)
            raise ElectionRejectedError(
                message, code=code, status_code=response.status_code
            )
        body = _json_or_empty(response)
        return str(body.get("id") or record.id)

    async def get(self, election_id: str) -> dict[str, object] | None:
        """Fetch an election by id."""
        try:
            response = await self.http_client.get(
                f"{self.base_url}/elections/{election_id}",
                headers=self._headers(),
                timeout=10,
            )
        except httpx.RequestError as exc:
            raise ElectionStoreUnavailableError(
                f"Election store unreachable: {exc}"
            ) from exc
        if response.status_code == _NOT_FOUND:
            return None
        if response.status_code >= _SERVER_ERROR:
            raise ElectionStoreUnavailableError(
                f"Election store returned {response.status_code}",
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    def _headers(self) -> dict[str, str]:
        if self.api_token is None:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}


def _json_or_empty(response: httpx.Response) -> dict[str, object]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    """Return (code, message) from a rejection body."""
    body = _json_or_empty(response)
    error = body.get("error")
    code = None
    if isinstance(error, str):
        code = error
    elif isinstance(error, dict):
        code = error.get("code")
    code = code or body.get("code")
    message = body.get("message")
    if not message and isinstance(error, dict):
        message = error.get("message")
    return (
        str(code) if code is not None else None,
        str(message or f"Election store rejected the request ({response.status_code})"),
    )
