"""Supabase-backed election store."""

import asyncio
from dataclasses import dataclass

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ballot_builder.adapters.election_store import ElectionStore
from ballot_builder.domain.elections import (
    ElectionRecord,
    ElectionRejectedError,
    ElectionStoreUnavailableError,
)

# PostgREST reports connection and pool exhaustion problems as PGRST00x.
_TRANSIENT_CODE_PREFIX = "PGRST00"


@dataclass
class SupabaseElectionStore(ElectionStore):
    """Supabase implementation for persisted elections."""

    client: Client

    async def create(self, record: ElectionRecord) -> str:
        """Upsert the election row keyed by the record id."""
        return await asyncio.to_thread(self._upsert, record)

    async def get(self, election_id: str) -> dict[str, object] | None:
        """Return an election row by id, if present."""
        return await asyncio.to_thread(self._select, election_id)

    def _upsert(self, record: ElectionRecord) -> str:
        payload = record.to_store_payload()
        payload["created_at"] = record.created_at.isoformat()
        try:
            response = (
                self.client.table("elections")
                .upsert(payload, on_conflict="id")
                .execute()
            )
        except APIError as exc:
            raise _store_error(exc) from exc
        except httpx.HTTPError as exc:
            raise ElectionStoreUnavailableError(
                f"Supabase unreachable: {exc}"
            ) from exc
        if not response.data:
            raise ElectionStoreUnavailableError("Failed to store election")
        return str(response.data[0]["id"])

    def _select(self, election_id: str) -> dict[str, object] | None:
        try:
            response = (
                self.client.table("elections")
                .select(
                    "id, title, description, questions, start_at, end_at, "
                    "seat_count, payment_intent_id, created_at"
                )
                .eq("id", election_id)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            raise _store_error(exc) from exc
        except httpx.HTTPError as exc:
            raise ElectionStoreUnavailableError(
                f"Supabase unreachable: {exc}"
            ) from exc
        if not response.data:
            return None
        return response.data[0]


def _store_error(
    exc: APIError,
) -> ElectionRejectedError | ElectionStoreUnavailableError:
    code = str(exc.code) if exc.code is not None else None
    message = exc.message or str(exc)
    if code is not None and code.startswith(_TRANSIENT_CODE_PREFIX):
        return ElectionStoreUnavailableError(message, code=code)
    return ElectionRejectedError(message, code=code)
