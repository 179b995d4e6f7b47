"""Domain models for persisted elections."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum

from ballot_builder.domain.ballots import BallotDraft


class PersistenceOrigin(StrEnum):
    """Where an election record is currently stored."""

    REMOTE = "remote"
    LOCAL_FALLBACK = "local_fallback"


@dataclass(frozen=True)
class ElectionRecord:
    """A paid-for election and the draft it was created from."""

    id: str
    snapshot: BallotDraft
    payment_intent_id: str
    created_at: datetime
    persistence_origin: PersistenceOrigin

    def to_store_payload(self) -> dict[str, object]:
        """Build the request body sent to the election store."""
        return {
            "id": self.id,
            **self.snapshot.canonical_payload(),
            "payment_intent_id": self.payment_intent_id,
        }

    def as_remote(self, record_id: str | None = None) -> "ElectionRecord":
        """Return a copy acknowledged by the remote store."""
        return replace(
            self,
            id=record_id or self.id,
            persistence_origin=PersistenceOrigin.REMOTE,
        )


class ElectionStoreError(Exception):
    """Base error raised by election store adapters."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ElectionStoreUnavailableError(ElectionStoreError):
    """The store could not be reached or failed server-side."""


class ElectionRejectedError(ElectionStoreError):
    """The store definitively refused the record."""
