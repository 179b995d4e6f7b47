"""Persisting paid-for elections with a local fallback."""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from ballot_builder.adapters.election_store import ElectionStore
from ballot_builder.adapters.fallback_ledger import FallbackLedger
from ballot_builder.domain.ballots import BallotDraft
from ballot_builder.domain.elections import (
    ElectionRecord,
    ElectionRejectedError,
    ElectionStoreUnavailableError,
    PersistenceOrigin,
)
from ballot_builder.domain.payments import PaymentAuthorization, PaymentStatus
from ballot_builder.domain.workflow import InconsistentStateError
from ballot_builder.services.retry import call_with_backoff

_logger = logging.getLogger(__name__)


class CommitAbortedError(Exception):
    """Neither the store nor the local ledger accepted the record."""


@dataclass
class ElectionCommitter:
    """Writes elections to the store, falling back to the local ledger."""

    store: ElectionStore
    ledger: FallbackLedger
    attempts: int = 3
    backoff_seconds: float = 0.5
    id_factory: Callable[[], str] = field(default=lambda: str(uuid4()))

    async def commit(
        self, authorization: PaymentAuthorization, draft: BallotDraft
    ) -> ElectionRecord:
        """Persist the election paid for by a succeeded authorization.

        Raises ElectionRejectedError when the store refuses the record.
        CommitAbortedError means the record was kept nowhere: the store failed
        unexpectedly, or the ledger write failed after the store was
        unreachable.
        """
        if authorization.status is not PaymentStatus.SUCCEEDED:
            raise InconsistentStateError(
                f"Refusing to persist election for intent {authorization.intent_id} "
                f"with status {authorization.status}"
            )
        record = ElectionRecord(
            id=self.id_factory(),
            snapshot=draft,
            payment_intent_id=authorization.intent_id,
            created_at=datetime.now(tz=UTC),
            persistence_origin=PersistenceOrigin.LOCAL_FALLBACK,
        )
        try:
            stored_id = await call_with_backoff(
                lambda: self.store.create(record),
                action=f"Election store create {record.id}",
                attempts=self.attempts,
                base_delay_seconds=self.backoff_seconds,
                retry_on=(ElectionStoreUnavailableError,),
            )
        except ElectionRejectedError as exc:
            _logger.error(
                "Election rejected after payment: intent=%s code=%s message=%s "
                "snapshot=%s",
                authorization.intent_id,
                exc.code,
                exc.message,
                json.dumps(draft.canonical_payload(), sort_keys=True),
            )
            raise
        except ElectionStoreUnavailableError:
            return self._commit_locally(record)
        except Exception as exc:
            _logger.exception(
                "Election store failed unexpectedly: intent=%s snapshot=%s",
                authorization.intent_id,
                json.dumps(draft.canonical_payload(), sort_keys=True),
            )
            raise CommitAbortedError(str(exc) or type(exc).__name__) from exc

        _logger.info(
            "Election %s stored for intent %s", stored_id, authorization.intent_id
        )
        return record.as_remote(stored_id)

    def _commit_locally(self, record: ElectionRecord) -> ElectionRecord:
        try:
            self.ledger.put(record)
        except Exception as exc:
            _logger.exception(
                "Election not persisted anywhere: intent=%s snapshot=%s",
                record.payment_intent_id,
                json.dumps(record.snapshot.canonical_payload(), sort_keys=True),
            )
            raise CommitAbortedError(str(exc) or type(exc).__name__) from exc
        _logger.warning(
            "Election store unavailable; election %s kept in local ledger "
            "for intent %s",
            record.id,
            record.payment_intent_id,
        )
        return record
