"""Replays locally committed elections into the election store."""

import asyncio
import logging
from dataclasses import dataclass, field

from ballot_builder.adapters.election_store import ElectionStore
from ballot_builder.adapters.fallback_ledger import FallbackLedger
from ballot_builder.domain.elections import (
    ElectionRejectedError,
    ElectionStoreUnavailableError,
    PersistenceOrigin,
)

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationReport:
    """Result of a single reconciliation pass."""

    synced: list[str]
    pending: list[str]
    rejected: list[str]
    skipped: list[str]

    @property
    def converged(self) -> bool:
        return not self.pending and not self.rejected and not self.skipped


@dataclass
class ReconciliationService:
    """Pushes unsynced ledger records to the store using their original ids.

    A pass is idempotent: the store deduplicates by id, and a record that is
    already being pushed by a concurrent pass is skipped.
    """

    store: ElectionStore
    ledger: FallbackLedger
    evict_synced: bool = False
    _in_flight: set[str] = field(default_factory=set, init=False, repr=False)

    async def run_once(self) -> ReconciliationReport:
        """Attempt to sync every unsynced record once."""
        synced: list[str] = []
        pending: list[str] = []
        rejected: list[str] = []
        skipped: list[str] = []
        for record in self.ledger.get_all_unsynced():
            if record.id in self._in_flight:
                skipped.append(record.id)
                continue
            current = self.ledger.get(record.id)
            if (
                current is None
                or current.persistence_origin is PersistenceOrigin.REMOTE
            ):
                continue
            self._in_flight.add(record.id)
            try:
                await self.store.create(record)
            except ElectionStoreUnavailableError as exc:
                _logger.info("Election %s still unsynced: %s", record.id, exc)
                pending.append(record.id)
                continue
            except ElectionRejectedError as exc:
                _logger.error(
                    "Store rejected fallback election %s (intent %s): %s",
                    record.id,
                    record.payment_intent_id,
                    exc.message,
                )
                rejected.append(record.id)
                continue
            finally:
                self._in_flight.discard(record.id)

            self.ledger.mark_synced(record.id)
            if self.evict_synced:
                self.ledger.evict(record.id)
            synced.append(record.id)

        if synced or pending or rejected:
            _logger.info(
                "Reconciliation pass: synced=%s pending=%s rejected=%s skipped=%s",
                len(synced),
                len(pending),
                len(rejected),
                len(skipped),
            )
        return ReconciliationReport(
            synced=synced, pending=pending, rejected=rejected, skipped=skipped
        )

    async def run_forever(self, interval_seconds: float) -> None:
        """Run passes periodically until cancelled."""
        while True:
            try:
                await self.run_once()
            except Exception:
                _logger.exception("Reconciliation pass failed")
            await asyncio.sleep(interval_seconds)
