from datetime import UTC, datetime, timedelta

import pytest

from ballot_builder.adapters.fallback_ledger import FileFallbackLedger
from ballot_builder.domain.ballots import BallotDraft, VotingWindow
from ballot_builder.domain.elections import ElectionRecord, PersistenceOrigin
from tests.conftest import ELECTION_END, ELECTION_START, two_questions


def _record(record_id: str, minutes: int = 0) -> ElectionRecord:
    return ElectionRecord(
        id=record_id,
        snapshot=BallotDraft(
            title="Annual board election",
            description="Vote for the new board",
            questions=tuple(two_questions()),
            duration=VotingWindow(ELECTION_START, ELECTION_END),
            seat_count=10,
        ),
        payment_intent_id=f"pi_{record_id}",
        created_at=datetime(2024, 11, 1, tzinfo=UTC) + timedelta(minutes=minutes),
        persistence_origin=PersistenceOrigin.LOCAL_FALLBACK,
    )


def test_put_and_get_round_trip(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path / "ledger")
    record = _record("e-1")

    ledger.put(record)

    assert ledger.get("e-1") == record
    assert ledger.get("missing") is None


def test_put_leaves_no_temporary_files(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)

    ledger.put(_record("e-1"))
    ledger.put(_record("e-1", minutes=5))

    assert [path.name for path in tmp_path.iterdir()] == ["e-1.json"]


def test_unsynced_records_are_sorted_and_survive_restart(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)
    ledger.put(_record("late", minutes=10))
    ledger.put(_record("early", minutes=1))

    reopened = FileFallbackLedger(tmp_path)

    assert [record.id for record in reopened.get_all_unsynced()] == [
        "early",
        "late",
    ]


def test_mark_synced_hides_record_from_unsynced(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)
    ledger.put(_record("e-1"))

    synced = ledger.mark_synced("e-1")

    assert synced is not None
    assert synced.persistence_origin is PersistenceOrigin.REMOTE
    assert ledger.get_all_unsynced() == []
    assert ledger.get("e-1") == synced
    assert ledger.mark_synced("missing") is None


def test_evict_removes_record(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)
    ledger.put(_record("e-1"))

    ledger.evict("e-1")
    ledger.evict("e-1")

    assert ledger.get("e-1") is None


def test_unreadable_entries_are_skipped(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)
    ledger.put(_record("e-1"))
    (tmp_path / "broken.json").write_text("{not json")

    assert [record.id for record in ledger.get_all_unsynced()] == ["e-1"]


def test_unsafe_ids_are_refused(tmp_path) -> None:
    ledger = FileFallbackLedger(tmp_path)

    with pytest.raises(ValueError):
        ledger.get("../escape")
