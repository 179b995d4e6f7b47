"""Shared test fixtures."""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ballot_builder.adapters.election_store import ElectionStore
from ballot_builder.adapters.fallback_ledger import InMemoryFallbackLedger
from ballot_builder.adapters.payment_gateway import PaymentGateway
from ballot_builder.config import Settings
from ballot_builder.containers import AppContainer
from ballot_builder.domain.ballots import Pricing, Question, QuestionKind
from ballot_builder.domain.elections import (
    ElectionRecord,
    ElectionStoreUnavailableError,
)
from ballot_builder.domain.payments import (
    ConfirmationOutcome,
    ConfirmationSucceeded,
    PaymentAuthorization,
    PaymentStatus,
)
from ballot_builder.services.commit import ElectionCommitter
from ballot_builder.services.reconciliation import ReconciliationService
from ballot_builder.services.registry import WorkflowRegistry
from ballot_builder.services.workflow import BallotWorkflow

ELECTION_START = datetime(2024, 11, 5, tzinfo=UTC)
ELECTION_END = datetime(2024, 11, 12, tzinfo=UTC)


@dataclass
class FakePaymentGateway(PaymentGateway):
    """Fake gateway that reuses intents per idempotency key."""

    create_errors: list[Exception] = field(default_factory=list)
    outcomes: list[ConfirmationOutcome | Exception] = field(
        default_factory=lambda: [ConfirmationSucceeded()]
    )
    cancel_error: Exception | None = None
    intents: dict[str, PaymentAuthorization] = field(default_factory=dict)
    create_calls: list[tuple[int, str, str]] = field(default_factory=list)
    create_details: list[tuple[str | None, dict[str, str] | None]] = field(
        default_factory=list
    )
    confirm_calls: list[tuple[str, str]] = field(default_factory=list)
    canceled: list[str] = field(default_factory=list)
    succeeded: set[str] = field(default_factory=set)

    async def create_intent(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        *,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        self.create_calls.append((amount, currency, idempotency_key))
        self.create_details.append((description, metadata))
        if idempotency_key not in self.intents:
            number = len(self.intents) + 1
            self.intents[idempotency_key] = PaymentAuthorization(
                intent_id=f"pi_{number}",
                amount=amount,
                currency=currency,
                status=PaymentStatus.CREATED,
                idempotency_key=idempotency_key,
                client_secret=f"pi_{number}_secret",
            )
        # The intent exists even when the response is lost.
        if self.create_errors:
            raise self.create_errors.pop(0)
        return self.intents[idempotency_key]

    async def confirm(
        self, intent_id: str, credentials_handle: str
    ) -> AsyncIterator[ConfirmationOutcome]:
        self.confirm_calls.append((intent_id, credentials_handle))
        for outcome in self.outcomes:
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, ConfirmationSucceeded):
                self.succeeded.add(intent_id)
            yield outcome

    async def cancel(self, intent_id: str) -> None:
        self.canceled.append(intent_id)
        if self.cancel_error is not None:
            raise self.cancel_error


@dataclass
class FakeElectionStore(ElectionStore):
    """Fake store that deduplicates by record id."""

    failures: list[Exception] = field(default_factory=list)
    available: bool = True
    stored: dict[str, dict[str, object]] = field(default_factory=dict)
    create_calls: list[str] = field(default_factory=list)
    on_create: Callable[[ElectionRecord], None] | None = None

    async def create(self, record: ElectionRecord) -> str:
        self.create_calls.append(record.id)
        if self.on_create is not None:
            self.on_create(record)
        if self.failures:
            raise self.failures.pop(0)
        if not self.available:
            raise ElectionStoreUnavailableError("store down")
        self.stored[record.id] = record.to_store_payload()
        return record.id

    async def get(self, election_id: str) -> dict[str, object] | None:
        return self.stored.get(election_id)


def two_questions() -> list[Question]:
    return [
        Question(
            title="Board chair",
            options=("Ada", "Grace"),
            kind=QuestionKind.SINGLE_CHOICE,
        ),
        Question(
            title="Adopt the new bylaws?",
            options=("Yes", "No"),
            allow_write_in=False,
        ),
    ]


def fill_valid_draft(workflow: BallotWorkflow, seat_count: int = 10) -> None:
    """Populate every wizard step with valid data."""
    workflow.set_title("Annual board election")
    workflow.set_questions(two_questions())
    workflow.set_duration(ELECTION_START, ELECTION_END)
    workflow.set_seat_count(seat_count)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        payment_api_key="pay-key",
        payment_base_url="https://payments.test/v1",
        election_store_url="https://store.test",
        admin_token="admin-token",
        deployment_session_id="session-1",
        ledger_dir=tmp_path / "ledger",
    )


@pytest.fixture
def pricing() -> Pricing:
    return Pricing(price_per_seat=Decimal("0.10"), currency="usd")


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def store() -> FakeElectionStore:
    return FakeElectionStore()


@pytest.fixture
def ledger() -> InMemoryFallbackLedger:
    return InMemoryFallbackLedger()


@pytest.fixture
def committer(
    store: FakeElectionStore, ledger: InMemoryFallbackLedger
) -> ElectionCommitter:
    return ElectionCommitter(store=store, ledger=ledger, attempts=3, backoff_seconds=0)


@pytest.fixture
def make_workflow(
    gateway: FakePaymentGateway, committer: ElectionCommitter, pricing: Pricing
) -> Callable[[], BallotWorkflow]:
    def factory() -> BallotWorkflow:
        return BallotWorkflow(
            gateway=gateway,
            committer=committer,
            pricing=pricing,
            session_id="session-1",
        )

    return factory


@pytest.fixture
def workflow(make_workflow: Callable[[], BallotWorkflow]) -> BallotWorkflow:
    return make_workflow()


@pytest.fixture
def container(
    settings: Settings,
    gateway: FakePaymentGateway,
    store: FakeElectionStore,
    ledger: InMemoryFallbackLedger,
    committer: ElectionCommitter,
    make_workflow: Callable[[], BallotWorkflow],
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        payment_gateway=gateway,
        election_store=store,
        ledger=ledger,
        committer=committer,
        reconciliation_service=ReconciliationService(store=store, ledger=ledger),
        workflow_registry=WorkflowRegistry(make_workflow),
        close_resources=close_resources,
    )
