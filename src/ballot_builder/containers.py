"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from ballot_builder.adapters.election_store import ElectionStore, HttpxElectionStore
from ballot_builder.adapters.fallback_ledger import FallbackLedger, FileFallbackLedger
from ballot_builder.adapters.payment_gateway import HttpxPaymentGateway, PaymentGateway
from ballot_builder.adapters.supabase_election_store import SupabaseElectionStore
from ballot_builder.config import Settings
from ballot_builder.services.commit import ElectionCommitter
from ballot_builder.services.reconciliation import ReconciliationService
from ballot_builder.services.registry import WorkflowRegistry
from ballot_builder.services.workflow import BallotWorkflow


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    payment_gateway: PaymentGateway
    election_store: ElectionStore
    ledger: FallbackLedger
    committer: ElectionCommitter
    reconciliation_service: ReconciliationService
    workflow_registry: WorkflowRegistry
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    payment_gateway = HttpxPaymentGateway.create(
        api_key=resolved_settings.payment_api_key,
        base_url=resolved_settings.payment_base_url,
        attempts=resolved_settings.gateway_retry_attempts + 1,
        backoff_seconds=resolved_settings.gateway_backoff_seconds,
        poll_interval_seconds=resolved_settings.confirm_poll_interval_seconds,
        poll_limit=resolved_settings.confirm_poll_limit,
    )
    election_store = _build_election_store(resolved_settings)
    ledger = FileFallbackLedger(resolved_settings.ledger_dir)
    committer = ElectionCommitter(
        store=election_store,
        ledger=ledger,
        attempts=resolved_settings.commit_attempts,
        backoff_seconds=resolved_settings.commit_backoff_seconds,
    )
    reconciliation_service = ReconciliationService(
        store=election_store,
        ledger=ledger,
        evict_synced=resolved_settings.evict_synced_records,
    )
    pricing = resolved_settings.pricing()

    def new_workflow() -> BallotWorkflow:
        return BallotWorkflow(
            gateway=payment_gateway,
            committer=committer,
            pricing=pricing,
            session_id=resolved_settings.deployment_session_id,
        )

    async def close_resources() -> None:
        await payment_gateway.close()
        if isinstance(election_store, HttpxElectionStore):
            await election_store.close()

    return AppContainer(
        settings=resolved_settings,
        payment_gateway=payment_gateway,
        election_store=election_store,
        ledger=ledger,
        committer=committer,
        reconciliation_service=reconciliation_service,
        workflow_registry=WorkflowRegistry(
            new_workflow,
            idle_ttl_seconds=resolved_settings.workflow_idle_ttl_seconds,
        ),
        close_resources=close_resources,
    )


def _build_election_store(settings: Settings) -> ElectionStore:
    if settings.election_store_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError(
                "supabase_url and supabase_service_key are required "
                "for the supabase election store"
            )
        return SupabaseElectionStore(
            create_client(settings.supabase_url, settings.supabase_service_key)
        )
    return HttpxElectionStore.create_client(
        settings.election_store_url, settings.election_store_token
    )
