"""FastAPI application factory."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request, status

from ballot_builder.api.admin import router as admin_router
from ballot_builder.api.models import (
    DraftUpdate,
    WorkflowEventPayload,
    describe_draft,
    describe_state,
)
from ballot_builder.app_logging import configure_logging
from ballot_builder.containers import AppContainer
from ballot_builder.domain.workflow import (
    CancellationRefusedError,
    FrozenDraftError,
    InvalidTransitionError,
    WorkflowBusyError,
)
from ballot_builder.services.workflow import BallotWorkflow


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        reconciliation = app.state.container.reconciliation_service
        try:
            await reconciliation.run_once()
        except Exception:
            logger.exception("Startup reconciliation failed")
        task = asyncio.create_task(
            reconciliation.run_forever(
                app.state.container.settings.reconcile_interval_seconds
            )
        )
        yield
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/workflows", status_code=status.HTTP_201_CREATED)
    async def start_workflow(request: Request) -> dict[str, object]:
        """Begin a new ballot checkout."""
        state_container: AppContainer = request.app.state.container
        workflow_id, workflow = state_container.workflow_registry.start()
        return _describe_workflow(workflow_id, workflow)

    @app.get("/workflows/{workflow_id}")
    async def get_workflow(workflow_id: UUID, request: Request) -> dict[str, object]:
        """Return the current state and draft of a checkout."""
        workflow = _get_workflow(request, workflow_id)
        return _describe_workflow(workflow_id, workflow)

    @app.put("/workflows/{workflow_id}/draft")
    async def update_draft(
        workflow_id: UUID, update: DraftUpdate, request: Request
    ) -> dict[str, object]:
        """Apply a partial draft update while the ballot is editable."""
        workflow = _get_workflow(request, workflow_id)
        fields = update.model_fields_set
        try:
            if "title" in fields:
                workflow.set_title(update.title or "")
            if "description" in fields:
                workflow.set_description(update.description)
            if "questions" in fields:
                workflow.set_questions(
                    question.to_domain() for question in update.questions or []
                )
            if fields & {"start_at", "end_at"}:
                window = workflow.get_draft().duration
                workflow.set_duration(
                    update.start_at if "start_at" in fields else window.start_at,
                    update.end_at if "end_at" in fields else window.end_at,
                )
            if "seat_count" in fields:
                workflow.set_seat_count(update.seat_count)
        except (FrozenDraftError, WorkflowBusyError) as exc:
            raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return _describe_workflow(workflow_id, workflow)

    @app.post("/workflows/{workflow_id}/events")
    async def send_event(
        workflow_id: UUID, payload: WorkflowEventPayload, request: Request
    ) -> dict[str, object]:
        """Send a UI event to the checkout state machine."""
        workflow = _get_workflow(request, workflow_id)
        try:
            event = payload.to_event()
        except ValueError as exc:
            raise HTTPException(
                status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
        try:
            result = await workflow.transition(event)
        except (
            WorkflowBusyError,
            InvalidTransitionError,
            CancellationRefusedError,
        ) as exc:
            raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        response = _describe_workflow(workflow_id, workflow)
        response["accepted"] = result.accepted
        response["issue"] = result.issue.value if result.issue else None
        return response

    @app.delete("/workflows/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def discard_workflow(workflow_id: UUID, request: Request) -> None:
        """Forget a checkout that is not in flight."""
        state_container: AppContainer = request.app.state.container
        _get_workflow(request, workflow_id)
        if not state_container.workflow_registry.discard(workflow_id):
            raise HTTPException(
                status.HTTP_409_CONFLICT, detail="Another action is still in progress"
            )

    return app


def _get_workflow(request: Request, workflow_id: UUID) -> BallotWorkflow:
    state_container: AppContainer = request.app.state.container
    workflow = state_container.workflow_registry.get(workflow_id)
    if workflow is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Unknown workflow")
    return workflow


def _describe_workflow(
    workflow_id: UUID, workflow: BallotWorkflow
) -> dict[str, object]:
    return {
        "workflow_id": str(workflow_id),
        "state": describe_state(workflow.get_state()),
        "draft": describe_draft(workflow.get_draft()),
        "amount": workflow.amount(),
        "currency": workflow.pricing.currency,
        "busy": workflow.busy,
    }
