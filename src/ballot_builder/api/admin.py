"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ballot_builder.api.models import describe_record
from ballot_builder.domain.elections import ElectionStoreError

if TYPE_CHECKING:
    from ballot_builder.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/ledger", dependencies=[Depends(require_admin)])
async def list_unsynced(request: Request) -> dict[str, object]:
    """Return elections that only exist in the local fallback ledger."""
    container: AppContainer = request.app.state.container
    records = container.ledger.get_all_unsynced()
    return {"records": [describe_record(record) for record in records]}


@router.post("/reconcile", dependencies=[Depends(require_admin)])
async def reconcile(request: Request) -> dict[str, object]:
    """Run a reconciliation pass now."""
    container: AppContainer = request.app.state.container
    report = await container.reconciliation_service.run_once()
    return {**asdict(report), "converged": report.converged}


@router.get("/elections/{election_id}", dependencies=[Depends(require_admin)])
async def election_detail(election_id: str, request: Request) -> dict[str, object]:
    """Look up an election in the remote store."""
    container: AppContainer = request.app.state.container
    try:
        election = await container.election_store.get(election_id)
    except ElectionStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
        ) from exc
    if election is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return election
