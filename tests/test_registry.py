"""Tests for the workflow registry."""

import asyncio
from collections.abc import Callable

from ballot_builder.domain.workflow import Cancel, ConfirmPayment, Next, StartPayment
from ballot_builder.services.registry import WorkflowRegistry
from ballot_builder.services.workflow import BallotWorkflow
from tests.conftest import fill_valid_draft


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _complete(workflow: BallotWorkflow) -> None:
    fill_valid_draft(workflow)
    for event in (Next(), Next(), Next(), StartPayment(), ConfirmPayment("pm")):
        await workflow.transition(event)


def test_completed_workflow_is_dropped(
    make_workflow: Callable[[], BallotWorkflow],
) -> None:
    registry = WorkflowRegistry(make_workflow)
    workflow_id, workflow = registry.start()

    asyncio.run(_complete(workflow))

    assert registry.get(workflow_id) is None
    assert len(registry) == 0


def test_canceled_workflow_is_dropped(
    make_workflow: Callable[[], BallotWorkflow],
) -> None:
    registry = WorkflowRegistry(make_workflow)
    workflow_id, workflow = registry.start()
    other_id, _ = registry.start()

    asyncio.run(workflow.transition(Cancel()))

    assert registry.get(workflow_id) is None
    assert registry.get(other_id) is not None
    assert len(registry) == 1


def test_idle_workflow_expires(make_workflow: Callable[[], BallotWorkflow]) -> None:
    clock = FakeClock()
    registry = WorkflowRegistry(make_workflow, idle_ttl_seconds=60, clock=clock)
    idle_id, _ = registry.start()
    active_id, _ = registry.start()

    clock.now += 45
    assert registry.get(active_id) is not None
    clock.now += 30

    assert registry.get(idle_id) is None
    assert registry.get(active_id) is not None
    assert len(registry) == 1


def test_busy_workflow_is_not_expired(
    make_workflow: Callable[[], BallotWorkflow],
) -> None:
    clock = FakeClock()
    registry = WorkflowRegistry(make_workflow, idle_ttl_seconds=60, clock=clock)
    workflow_id, workflow = registry.start()
    workflow._busy = True

    clock.now += 120

    assert registry.prune() == 0
    assert registry.get(workflow_id) is workflow
    assert registry.discard(workflow_id) is False


def test_start_tags_workflow_with_its_id(
    make_workflow: Callable[[], BallotWorkflow],
) -> None:
    registry = WorkflowRegistry(make_workflow)

    workflow_id, workflow = registry.start()

    assert workflow.workflow_id == str(workflow_id)
    assert registry.discard(workflow_id) is True
    assert registry.discard(workflow_id) is False
