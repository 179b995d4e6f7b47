"""In-process registry of active checkout workflows."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID, uuid4

from ballot_builder.domain.workflow import TERMINAL_STATES, WorkflowState
from ballot_builder.services.workflow import BallotWorkflow

_logger = logging.getLogger(__name__)


@dataclass
class WorkflowRegistry:
    """Keeps one workflow instance per checkout attempt.

    Workflows are forgotten as soon as they complete or are canceled, and
    after `idle_ttl_seconds` without being looked up. A workflow that is in
    the middle of a transition is never expired.
    """

    factory: Callable[[], BallotWorkflow]
    idle_ttl_seconds: float
    clock: Callable[[], float]
    _workflows: dict[UUID, BallotWorkflow]
    _last_seen: dict[UUID, float]

    def __init__(
        self,
        factory: Callable[[], BallotWorkflow],
        idle_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.factory = factory
        self.idle_ttl_seconds = idle_ttl_seconds
        self.clock = clock
        self._workflows = {}
        self._last_seen = {}

    def start(self) -> tuple[UUID, BallotWorkflow]:
        """Create a workflow for a new checkout attempt."""
        self.prune()
        workflow_id = uuid4()
        workflow = self.factory()
        workflow.workflow_id = str(workflow_id)

        def forget_when_finished(state: WorkflowState) -> None:
            if isinstance(state, TERMINAL_STATES):
                self._forget(workflow_id)

        workflow.listeners.append(forget_when_finished)
        self._workflows[workflow_id] = workflow
        self._last_seen[workflow_id] = self.clock()
        return workflow_id, workflow

    def get(self, workflow_id: UUID) -> BallotWorkflow | None:
        """Return a workflow by id, if present, and mark it as in use."""
        self.prune()
        workflow = self._workflows.get(workflow_id)
        if workflow is not None:
            self._last_seen[workflow_id] = self.clock()
        return workflow

    def discard(self, workflow_id: UUID) -> bool:
        """Forget a workflow; returns False when it was unknown or busy."""
        workflow = self._workflows.get(workflow_id)
        if workflow is None or workflow.busy:
            return False
        self._forget(workflow_id)
        return True

    def prune(self) -> int:
        """Drop workflows idle for longer than the TTL; returns how many."""
        cutoff = self.clock() - self.idle_ttl_seconds
        expired = [
            workflow_id
            for workflow_id, seen_at in self._last_seen.items()
            if seen_at <= cutoff and not self._workflows[workflow_id].busy
        ]
        for workflow_id in expired:
            self._forget(workflow_id)
        if expired:
            _logger.info("Expired %s idle workflows", len(expired))
        return len(expired)

    def _forget(self, workflow_id: UUID) -> None:
        self._workflows.pop(workflow_id, None)
        self._last_seen.pop(workflow_id, None)

    def __len__(self) -> int:
        return len(self._workflows)
