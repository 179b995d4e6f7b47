"""Pydantic request models and response serializers for the workflow API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ballot_builder.domain.ballots import (
    EDIT_STEPS,
    BallotDraft,
    Question,
    QuestionKind,
)
from ballot_builder.domain.elections import ElectionRecord
from ballot_builder.domain.workflow import (
    Back,
    Cancel,
    Completed,
    ConfirmingPayment,
    ConfirmPayment,
    Editing,
    Failed,
    JumpTo,
    Next,
    ReviewAndPay,
    StartPayment,
    UiEvent,
    WorkflowState,
    state_name,
)


class QuestionPayload(BaseModel):
    """A ballot question as sent by the editor."""

    title: str
    options: list[str] = Field(default_factory=list)
    allow_write_in: bool = False
    kind: QuestionKind = QuestionKind.SINGLE_CHOICE

    def to_domain(self) -> Question:
        return Question(
            title=self.title,
            options=tuple(self.options),
            allow_write_in=self.allow_write_in,
            kind=self.kind,
        )


class DraftUpdate(BaseModel):
    """Partial draft update; only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    questions: list[QuestionPayload] | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    seat_count: int | None = None


class WorkflowEventPayload(BaseModel):
    """A UI event for the checkout state machine."""

    type: Literal[
        "next", "back", "jump_to", "start_payment", "confirm_payment", "cancel"
    ]
    step: int | None = Field(default=None, ge=EDIT_STEPS[0], le=EDIT_STEPS[-1])
    credentials_handle: str | None = None

    def to_event(self) -> UiEvent:
        """Build the domain event; raises ValueError when a field is missing."""
        if self.type == "next":
            return Next()
        if self.type == "back":
            return Back()
        if self.type == "jump_to":
            if self.step is None:
                raise ValueError("jump_to requires a step")
            return JumpTo(self.step)
        if self.type == "start_payment":
            return StartPayment()
        if self.type == "confirm_payment":
            if not self.credentials_handle:
                raise ValueError("confirm_payment requires a credentials_handle")
            return ConfirmPayment(self.credentials_handle)
        return Cancel()


def describe_state(state: WorkflowState) -> dict[str, object]:
    """Serialize a workflow state for the UI."""
    data: dict[str, object] = {"name": state_name(state)}
    if isinstance(state, Editing):
        data["step"] = state.step
    elif isinstance(state, ReviewAndPay):
        data["error"] = state.error
    elif isinstance(state, ConfirmingPayment):
        data["payment_intent_id"] = state.authorization.intent_id
        data["client_secret"] = state.authorization.client_secret
        data["required_action"] = state.required_action
        data["error"] = state.error
    elif isinstance(state, Completed):
        data["election"] = describe_record(state.record)
    elif isinstance(state, Failed):
        data["reason"] = state.reason.value
        data["message"] = state.message
        data["support_reference"] = state.support_reference
    return data


def describe_draft(draft: BallotDraft) -> dict[str, object]:
    """Serialize a draft for the UI."""
    return draft.canonical_payload()


def describe_record(record: ElectionRecord) -> dict[str, object]:
    """Serialize an election record."""
    return {
        "id": record.id,
        "title": record.snapshot.title,
        "payment_intent_id": record.payment_intent_id,
        "created_at": record.created_at.isoformat(),
        "persistence_origin": record.persistence_origin.value,
    }
