"""Orchestrates one ballot checkout from first edit to stored election."""

import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from datetime import datetime

from ballot_builder.adapters.payment_gateway import PaymentGateway
from ballot_builder.domain.ballots import BallotDraft, Pricing, Question, VotingWindow
from ballot_builder.domain.elections import ElectionRejectedError
from ballot_builder.domain.payments import (
    CardDeclinedError,
    ConfirmationFailed,
    ConfirmationOutcome,
    GatewayConfigurationError,
    GatewayError,
    GatewayNetworkError,
    PaymentAuthorization,
    PaymentStatus,
    RequiresAction,
)
from ballot_builder.domain.workflow import (
    TERMINAL_STATES,
    Back,
    Cancel,
    CommitAborted,
    CommitRejected,
    CommitSucceeded,
    ConfirmingPayment,
    ConfirmPayment,
    Editing,
    Failed,
    FailureReason,
    FrozenDraftError,
    GatewayMisconfigured,
    IntentFailed,
    IntentReady,
    InvalidTransitionError,
    JumpTo,
    Next,
    PaymentFailed,
    PaymentInterrupted,
    PaymentRequiresAction,
    PaymentSucceeded,
    StartPayment,
    TransitionResult,
    UiEvent,
    WorkflowBusyError,
    WorkflowEvent,
    WorkflowState,
    advance,
    is_frozen,
    state_name,
)
from ballot_builder.services.commit import CommitAbortedError, ElectionCommitter

_logger = logging.getLogger(__name__)

_UI_EVENTS = (Next, Back, JumpTo, StartPayment, ConfirmPayment, Cancel)

_GATEWAY_UNREACHABLE = "The payment provider could not be reached. Please try again."
_CONFIRMATION_INCOMPLETE = (
    "Payment confirmation did not finish. Please submit your payment details again."
)
_GATEWAY_MISCONFIGURED = (
    "Payments are temporarily unavailable. An operator has been notified."
)


@dataclass
class BallotWorkflow:
    """Single-writer state machine for one ballot checkout attempt.

    Every state change goes through `advance`; this class only performs the
    external calls that produce the next event. While a transition awaits the
    gateway or the store, further transitions and edits raise
    WorkflowBusyError.
    """

    gateway: PaymentGateway
    committer: ElectionCommitter
    pricing: Pricing
    session_id: str
    workflow_id: str | None = None
    draft: BallotDraft = field(default_factory=BallotDraft)
    state: WorkflowState = field(default_factory=Editing)
    history: list[WorkflowState] = field(default_factory=list)
    listeners: list[Callable[[WorkflowState], None]] = field(default_factory=list)
    _busy: bool = field(default=False, init=False, repr=False)
    _attempt: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    @property
    def busy(self) -> bool:
        return self._busy

    def get_state(self) -> WorkflowState:
        """Return the current state."""
        return self.state

    def get_draft(self) -> BallotDraft:
        """Return the current draft; drafts are immutable snapshots."""
        return self.draft

    def amount(self) -> int | None:
        """Return the charge in minor units, once the seat count is valid."""
        if self.draft.validate_participants_step() is not None:
            return None
        return self.pricing.amount_for(self.draft.seat_count)

    def idempotency_key(self) -> str:
        """Derive the gateway idempotency key for the current attempt.

        The key only changes when the draft, the deployment session or the
        attempt number changes, so retrying after a transient failure reuses
        the same intent.
        """
        material = json.dumps(
            {
                "draft": self.draft.canonical_payload(),
                "session": self.session_id,
                "attempt": self._attempt,
            },
            sort_keys=True,
        )
        return hashlib.sha256(material.encode()).hexdigest()

    # Draft setters

    def set_title(self, title: str) -> BallotDraft:
        return self._edit(title=title)

    def set_description(self, description: str | None) -> BallotDraft:
        return self._edit(description=description)

    def set_questions(self, questions: Iterable[Question]) -> BallotDraft:
        return self._edit(questions=tuple(questions))

    def add_question(self, question: Question) -> BallotDraft:
        return self._edit(questions=(*self.draft.questions, question))

    def remove_question(self, index: int) -> BallotDraft:
        questions = list(self.draft.questions)
        if not 0 <= index < len(questions):
            raise IndexError(f"No question at position {index}")
        del questions[index]
        return self._edit(questions=tuple(questions))

    def set_duration(
        self, start_at: datetime | None, end_at: datetime | None
    ) -> BallotDraft:
        return self._edit(duration=VotingWindow(start_at=start_at, end_at=end_at))

    def set_seat_count(self, seat_count: int | None) -> BallotDraft:
        return self._edit(seat_count=seat_count)

    # Transitions

    async def transition(self, event: UiEvent) -> TransitionResult:
        """Apply a UI event, performing any external calls it requires."""
        self._ensure_idle()
        if not isinstance(event, _UI_EVENTS):
            raise InvalidTransitionError(
                f"{type(event).__name__} cannot be sent from the UI"
            )
        self._busy = True
        try:
            if isinstance(event, Cancel):
                return await self._cancel()
            if isinstance(event, StartPayment):
                return await self._start_payment()
            if isinstance(event, ConfirmPayment):
                return await self._confirm_payment(event)
            return self._apply(event)
        finally:
            self._busy = False

    async def _start_payment(self) -> TransitionResult:
        self._apply(StartPayment())
        amount = self.pricing.amount_for(self.draft.seat_count)
        key = self.idempotency_key()
        try:
            authorization = await self.gateway.create_intent(
                amount,
                self.pricing.currency,
                key,
                description=self.draft.title,
                metadata=self._intent_metadata(),
            )
        except GatewayConfigurationError as exc:
            _logger.error("Payment gateway rejected intent request: %s", exc.message)
            return self._apply(GatewayMisconfigured(_GATEWAY_MISCONFIGURED))
        except CardDeclinedError as exc:
            self._attempt += 1
            return self._apply(IntentFailed(exc.message))
        except GatewayNetworkError as exc:
            _logger.warning("Payment intent not created: %s", exc.message)
            return self._apply(IntentFailed(_GATEWAY_UNREACHABLE))
        except Exception:
            _logger.exception("Payment intent request failed unexpectedly")
            return self._apply(IntentFailed(_GATEWAY_UNREACHABLE))
        _logger.info(
            "Payment intent %s created for %s %s",
            authorization.intent_id,
            authorization.amount,
            authorization.currency,
        )
        return self._apply(IntentReady(authorization))

    async def _confirm_payment(self, event: ConfirmPayment) -> TransitionResult:
        self._apply(event)
        state = self.state
        if not isinstance(state, ConfirmingPayment):
            raise InvalidTransitionError(
                "Payment can only be confirmed once an intent exists"
            )
        authorization = state.authorization
        verdict: ConfirmationOutcome | None = None
        try:
            async with aclosing(
                self.gateway.confirm(authorization.intent_id, event.credentials_handle)
            ) as outcomes:
                async for outcome in outcomes:
                    if isinstance(outcome, RequiresAction):
                        authorization = authorization.with_status(
                            PaymentStatus.REQUIRES_ACTION
                        )
                        self._apply(
                            PaymentRequiresAction(authorization, outcome.details)
                        )
                        continue
                    verdict = outcome
                    break
        except CardDeclinedError as exc:
            verdict = ConfirmationFailed(exc.message)
        except GatewayConfigurationError as exc:
            _logger.error(
                "Payment gateway rejected confirmation of %s: %s",
                authorization.intent_id,
                exc.message,
            )
            return self._apply(
                GatewayMisconfigured(
                    _GATEWAY_MISCONFIGURED, support_reference=authorization.intent_id
                )
            )
        except GatewayNetworkError as exc:
            _logger.warning(
                "Confirmation of %s interrupted: %s", authorization.intent_id, exc
            )
            return self._apply(PaymentInterrupted(_GATEWAY_UNREACHABLE))
        except Exception:
            _logger.exception(
                "Confirmation of %s failed unexpectedly", authorization.intent_id
            )
            return self._apply(PaymentInterrupted(_GATEWAY_UNREACHABLE))

        if verdict is None:
            return self._apply(PaymentInterrupted(_CONFIRMATION_INCOMPLETE))
        if isinstance(verdict, ConfirmationFailed):
            self._attempt += 1
            _logger.info(
                "Payment %s failed: %s", authorization.intent_id, verdict.reason
            )
            return self._apply(PaymentFailed(verdict.reason))

        authorization = authorization.with_status(PaymentStatus.SUCCEEDED)
        self._apply(PaymentSucceeded(authorization))
        return await self._commit(authorization)

    async def _commit(self, authorization: PaymentAuthorization) -> TransitionResult:
        try:
            record = await self.committer.commit(authorization, self.draft)
        except ElectionRejectedError as exc:
            return self._apply(
                CommitRejected(
                    message=(
                        "Your payment was received, but the election could not be "
                        f"created ({exc.code or exc.message}). Please contact support "
                        f"with reference {authorization.intent_id}."
                    ),
                    support_reference=authorization.intent_id,
                )
            )
        except CommitAbortedError:
            return self._apply(
                CommitAborted(
                    message=(
                        "Your payment was received, but the election could not be "
                        "saved. Please contact support with reference "
                        f"{authorization.intent_id}."
                    ),
                    support_reference=authorization.intent_id,
                )
            )
        return self._apply(CommitSucceeded(record))

    async def _cancel(self) -> TransitionResult:
        result = advance(self.state, Cancel(), self.draft)
        intent_id = _open_intent(self.state)
        if intent_id is not None:
            try:
                await self.gateway.cancel(intent_id)
            except GatewayError as exc:
                _logger.warning(
                    "Could not cancel payment intent %s: %s", intent_id, exc
                )
        self._enter(result.state)
        return result

    def _intent_metadata(self) -> dict[str, str]:
        metadata = {"session_id": self.session_id, "attempt": str(self._attempt)}
        if self.workflow_id is not None:
            metadata["workflow_id"] = self.workflow_id
        return metadata

    def _apply(self, event: WorkflowEvent) -> TransitionResult:
        result = advance(self.state, event, self.draft)
        if result.state is not self.state:
            self._enter(result.state)
        return result

    def _enter(self, state: WorkflowState) -> None:
        _logger.debug("Workflow %s -> %s", state_name(self.state), state_name(state))
        self.state = state
        self.history.append(state)
        if isinstance(state, TERMINAL_STATES):
            self.draft = BallotDraft()
        for listener in self.listeners:
            listener(state)

    def _edit(self, **changes: object) -> BallotDraft:
        self._ensure_idle()
        if is_frozen(self.state):
            raise FrozenDraftError(
                f"The ballot cannot be edited in state {state_name(self.state)}"
            )
        self.draft = replace(self.draft, **changes)
        return self.draft

    def _ensure_idle(self) -> None:
        if self._busy:
            raise WorkflowBusyError("Another action is still in progress")


def _open_intent(state: WorkflowState) -> str | None:
    """Return the id of an intent that exists but was never captured."""
    if isinstance(state, ConfirmingPayment):
        return state.authorization.intent_id
    if (
        isinstance(state, Failed)
        and state.reason is FailureReason.GATEWAY_MISCONFIGURED
    ):
        return state.support_reference
    return None
