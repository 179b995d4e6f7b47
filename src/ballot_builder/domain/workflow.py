"""States, events and the transition table of the ballot checkout wizard."""

from dataclasses import dataclass
from enum import StrEnum

from ballot_builder.domain.ballots import EDIT_STEPS, BallotDraft, ValidationIssue
from ballot_builder.domain.elections import ElectionRecord
from ballot_builder.domain.payments import PaymentAuthorization, PaymentStatus


class WorkflowError(Exception):
    """Base error for workflow contract violations."""


class InvalidTransitionError(WorkflowError):
    """The event is not accepted in the current state."""


class WorkflowBusyError(WorkflowError):
    """Another transition is still in flight."""


class FrozenDraftError(WorkflowError):
    """The draft can no longer be edited."""


class CancellationRefusedError(WorkflowError):
    """Cancellation is no longer possible because payment was captured."""


class InconsistentStateError(WorkflowError):
    """An internal invariant would be broken."""


class FailureReason(StrEnum):
    """Why a workflow ended in the Failed state."""

    SERVER_REJECTED = "server_rejected"
    GATEWAY_MISCONFIGURED = "gateway_misconfigured"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


# States


@dataclass(frozen=True)
class Editing:
    step: int = 1

    def __post_init__(self) -> None:
        if self.step not in EDIT_STEPS:
            raise InconsistentStateError(f"Editing step out of range: {self.step}")


@dataclass(frozen=True)
class ReviewAndPay:
    error: str | None = None


@dataclass(frozen=True)
class AuthorizingPayment:
    pass


@dataclass(frozen=True)
class ConfirmingPayment:
    authorization: PaymentAuthorization
    required_action: dict[str, object] | None = None
    error: str | None = None


@dataclass(frozen=True)
class Committing:
    authorization: PaymentAuthorization

    def __post_init__(self) -> None:
        if self.authorization.status is not PaymentStatus.SUCCEEDED:
            raise InconsistentStateError(
                f"Cannot commit intent {self.authorization.intent_id} "
                f"with status {self.authorization.status}"
            )


@dataclass(frozen=True)
class Completed:
    record: ElectionRecord


@dataclass(frozen=True)
class Canceled:
    pass


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    message: str
    support_reference: str | None = None


WorkflowState = (
    Editing
    | ReviewAndPay
    | AuthorizingPayment
    | ConfirmingPayment
    | Committing
    | Completed
    | Canceled
    | Failed
)

FROZEN_STATES = (ReviewAndPay, AuthorizingPayment, ConfirmingPayment, Committing)
TERMINAL_STATES = (Completed, Canceled)


# Events sent by the UI


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class JumpTo:
    step: int


@dataclass(frozen=True)
class StartPayment:
    pass


@dataclass(frozen=True)
class ConfirmPayment:
    credentials_handle: str


@dataclass(frozen=True)
class Cancel:
    pass


UiEvent = Next | Back | JumpTo | StartPayment | ConfirmPayment | Cancel


# Events produced from external responses


@dataclass(frozen=True)
class IntentReady:
    authorization: PaymentAuthorization


@dataclass(frozen=True)
class IntentFailed:
    message: str


@dataclass(frozen=True)
class PaymentRequiresAction:
    authorization: PaymentAuthorization
    details: dict[str, object]


@dataclass(frozen=True)
class PaymentSucceeded:
    authorization: PaymentAuthorization


@dataclass(frozen=True)
class PaymentFailed:
    message: str


@dataclass(frozen=True)
class PaymentInterrupted:
    """Confirmation stopped without a verdict; the intent is still open."""

    message: str


@dataclass(frozen=True)
class GatewayMisconfigured:
    message: str
    support_reference: str | None = None


@dataclass(frozen=True)
class CommitSucceeded:
    record: ElectionRecord


@dataclass(frozen=True)
class CommitRejected:
    message: str
    support_reference: str


@dataclass(frozen=True)
class CommitAborted:
    message: str
    support_reference: str


WorkflowEvent = (
    UiEvent
    | IntentReady
    | IntentFailed
    | PaymentRequiresAction
    | PaymentSucceeded
    | PaymentFailed
    | PaymentInterrupted
    | GatewayMisconfigured
    | CommitSucceeded
    | CommitRejected
    | CommitAborted
)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition request."""

    state: WorkflowState
    issue: ValidationIssue | None = None

    @property
    def accepted(self) -> bool:
        return self.issue is None


def is_frozen(state: WorkflowState) -> bool:
    """Return True when the draft may not be edited in this state."""
    return not isinstance(state, Editing)


def state_name(state: WorkflowState) -> str:
    """Return a stable snake_case name for a state."""
    return _STATE_NAMES[type(state)]


def advance(  # noqa: PLR0911, PLR0912
    state: WorkflowState, event: WorkflowEvent, draft: BallotDraft
) -> TransitionResult:
    """Apply an event to a state and return the resulting state.

    Forward moves out of an editing step are gated by that step's validator;
    a blocked move keeps the state and reports the issue. Events that are not
    valid for the state raise InvalidTransitionError.
    """
    if isinstance(event, Cancel):
        return TransitionResult(_cancel(state))

    if isinstance(state, Editing):
        if isinstance(event, Next):
            issue = draft.validate_step(state.step)
            if issue is not None:
                return TransitionResult(state, issue)
            if state.step == EDIT_STEPS[-1]:
                return TransitionResult(ReviewAndPay())
            return TransitionResult(Editing(state.step + 1))
        if isinstance(event, Back):
            if state.step == EDIT_STEPS[0]:
                return TransitionResult(state)
            return TransitionResult(Editing(state.step - 1))
        if isinstance(event, JumpTo):
            if event.step not in EDIT_STEPS:
                raise InvalidTransitionError(f"No such step: {event.step}")
            for step in range(state.step, event.step):
                issue = draft.validate_step(step)
                if issue is not None:
                    return TransitionResult(state, issue)
            return TransitionResult(Editing(event.step))

    elif isinstance(state, ReviewAndPay):
        if isinstance(event, Back):
            return TransitionResult(Editing(EDIT_STEPS[-1]))
        if isinstance(event, StartPayment):
            issue = draft.first_issue()
            if issue is not None:
                raise InconsistentStateError(
                    f"Reached review with an incomplete draft: {issue}"
                )
            return TransitionResult(AuthorizingPayment())

    elif isinstance(state, AuthorizingPayment):
        if isinstance(event, IntentReady):
            return TransitionResult(ConfirmingPayment(event.authorization))
        if isinstance(event, IntentFailed):
            return TransitionResult(ReviewAndPay(error=event.message))
        if isinstance(event, GatewayMisconfigured):
            return TransitionResult(_misconfigured(event))

    elif isinstance(state, ConfirmingPayment):
        if isinstance(event, ConfirmPayment):
            if state.error is None and state.required_action is None:
                return TransitionResult(state)
            return TransitionResult(ConfirmingPayment(state.authorization))
        if isinstance(event, PaymentRequiresAction):
            return TransitionResult(
                ConfirmingPayment(event.authorization, required_action=event.details)
            )
        if isinstance(event, PaymentSucceeded):
            return TransitionResult(Committing(event.authorization))
        if isinstance(event, PaymentFailed):
            return TransitionResult(ReviewAndPay(error=event.message))
        if isinstance(event, PaymentInterrupted):
            return TransitionResult(
                ConfirmingPayment(state.authorization, error=event.message)
            )
        if isinstance(event, GatewayMisconfigured):
            return TransitionResult(_misconfigured(event))

    elif isinstance(state, Committing):
        if isinstance(event, CommitSucceeded):
            return TransitionResult(Completed(event.record))
        if isinstance(event, CommitRejected):
            return TransitionResult(
                Failed(
                    FailureReason.SERVER_REJECTED,
                    event.message,
                    support_reference=event.support_reference,
                )
            )
        if isinstance(event, CommitAborted):
            return TransitionResult(
                Failed(
                    FailureReason.PERSISTENCE_UNAVAILABLE,
                    event.message,
                    support_reference=event.support_reference,
                )
            )

    raise InvalidTransitionError(
        f"{type(event).__name__} is not allowed in state {state_name(state)}"
    )


def _cancel(state: WorkflowState) -> WorkflowState:
    if isinstance(state, Committing):
        raise CancellationRefusedError(
            "Payment has been captured and the election is being saved. "
            f"Contact support with reference {state.authorization.intent_id}."
        )
    if isinstance(state, TERMINAL_STATES):
        raise InvalidTransitionError(
            f"Cancel is not allowed in state {state_name(state)}"
        )
    return Canceled()


def _misconfigured(event: GatewayMisconfigured) -> Failed:
    return Failed(
        FailureReason.GATEWAY_MISCONFIGURED,
        event.message,
        support_reference=event.support_reference,
    )


_STATE_NAMES: dict[type, str] = {
    Editing: "editing",
    ReviewAndPay: "review_and_pay",
    AuthorizingPayment: "authorizing_payment",
    ConfirmingPayment: "confirming_payment",
    Committing: "committing",
    Completed: "completed",
    Canceled: "canceled",
    Failed: "failed",
}
