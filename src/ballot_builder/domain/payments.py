"""Domain models for payment authorizations."""

from dataclasses import dataclass, replace
from enum import StrEnum


class PaymentStatus(StrEnum):
    """Lifecycle of a payment intent."""

    CREATED = "created"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class PaymentAuthorization:
    """A payment intent issued by the gateway for one checkout attempt."""

    intent_id: str
    amount: int
    currency: str
    status: PaymentStatus
    idempotency_key: str
    client_secret: str | None = None

    def with_status(self, status: PaymentStatus) -> "PaymentAuthorization":
        """Return a copy with an updated status."""
        return replace(self, status=status)


@dataclass(frozen=True)
class RequiresAction:
    """The gateway needs another round trip with the payer (e.g. 3-D Secure)."""

    details: dict[str, object]


@dataclass(frozen=True)
class ConfirmationSucceeded:
    """The payment was captured."""


@dataclass(frozen=True)
class ConfirmationFailed:
    """The payment was refused for this attempt."""

    reason: str


ConfirmationOutcome = RequiresAction | ConfirmationSucceeded | ConfirmationFailed


class GatewayError(Exception):
    """Base error raised by payment gateway adapters."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class GatewayNetworkError(GatewayError):
    """Transient failure talking to the gateway; safe to retry."""


class CardDeclinedError(GatewayError):
    """The payer's credentials were refused."""


class GatewayConfigurationError(GatewayError):
    """The gateway rejected our request or credentials; needs an operator."""
