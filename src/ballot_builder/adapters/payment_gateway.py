"""Payment gateway API client."""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import httpx

from ballot_builder.domain.payments import (
    CardDeclinedError,
    ConfirmationFailed,
    ConfirmationOutcome,
    ConfirmationSucceeded,
    GatewayConfigurationError,
    GatewayNetworkError,
    PaymentAuthorization,
    PaymentStatus,
    RequiresAction,
)
from ballot_builder.services.retry import call_with_backoff

_logger = logging.getLogger(__name__)

_PAYMENT_REQUIRED = 402
_TOO_MANY_REQUESTS = 429
_SERVER_ERROR = 500

_INTENT_STATUSES = {
    "requires_payment_method": PaymentStatus.CREATED,
    "requires_confirmation": PaymentStatus.CREATED,
    "processing": PaymentStatus.CREATED,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "succeeded": PaymentStatus.SUCCEEDED,
    "canceled": PaymentStatus.CANCELED,
}


class PaymentGateway(Protocol):
    """Interface for the third-party payment service."""

    async def create_intent(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        *,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        """Create (or fetch, for a repeated key) a payment intent.

        `description` and `metadata` are stored on the intent so a charge can
        be traced back to the ballot that caused it.
        """

    def confirm(
        self, intent_id: str, credentials_handle: str
    ) -> AsyncIterator[ConfirmationOutcome]:
        """Confirm an intent and stream outcomes until a verdict is reached."""

    async def cancel(self, intent_id: str) -> None:
        """Cancel an intent that has not been captured."""


@dataclass
class HttpxPaymentGateway(PaymentGateway):
    """Payment gateway client implemented with httpx."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient
    attempts: int = 3
    backoff_seconds: float = 0.3
    poll_interval_seconds: float = 2.0
    poll_limit: int = 90

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        api_key: str,
        base_url: str,
        *,
        attempts: int = 3,
        backoff_seconds: float = 0.3,
        poll_interval_seconds: float = 2.0,
        poll_limit: int = 90,
    ) -> "HttpxPaymentGateway":
        """Create a gateway client with a managed httpx session."""
        return cls(
            api_key=api_key,
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            attempts=attempts,
            backoff_seconds=backoff_seconds,
            poll_interval_seconds=poll_interval_seconds,
            poll_limit=poll_limit,
        )

    async def create_intent(
        self,
        amount: int,
        currency: str,
        idempotency_key: str,
        *,
        description: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> PaymentAuthorization:
        """Create a payment intent; the key makes retries return the same intent."""
        body: dict[str, object] = {
            "amount": amount,
            "currency": currency,
            "idempotency_key": idempotency_key,
        }
        if description:
            body["description"] = description
        if metadata:
            body["metadata"] = metadata
        payload = await self._request(
            "POST",
            "/payment_intents",
            action="create_intent",
            json=body,
            idempotency_key=idempotency_key,
        )
        return PaymentAuthorization(
            intent_id=str(payload["id"]),
            amount=int(payload.get("amount", amount)),
            currency=str(payload.get("currency", currency)),
            status=_INTENT_STATUSES.get(
                str(payload.get("status")), PaymentStatus.CREATED
            ),
            idempotency_key=idempotency_key,
            client_secret=payload.get("client_secret"),
        )

    async def confirm(
        self, intent_id: str, credentials_handle: str
    ) -> AsyncIterator[ConfirmationOutcome]:
        """Confirm an intent, then poll while the payer completes extra steps."""
        payload = await self._request(
            "POST",
            f"/payment_intents/{intent_id}/confirm",
            action="confirm",
            json={"payment_method": credentials_handle},
            idempotency_key=f"{intent_id}:{credentials_handle}",
        )
        last_action: dict[str, object] | None = None
        polls = 0
        while True:
            outcome = _confirmation_outcome(payload)
            if isinstance(outcome, RequiresAction):
                if outcome.details != last_action:
                    last_action = outcome.details
                    yield outcome
            elif outcome is not None:
                yield outcome
                return
            if polls >= self.poll_limit:
                _logger.warning(
                    "Payment intent %s still pending after %s polls", intent_id, polls
                )
                return
            polls += 1
            await asyncio.sleep(self.poll_interval_seconds)
            payload = await self._request(
                "GET", f"/payment_intents/{intent_id}", action="poll"
            )

    async def cancel(self, intent_id: str) -> None:
        """Cancel a payment intent."""
        await self._request(
            "POST", f"/payment_intents/{intent_id}/cancel", action="cancel"
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: dict[str, object] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, object]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key is not None:
            headers["Idempotency-Key"] = idempotency_key

        async def send() -> dict[str, object]:
            try:
                response = await self.http_client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    headers=headers,
                    timeout=15,
                )
            except httpx.TransportError as exc:
                raise GatewayNetworkError(
                    f"Payment gateway unreachable: {exc}"
                ) from exc
            _raise_for_gateway_status(response)
            return response.json()

        return await call_with_backoff(
            send,
            action=f"Payment gateway {action}",
            attempts=self.attempts,
            base_delay_seconds=self.backoff_seconds,
            retry_on=(GatewayNetworkError,),
        )


def _raise_for_gateway_status(response: httpx.Response) -> None:
    """Map a failed gateway response onto the gateway error taxonomy."""
    if response.is_success:
        return
    error = _error_body(response)
    message = str(
        error.get("message") or f"Payment gateway returned {response.status_code}"
    )
    code = error.get("decline_code") or error.get("code")
    code = str(code) if code is not None else None
    if (
        response.status_code == _TOO_MANY_REQUESTS
        or response.status_code >= _SERVER_ERROR
    ):
        raise GatewayNetworkError(message, code=code)
    if response.status_code == _PAYMENT_REQUIRED or error.get("type") == "card_error":
        raise CardDeclinedError(message, code=code)
    raise GatewayConfigurationError(message, code=code)


def _error_body(response: httpx.Response) -> dict[str, object]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return body if isinstance(body, dict) else {}


def _confirmation_outcome(payload: dict[str, object]) -> ConfirmationOutcome | None:
    """Translate an intent payload into an outcome, or None while pending."""
    status = payload.get("status")
    if status == "succeeded":
        return ConfirmationSucceeded()
    if status == "requires_action":
        next_action = payload.get("next_action")
        if not isinstance(next_action, dict):
            next_action = {}
        return RequiresAction(details=next_action)
    if status == "requires_payment_method":
        error = payload.get("last_payment_error")
        if isinstance(error, dict) and error.get("message"):
            return ConfirmationFailed(reason=str(error["message"]))
        return ConfirmationFailed(reason="The payment method was not accepted.")
    if status == "canceled":
        return ConfirmationFailed(reason="The payment was canceled.")
    return None
