"""Tests for HTTP-based adapters."""

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest

from ballot_builder.adapters.election_store import HttpxElectionStore
from ballot_builder.adapters.payment_gateway import HttpxPaymentGateway
from ballot_builder.domain.ballots import BallotDraft
from ballot_builder.domain.elections import (
    ElectionRecord,
    ElectionRejectedError,
    ElectionStoreUnavailableError,
    PersistenceOrigin,
)
from ballot_builder.domain.payments import (
    CardDeclinedError,
    ConfirmationFailed,
    ConfirmationSucceeded,
    GatewayConfigurationError,
    GatewayNetworkError,
    PaymentStatus,
    RequiresAction,
)


CARD_ERROR = {"error": {"message": "declined", "type": "card_error"}}
REQUIRES_3DS = {
    "id": "pi_1",
    "status": "requires_action",
    "next_action": {"type": "3ds"},
}


def _gateway(handler) -> HttpxPaymentGateway:  # type: ignore[no-untyped-def]
    return HttpxPaymentGateway(
        api_key="sk_test",
        base_url="https://payments.test/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        attempts=2,
        backoff_seconds=0,
        poll_interval_seconds=0,
        poll_limit=3,
    )


def _store(handler) -> HttpxElectionStore:  # type: ignore[no-untyped-def]
    return HttpxElectionStore(
        base_url="https://store.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        api_token="store-token",
    )


def _record() -> ElectionRecord:
    return ElectionRecord(
        id="e-1",
        snapshot=BallotDraft(title="Annual board election", seat_count=10),
        payment_intent_id="pi_1",
        created_at=datetime(2024, 11, 1, tzinfo=UTC),
        persistence_origin=PersistenceOrigin.LOCAL_FALLBACK,
    )


async def _collect(gateway: HttpxPaymentGateway) -> list[object]:
    return [outcome async for outcome in gateway.confirm("pi_1", "pm_card")]


def test_gateway_create_intent_sends_idempotency_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "id": "pi_1",
                "amount": 100,
                "currency": "usd",
                "status": "requires_payment_method",
                "client_secret": "pi_1_secret",
            },
        )

    gateway = _gateway(handler)

    authorization = asyncio.run(gateway.create_intent(100, "usd", "key-1"))

    assert authorization.intent_id == "pi_1"
    assert authorization.status is PaymentStatus.CREATED
    assert authorization.client_secret == "pi_1_secret"
    assert seen[0].url.path == "/v1/payment_intents"
    assert seen[0].headers["Idempotency-Key"] == "key-1"
    assert seen[0].headers["Authorization"] == "Bearer sk_test"
    assert json.loads(seen[0].content)["amount"] == 100
    assert "metadata" not in json.loads(seen[0].content)


def test_gateway_create_intent_sends_description_and_metadata() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "pi_1", "status": "processing"})

    asyncio.run(
        _gateway(handler).create_intent(
            100,
            "usd",
            "key-1",
            description="Annual board election",
            metadata={"session_id": "session-1", "workflow_id": "wf-1"},
        )
    )

    assert bodies[0]["description"] == "Annual board election"
    assert bodies[0]["metadata"] == {"session_id": "session-1", "workflow_id": "wf-1"}


def test_gateway_retries_server_errors_with_same_key() -> None:
    keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) == 1:
            return httpx.Response(503, json={"error": {"message": "busy"}})
        return httpx.Response(200, json={"id": "pi_1", "status": "processing"})

    authorization = asyncio.run(_gateway(handler).create_intent(100, "usd", "key-1"))

    assert authorization.intent_id == "pi_1"
    assert keys == ["key-1", "key-1"]


def test_gateway_maps_transport_errors_to_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayNetworkError):
        asyncio.run(_gateway(handler).create_intent(100, "usd", "key-1"))


@pytest.mark.parametrize(
    ("status_code", "body", "error_type"),
    [
        (402, CARD_ERROR, CardDeclinedError),
        (400, CARD_ERROR, CardDeclinedError),
        (401, {"error": {"message": "Invalid API key"}}, GatewayConfigurationError),
        (429, {"error": {"message": "slow down"}}, GatewayNetworkError),
    ],
)
def test_gateway_error_mapping(
    status_code: int, body: dict[str, object], error_type: type[Exception]
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    with pytest.raises(error_type):
        asyncio.run(_gateway(handler).create_intent(100, "usd", "key-1"))


def test_gateway_confirm_polls_until_succeeded() -> None:
    responses = iter(
        [
            REQUIRES_3DS,
            REQUIRES_3DS,
            {"id": "pi_1", "status": "processing"},
            {"id": "pi_1", "status": "succeeded"},
        ]
    )
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(200, json=next(responses))

    outcomes = asyncio.run(_collect(_gateway(handler)))

    assert outcomes == [RequiresAction({"type": "3ds"}), ConfirmationSucceeded()]
    assert methods == ["POST", "GET", "GET", "GET"]


def test_gateway_confirm_reports_failed_payment() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": "pi_1",
                "status": "requires_payment_method",
                "last_payment_error": {"message": "Your card was declined."},
            },
        )

    outcomes = asyncio.run(_collect(_gateway(handler)))

    assert outcomes == [ConfirmationFailed("Your card was declined.")]


def test_gateway_confirm_stops_after_poll_limit() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, json={"id": "pi_1", "status": "processing"})

    outcomes = asyncio.run(_collect(_gateway(handler)))

    assert outcomes == []
    assert len(calls) == 4


def test_gateway_cancel_posts_to_intent() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"id": "pi_1", "status": "canceled"})

    asyncio.run(_gateway(handler).cancel("pi_1"))

    assert paths == ["/v1/payment_intents/pi_1/cancel"]


def test_store_create_posts_record() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "e-1"})

    stored_id = asyncio.run(_store(handler).create(_record()))

    payload = json.loads(seen[0].content)
    assert stored_id == "e-1"
    assert payload["id"] == "e-1"
    assert payload["payment_intent_id"] == "pi_1"
    assert payload["title"] == "Annual board election"
    assert seen[0].headers["Authorization"] == "Bearer store-token"


def test_store_create_treats_conflict_as_stored() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": "duplicate"})

    assert asyncio.run(_store(handler).create(_record())) == "e-1"


def test_store_create_maps_server_errors_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    with pytest.raises(ElectionStoreUnavailableError):
        asyncio.run(_store(handler).create(_record()))


def test_store_create_maps_timeouts_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ElectionStoreUnavailableError):
        asyncio.run(_store(handler).create(_record()))


def test_store_create_maps_redirect_loops_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("redirect loop", request=request)

    with pytest.raises(ElectionStoreUnavailableError):
        asyncio.run(_store(handler).create(_record()))


def test_store_create_reports_rejection_details() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"code": "invalid_dates", "message": "End before start"}},
        )

    with pytest.raises(ElectionRejectedError) as excinfo:
        asyncio.run(_store(handler).create(_record()))

    assert excinfo.value.code == "invalid_dates"
    assert excinfo.value.message == "End before start"
    assert excinfo.value.status_code == 400


def test_store_get_returns_none_when_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/elections/e-1":
            return httpx.Response(200, json={"id": "e-1", "title": "Election"})
        return httpx.Response(404)

    store = _store(handler)

    assert asyncio.run(store.get("e-1")) == {"id": "e-1", "title": "Election"}
    assert asyncio.run(store.get("e-2")) is None
