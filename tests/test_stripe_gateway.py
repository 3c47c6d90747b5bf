"""Tests for the Stripe gateway over a mocked HTTP transport."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from trainfood.errors import GatewayError
from trainfood.payment import StripeGateway, WebhookEventType, sign_payload

from .test_payments import event_body


def intent_json(**overrides):
    body = {
        "id": "pi_123",
        "object": "payment_intent",
        "client_secret": "pi_123_secret_abc",
        "status": "requires_payment_method",
        "amount": 54450,
        "currency": "inr",
        "metadata": {"orderId": "ord_1"},
    }
    body.update(overrides)
    return body


class Recorder:
    """Mock transport handler: answers with queued responses, keeps the requests."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def form(self) -> dict[str, list[str]]:
        return parse_qs(self.last.content.decode())


@pytest.fixture
async def make_gateway():
    gateways = []

    def _make(*responses):
        recorder = Recorder(*responses)
        gateway = StripeGateway("sk_test_key", transport=httpx.MockTransport(recorder))
        gateways.append(gateway)
        return gateway, recorder

    yield _make
    for gateway in gateways:
        await gateway.aclose()


class TestIntents:
    async def test_create_intent_sends_form(self, make_gateway):
        gateway, recorder = make_gateway(httpx.Response(200, json=intent_json()))

        intent = await gateway.create_intent(
            54450, "inr", {"orderId": "ord_1"}, method_types=("upi",), idempotency_key="checkout-ord_1"
        )

        assert intent.id == "pi_123"
        assert intent.client_secret == "pi_123_secret_abc"
        assert intent.amount_cents == 54450
        assert intent.metadata == {"orderId": "ord_1"}
        assert not intent.succeeded

        request = recorder.last
        assert request.method == "POST"
        assert request.url.path == "/v1/payment_intents"
        assert request.headers["Idempotency-Key"] == "checkout-ord_1"
        assert request.headers["Authorization"].startswith("Basic ")
        assert recorder.form() == {
            "amount": ["54450"],
            "currency": ["inr"],
            "payment_method_types[]": ["upi"],
            "metadata[orderId]": ["ord_1"],
        }

    async def test_no_idempotency_header_without_key(self, make_gateway):
        gateway, recorder = make_gateway(httpx.Response(200, json=intent_json()))
        await gateway.create_intent(100, "inr", {})
        assert "Idempotency-Key" not in recorder.last.headers

    async def test_retrieve(self, make_gateway):
        gateway, recorder = make_gateway(httpx.Response(200, json=intent_json(status="succeeded")))

        intent = await gateway.retrieve_intent("pi_123")

        assert intent.succeeded
        assert recorder.last.method == "GET"
        assert recorder.last.url.path == "/v1/payment_intents/pi_123"

    async def test_cancel(self, make_gateway):
        gateway, recorder = make_gateway(httpx.Response(200, json=intent_json(status="canceled")))

        intent = await gateway.cancel_intent("pi_123")

        assert intent.status == "canceled"
        assert recorder.last.url.path == "/v1/payment_intents/pi_123/cancel"


class TestRefunds:
    async def test_free_text_reason_goes_to_metadata(self, make_gateway):
        gateway, recorder = make_gateway(
            httpx.Response(200, json={"id": "re_1", "amount": 54450, "status": "succeeded"})
        )

        refund = await gateway.refund("pi_123", "missed the train")

        assert refund.id == "re_1"
        assert refund.intent_id == "pi_123"
        assert refund.amount_cents == 54450
        form = recorder.form()
        assert form["payment_intent"] == ["pi_123"]
        assert form["reason"] == ["requested_by_customer"]
        assert form["metadata[reason]"] == ["missed the train"]
        assert "amount" not in form

    async def test_known_reason_and_partial_amount(self, make_gateway):
        gateway, recorder = make_gateway(
            httpx.Response(200, json={"id": "re_2", "amount": 1000, "status": "pending"})
        )

        refund = await gateway.refund("pi_123", "duplicate", amount_cents=1000)

        assert refund.status == "pending"
        assert recorder.form()["reason"] == ["duplicate"]
        assert recorder.form()["amount"] == ["1000"]


class TestErrors:
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_statuses(self, make_gateway, status):
        gateway, _ = make_gateway(
            httpx.Response(status, json={"error": {"type": "api_error", "message": "try later"}})
        )

        with pytest.raises(GatewayError) as info:
            await gateway.retrieve_intent("pi_123")

        assert info.value.retryable
        assert info.value.status_code == status
        assert info.value.code == "api_error"

    async def test_card_error_is_terminal(self, make_gateway):
        gateway, _ = make_gateway(
            httpx.Response(
                402,
                json={"error": {"type": "card_error", "code": "card_declined", "message": "declined"}},
            )
        )

        with pytest.raises(GatewayError) as info:
            await gateway.create_intent(100, "inr", {})

        assert not info.value.retryable
        assert info.value.code == "card_declined"
        assert info.value.message == "declined"

    async def test_non_json_error_body(self, make_gateway):
        gateway, _ = make_gateway(httpx.Response(404, text="not here"))

        with pytest.raises(GatewayError) as info:
            await gateway.retrieve_intent("pi_missing")

        assert info.value.code == "http_404"
        assert not info.value.retryable

    async def test_timeout(self, make_gateway):
        gateway, _ = make_gateway(httpx.ReadTimeout("slow"))

        with pytest.raises(GatewayError) as info:
            await gateway.retrieve_intent("pi_123")

        assert info.value.code == "GATEWAY_TIMEOUT"
        assert info.value.retryable

    async def test_connection_failure(self, make_gateway):
        gateway, _ = make_gateway(httpx.ConnectError("refused"))

        with pytest.raises(GatewayError) as info:
            await gateway.cancel_intent("pi_123")

        assert info.value.code == "GATEWAY_UNAVAILABLE"
        assert info.value.retryable


class TestWebhook:
    async def test_verifies_with_shared_scheme(self, make_gateway):
        gateway, _ = make_gateway()
        payload = event_body(WebhookEventType.SUCCEEDED, "pi_123", amount=54450)

        event = gateway.verify_webhook_signature(payload, sign_payload(payload, "whsec_x"), "whsec_x")

        assert event.type == WebhookEventType.SUCCEEDED
        assert event.intent_id == "pi_123"
        assert event.amount_cents == 54450
        assert json.loads(payload)["id"] == event.id
