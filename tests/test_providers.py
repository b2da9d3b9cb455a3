"""Provider REST behavior against an in-process httpx transport."""

import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from paylayer.core.config import Config
from paylayer.core.exceptions import ConfigurationError, ProviderAPIError, ProviderError
from paylayer.core.types import (
    ChargeInput,
    ChargeStatus,
    CheckoutInput,
    CheckoutMode,
    SubscribeInput,
    SubscriptionStatus,
)
from paylayer.providers import (
    LemonSqueezyProvider,
    MockProvider,
    PaddleProvider,
    PayPalProvider,
    PolarProvider,
    StripeProvider,
)
from paylayer.providers.polar import normalize_base_url
from paylayer.providers.stripe import flatten_form


class Recorder:
    """httpx MockTransport handler that records requests and replays routes."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {key}"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def paths(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]


def form_of(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}


class TestConstruction:
    @pytest.mark.parametrize(
        "cls,message",
        [
            (StripeProvider, "STRIPE_SECRET_KEY"),
            (PaddleProvider, "PADDLE_API_KEY"),
            (PayPalProvider, "PAYPAL_CLIENT_ID"),
            (LemonSqueezyProvider, "LEMONSQUEEZY_API_KEY"),
            (PolarProvider, "POLAR_OAT"),
        ],
    )
    def test_missing_credentials(self, cls, message):
        with pytest.raises(ConfigurationError, match=message):
            cls(Config())

    def test_mock_needs_nothing(self):
        assert MockProvider().name == "mock"

    def test_paddle_sandbox_url(self, monkeypatch):
        monkeypatch.setenv("PADDLE_API_KEY", "pdl_key")
        monkeypatch.setenv("PAYLAYER_ENVIRONMENT", "sandbox")
        assert PaddleProvider(Config()).base_url == "https://sandbox-api.paddle.com"

    def test_paddle_legacy_sandbox_flag(self, monkeypatch):
        monkeypatch.setenv("PADDLE_API_KEY", "pdl_key")
        monkeypatch.setenv("PADDLE_SANDBOX", "true")
        assert PaddleProvider(Config()).base_url == "https://sandbox-api.paddle.com"

    def test_paddle_base_url_override(self, monkeypatch):
        monkeypatch.setenv("PADDLE_API_KEY", "pdl_key")
        monkeypatch.setenv("PADDLE_BASE_URL", "http://localhost:9999")
        assert PaddleProvider(Config()).base_url == "http://localhost:9999"

    def test_polar_accepts_any_token_variable(self, monkeypatch):
        monkeypatch.setenv("POLAR_API_KEY", "polar_key")
        assert PolarProvider(Config()).base_url == "https://api.polar.sh/v1"


class TestStripe:
    @pytest.fixture
    def stripe_env(self, monkeypatch):
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_abc")

    def test_flatten_form(self):
        flat = flatten_form(
            {
                "amount": 1000,
                "customer": None,
                "automatic_payment_methods": {"enabled": True},
                "items": [{"price": "price_1"}],
                "metadata": {"plan": "pro"},
                "pause_collection": "",
            }
        )
        assert flat == {
            "amount": "1000",
            "automatic_payment_methods[enabled]": "true",
            "items[0][price]": "price_1",
            "metadata[plan]": "pro",
            "pause_collection": "",
        }

    @pytest.mark.asyncio
    async def test_charge_creates_customer_and_intent(self, stripe_env):
        recorder = Recorder(
            {
                ("GET", "/v1/customers"): (200, {"data": []}),
                ("POST", "/v1/customers"): (200, {"id": "cus_1"}),
                ("POST", "/v1/payment_intents"): (200, {"id": "pi_1", "status": "requires_payment_method"}),
            }
        )
        provider = StripeProvider(Config(), http_client=recorder.client())

        result = await provider.charge(ChargeInput(currency="USD", amount=Decimal("29.99"), email="a@b.co"))

        assert result.id == "pi_1"
        assert result.status == ChargeStatus.PENDING
        assert result.amount == Decimal("29.99")

        intent_request = recorder.requests[-1]
        assert intent_request.headers["Authorization"] == "Bearer sk_test_abc"
        assert "Stripe-Version" in intent_request.headers
        form = form_of(intent_request)
        assert form["amount"] == "2999"
        assert form["currency"] == "usd"
        assert form["customer"] == "cus_1"
        assert form["metadata[paylayer_provider]"] == "stripe"

    @pytest.mark.asyncio
    async def test_api_error_is_described(self, stripe_env):
        recorder = Recorder(
            {
                ("POST", "/v1/payment_intents"): (
                    402,
                    {"error": {"type": "card_error", "message": "Your card was declined", "code": "card_declined"}},
                ),
            }
        )
        provider = StripeProvider(Config(), http_client=recorder.client())

        with pytest.raises(ProviderAPIError) as exc_info:
            await provider.charge(ChargeInput(currency="USD", amount=Decimal("5")))

        error = exc_info.value
        assert error.status_code == 402
        assert error.provider == "stripe"
        assert "[card_error] Your card was declined (code: card_declined)" in str(error)

    @pytest.mark.asyncio
    async def test_subscribe_requires_email(self, stripe_env):
        provider = StripeProvider(Config())
        with pytest.raises(ProviderError, match="Email is required"):
            await provider.subscribe(SubscribeInput(plan="pro", currency="USD"))

    @pytest.mark.asyncio
    async def test_subscribe_unknown_lookup_key(self, stripe_env):
        recorder = Recorder(
            {
                ("GET", "/v1/customers"): (200, {"data": [{"id": "cus_1"}]}),
                ("GET", "/v1/prices"): (200, {"data": []}),
            }
        )
        provider = StripeProvider(Config(), http_client=recorder.client())
        with pytest.raises(ProviderError, match='lookup_key "pro-monthly"'):
            await provider.subscribe(SubscribeInput(plan="pro-monthly", currency="USD", email="a@b.co"))

    @pytest.mark.asyncio
    async def test_resume_clears_pause_collection(self, stripe_env):
        recorder = Recorder(
            {("POST", "/v1/subscriptions/sub_1"): (200, {"id": "sub_1", "currency": "eur", "items": {"data": []}})}
        )
        provider = StripeProvider(Config(), http_client=recorder.client())

        result = await provider.resume("sub_1")

        assert form_of(recorder.requests[0]) == {"pause_collection": ""}
        assert result.status == SubscriptionStatus.ACTIVE
        assert result.currency == "EUR"

    def test_normalize_webhook_event(self):
        raw = {"id": "evt_1", "type": "charge.succeeded", "data": {"object": {}}, "created": 1, "extra": True}
        assert StripeProvider.normalize_webhook_event(raw) == {
            "type": "charge.succeeded",
            "id": "evt_1",
            "data": {"object": {}},
            "created": 1,
        }


class TestPaddle:
    @pytest.fixture
    def paddle_env(self, monkeypatch):
        monkeypatch.setenv("PADDLE_API_KEY", "pdl_key")

    @pytest.mark.asyncio
    async def test_resume_cancelled_raises(self, paddle_env):
        recorder = Recorder({("GET", "/subscriptions/sub_1"): (200, {"data": {"id": "sub_1", "status": "canceled"}})})
        provider = PaddleProvider(Config(), http_client=recorder.client())

        with pytest.raises(ProviderError, match="Cannot resume a cancelled subscription"):
            await provider.resume("sub_1")
        assert recorder.paths() == [("GET", "/subscriptions/sub_1")]

    @pytest.mark.asyncio
    async def test_portal(self, paddle_env):
        recorder = Recorder(
            {
                ("GET", "/customers"): (200, {"data": [{"id": "ctm_1"}]}),
                ("POST", "/customers/ctm_1/portal-sessions"): (
                    200,
                    {"data": {"urls": {"general": {"overview": "https://portal.paddle/overview"}}}},
                ),
            }
        )
        provider = PaddleProvider(Config(), http_client=recorder.client())
        assert await provider.portal("a@b.co") == "https://portal.paddle/overview"

    @pytest.mark.asyncio
    async def test_portal_unknown_customer(self, paddle_env):
        recorder = Recorder({("GET", "/customers"): (200, {"data": []})})
        provider = PaddleProvider(Config(), http_client=recorder.client())
        with pytest.raises(ProviderError, match="No customer found"):
            await provider.portal("a@b.co")

    def test_normalize_webhook_event(self):
        raw = {"event_type": "transaction.completed", "event_id": "evt_1", "data": {"id": "txn_1"}, "occurred_at": "t"}
        event = PaddleProvider.normalize_webhook_event(raw)
        assert event["type"] == "transaction.completed"
        assert event["id"] == "evt_1"


class TestPayPal:
    @pytest.fixture
    def paypal_env(self, monkeypatch):
        monkeypatch.setenv("PAYPAL_CLIENT_ID", "client")
        monkeypatch.setenv("PAYPAL_CLIENT_SECRET", "secret")
        monkeypatch.setenv("PAYPAL_SANDBOX", "true")

    @staticmethod
    def token_route(request):
        return httpx.Response(200, json={"access_token": "tok_1", "expires_in": 3600})

    @staticmethod
    def transmission_headers():
        return {
            "paypal-auth-algo": "SHA256withRSA",
            "paypal-cert-url": "https://api.paypal.com/cert",
            "paypal-transmission-id": "tid",
            "paypal-transmission-sig": "sig",
            "paypal-transmission-time": "2024-01-01T00:00:00Z",
        }

    @pytest.mark.asyncio
    async def test_token_is_cached(self, paypal_env):
        recorder = Recorder(
            {
                ("POST", "/v1/oauth2/token"): self.token_route,
                ("GET", "/v1/billing/subscriptions/I-1"): (200, {"id": "I-1", "plan_id": "P-1"}),
                ("POST", "/v1/billing/subscriptions/I-1/suspend"): lambda r: httpx.Response(204),
                ("POST", "/v1/billing/subscriptions/I-1/activate"): lambda r: httpx.Response(204),
            }
        )
        provider = PayPalProvider(Config(), http_client=recorder.client())

        paused = await provider.pause("I-1")
        resumed = await provider.resume("I-1")

        assert paused.status == SubscriptionStatus.PAUSED
        assert resumed.status == SubscriptionStatus.ACTIVE
        assert resumed.plan == "P-1"
        assert recorder.paths().count(("POST", "/v1/oauth2/token")) == 1
        assert recorder.requests[1].headers["Authorization"] == "Bearer tok_1"

    @pytest.mark.asyncio
    async def test_charge_returns_approval_url(self, paypal_env):
        order = {
            "id": "ORDER-1",
            "status": "CREATED",
            "links": [{"rel": "approve", "href": "https://paypal.test/approve"}],
        }
        recorder = Recorder(
            {
                ("POST", "/v1/oauth2/token"): self.token_route,
                ("POST", "/v2/checkout/orders"): (201, order),
            }
        )
        provider = PayPalProvider(Config(), http_client=recorder.client())

        result = await provider.charge(
            ChargeInput(currency="USD", amount=Decimal("10"), metadata={"order": "42"})
        )

        assert result.url == "https://paypal.test/approve"
        assert result.status == ChargeStatus.PENDING
        body = json.loads(recorder.requests[-1].content)
        unit = body["purchase_units"][0]
        assert unit["amount"] == {"currency_code": "USD", "value": "10.00"}
        assert json.loads(unit["custom_id"]) == {"order": "42"}

    @pytest.mark.asyncio
    async def test_verify_webhook_missing_headers_no_network(self, paypal_env):
        recorder = Recorder({})
        provider = PayPalProvider(Config(), http_client=recorder.client())

        assert await provider.verify_webhook("{}", "sig", "WH-1", {"paypal-transmission-sig": "sig"}) is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_verify_webhook_success(self, paypal_env):
        def verify_route(request):
            body = json.loads(request.content)
            assert body["webhook_id"] == "WH-1"
            assert body["transmission_id"] == "tid"
            assert body["webhook_event"] == {"id": "WH-EVT"}
            return httpx.Response(200, json={"verification_status": "SUCCESS"})

        recorder = Recorder(
            {
                ("POST", "/v1/oauth2/token"): self.token_route,
                ("POST", "/v1/notifications/verify-webhook-signature"): verify_route,
            }
        )
        provider = PayPalProvider(Config(), http_client=recorder.client())

        assert await provider.verify_webhook('{"id":"WH-EVT"}', "sig", "WH-1", self.transmission_headers()) is True

    @pytest.mark.asyncio
    async def test_verify_webhook_failure_status(self, paypal_env):
        recorder = Recorder(
            {
                ("POST", "/v1/oauth2/token"): self.token_route,
                ("POST", "/v1/notifications/verify-webhook-signature"): (200, {"verification_status": "FAILURE"}),
            }
        )
        provider = PayPalProvider(Config(), http_client=recorder.client())
        assert await provider.verify_webhook("{}", "sig", "WH-1", self.transmission_headers()) is False

    @pytest.mark.asyncio
    async def test_verify_webhook_transport_error_is_false(self, paypal_env):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        recorder = Recorder({("POST", "/v1/oauth2/token"): broken})
        provider = PayPalProvider(Config(), http_client=recorder.client())
        assert await provider.verify_webhook("{}", "sig", "WH-1", self.transmission_headers()) is False

    def test_normalize_webhook_event_accepts_camel_case(self):
        event = PayPalProvider.normalize_webhook_event({"eventType": "PAYMENT.CAPTURE.COMPLETED", "createTime": "t"})
        assert event["type"] == "PAYMENT.CAPTURE.COMPLETED"
        assert event["create_time"] == "t"
        assert event["resource"] == {}


class TestLemonSqueezy:
    @pytest.fixture
    def ls_env(self, monkeypatch):
        monkeypatch.setenv("LEMONSQUEEZY_API_KEY", "ls_key")

    @pytest.mark.asyncio
    async def test_charge_requires_store(self, ls_env):
        provider = LemonSqueezyProvider(Config())
        with pytest.raises(ProviderError, match="LEMONSQUEEZY_STORE_ID"):
            await provider.charge(ChargeInput(currency="USD", amount=Decimal("5"), price_id="1"))

    @pytest.mark.asyncio
    async def test_charge_custom_price_in_cents(self, ls_env, monkeypatch):
        monkeypatch.setenv("LEMONSQUEEZY_STORE_ID", "99")
        recorder = Recorder(
            {
                ("POST", "/v1/checkouts"): (
                    201,
                    {"data": {"id": "chk_1", "attributes": {"url": "https://ls.test/checkout"}}},
                )
            }
        )
        provider = LemonSqueezyProvider(Config(), http_client=recorder.client())

        result = await provider.charge(ChargeInput(currency="USD", amount=Decimal("12.50"), price_id="77"))

        assert result.url == "https://ls.test/checkout"
        body = json.loads(recorder.requests[0].content)
        assert body["data"]["attributes"]["custom_price"] == 1250
        assert body["data"]["relationships"]["variant"]["data"]["id"] == "77"
        assert body["data"]["relationships"]["store"]["data"]["id"] == "99"

    @pytest.mark.asyncio
    async def test_portal_falls_back_to_subdomain(self, ls_env, monkeypatch):
        monkeypatch.setenv("LEMONSQUEEZY_STORE_SUBDOMAIN", "acme")
        provider = LemonSqueezyProvider(Config())
        assert await provider.portal("a@b.co") == "https://acme.lemonsqueezy.com/billing"

    @pytest.mark.asyncio
    async def test_portal_prefers_signed_url(self, ls_env, monkeypatch):
        monkeypatch.setenv("LEMONSQUEEZY_STORE_ID", "99")
        recorder = Recorder(
            {
                ("GET", "/v1/customers"): (
                    200,
                    {"data": [{"attributes": {"urls": {"customer_portal": "https://signed.test"}}}]},
                )
            }
        )
        provider = LemonSqueezyProvider(Config(), http_client=recorder.client())
        assert await provider.portal("a@b.co") == "https://signed.test"

    def test_normalize_webhook_event(self):
        raw = {"meta": {"event_name": "order_created", "custom_data": {"k": "v"}}, "data": {"id": "1"}}
        event = LemonSqueezyProvider.normalize_webhook_event(raw)
        assert event == {"type": "order_created", "id": "1", "data": {"id": "1"}, "custom_data": {"k": "v"}}


class TestPolar:
    @pytest.fixture
    def polar_env(self, monkeypatch):
        monkeypatch.setenv("POLAR_OAT", "polar_oat")

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://api.polar.sh", "https://api.polar.sh/v1"),
            ("https://api.polar.sh/", "https://api.polar.sh/v1"),
            ("https://api.polar.sh/v1", "https://api.polar.sh/v1"),
        ],
    )
    def test_normalize_base_url(self, url, expected):
        assert normalize_base_url(url) == expected

    @pytest.mark.asyncio
    async def test_charge_requires_product(self, polar_env):
        provider = PolarProvider(Config())
        with pytest.raises(ProviderError, match="product_id is required"):
            await provider.charge(ChargeInput(currency="USD", amount=Decimal("5")))

    @pytest.mark.asyncio
    async def test_subscribe_rejects_placeholder_email(self, polar_env):
        provider = PolarProvider(Config())
        with pytest.raises(ProviderError, match="real email"):
            await provider.subscribe(SubscribeInput(plan="prod_1", currency="USD", email="a@example.com"))

    @pytest.mark.asyncio
    async def test_pause_sets_cancel_at_period_end(self, polar_env):
        recorder = Recorder({("PATCH", "/v1/subscriptions/sub_1"): (200, {"id": "sub_1", "currency": "usd"})})
        provider = PolarProvider(Config(), http_client=recorder.client())

        result = await provider.pause("sub_1")

        assert json.loads(recorder.requests[0].content) == {"cancel_at_period_end": True}
        assert result.status == SubscriptionStatus.PAUSED


class TestMock:
    @pytest.mark.asyncio
    async def test_charge_and_subscribe(self):
        provider = MockProvider()
        charge = await provider.charge(ChargeInput(currency="USD", amount=Decimal("1")))
        assert charge.id.startswith("ch_mock_")
        assert charge.status == ChargeStatus.PENDING

        subscription = await provider.subscribe(SubscribeInput(plan="pro", currency="USD"))
        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_portal_url(self, monkeypatch):
        monkeypatch.setenv("PAYLAYER_PORTAL_BASE_URL", "https://billing.test")
        assert await MockProvider().portal("a+b@c.co") == "https://billing.test/customer/a%2Bb%40c.co?provider=mock"

    @pytest.mark.asyncio
    async def test_checkout(self):
        result = await MockProvider().checkout(CheckoutInput(currency="USD", mode=CheckoutMode.SUBSCRIPTION))
        assert result.mode == CheckoutMode.SUBSCRIPTION
        assert result.url.endswith("?provider=mock")

    def test_verify_and_normalize_passthrough(self):
        raw = {"type": "payment.success", "amount": 5}
        assert MockProvider().verify_webhook("{}", "", "") is True
        assert MockProvider.normalize_webhook_event(raw) is raw
