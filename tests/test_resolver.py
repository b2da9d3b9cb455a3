import pytest

from paylayer.core.exceptions import WebhookError
from paylayer.webhooks.resolver import (
    get_signature,
    normalize_headers,
    resolve_provider,
    signature_header,
)


class TestNormalizeHeaders:
    def test_mapping_lowercased(self):
        assert normalize_headers({"Stripe-Signature": "t=1,v1=a"}) == {"stripe-signature": "t=1,v1=a"}

    def test_list_of_pairs(self):
        headers = normalize_headers([("X-Polar-Signature", "abc"), ("Content-Type", "application/json")])
        assert headers == {"x-polar-signature": "abc", "content-type": "application/json"}

    def test_bytes_pairs(self):
        assert normalize_headers([(b"X-Signature", b"abc")]) == {"x-signature": "abc"}

    def test_first_value_wins(self):
        assert normalize_headers([("X-Signature", "one"), ("x-signature", "two")]) == {"x-signature": "one"}

    def test_object_with_items(self):
        class Headers:
            def items(self):
                return [("Paddle-Signature", "ts=1;h1=x")]

        assert normalize_headers(Headers()) == {"paddle-signature": "ts=1;h1=x"}

    def test_none(self):
        assert normalize_headers(None) == {}

    @pytest.mark.parametrize("bad", ["stripe-signature", b"raw", [("only-name",)]])
    def test_invalid_shapes(self, bad):
        with pytest.raises(WebhookError):
            normalize_headers(bad)


class TestResolveProvider:
    def test_stripe_only(self):
        assert resolve_provider({"stripe-signature": "t=1,v1=a"}) == "stripe"

    def test_polar_only(self):
        assert resolve_provider({"x-polar-signature": "abc"}) == "polar"

    def test_none_is_mock(self):
        assert resolve_provider({}) == "mock"
        assert resolve_provider({"content-type": "application/json"}) == "mock"

    def test_paddle(self):
        assert resolve_provider({"paddle-signature": "ts=1;h1=a"}) == "paddle"

    def test_paypal_by_transmission_id(self):
        assert resolve_provider({"paypal-transmission-id": "abc"}) == "paypal"

    def test_lemonsqueezy(self):
        assert resolve_provider({"x-signature": "abc"}) == "lemonsqueezy"

    def test_detection_order(self):
        headers = {"x-polar-signature": "a", "stripe-signature": "b"}
        assert resolve_provider(headers) == "stripe"

    def test_override_wins_over_headers(self):
        assert resolve_provider({"stripe-signature": "t=1,v1=a"}, override="paddle") == "paddle"

    def test_case_insensitive_via_normalization(self):
        headers = normalize_headers([("STRIPE-SIGNATURE", "t=1,v1=a")])
        assert resolve_provider(headers) == "stripe"


def test_get_signature():
    headers = {"paddle-signature": "ts=1;h1=abc"}
    assert get_signature(headers, "paddle") == "ts=1;h1=abc"
    assert get_signature(headers, "stripe") == ""
    assert get_signature(headers, "mock") == ""


def test_signature_header():
    assert signature_header("paypal") == "paypal-transmission-sig"
    assert signature_header("mock") is None
