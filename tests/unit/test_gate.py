"""Unit tests for the proxy request gate."""

import json

import pytest

from crisper.gateway.gate import ANALYZE_IMAGE, GENERATE, EndpointPolicy, RequestGate
from crisper.gateway.origin import OriginPolicy
from crisper.gateway.quota import QuotaTable
from crisper.models.models import AnalyzeImageProxyRequest, GenerateProxyRequest
from crisper.utils.errors import (
    AuthorizationError,
    ConfigurationError,
    MethodNotAllowedError,
    ThrottledError,
    ValidationError,
)


GOOD_ORIGIN = {"origin": "http://localhost:5173", "x-forwarded-for": "203.0.113.7"}
BAD_ORIGIN = {"origin": "https://evil.example.com", "x-forwarded-for": "203.0.113.7"}


def make_gate(server_key="server-key", generate_limit=10, analyze_limit=5, **kwargs):
    return RequestGate(
        origin_policy=OriginPolicy(allowed_host_patterns=["crisper*.vercel.app"]),
        quota_table=QuotaTable(window_seconds=60),
        policies={
            GENERATE: EndpointPolicy(GENERATE, generate_limit, "Please wait a moment before generating more recipes"),
            ANALYZE_IMAGE: EndpointPolicy(ANALYZE_IMAGE, analyze_limit, "Please wait before analyzing more images"),
        },
        server_key=lambda: server_key,
        **kwargs,
    )


class TestAdmit:
    """Test method, origin, quota and credential checks."""

    def test_allowed_post(self):
        admission = make_gate().admit(GENERATE, "POST", GOOD_ORIGIN)

        assert admission.preflight is False
        assert admission.client_id == "203.0.113.7"
        assert admission.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_options_is_preflight_even_from_bad_origin(self):
        gate = make_gate(server_key="")
        admission = gate.admit(GENERATE, "OPTIONS", BAD_ORIGIN)

        assert admission.preflight is True
        assert "POST" in admission.headers["Access-Control-Allow-Methods"]
        assert gate.quota_table.count(GENERATE, "203.0.113.7", 10) == 0

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_other_methods_rejected(self, method):
        with pytest.raises(MethodNotAllowedError) as exc:
            make_gate().admit(GENERATE, method, GOOD_ORIGIN)
        assert exc.value.status_code == 405

    def test_unknown_origin_forbidden_without_counting_quota(self):
        gate = make_gate()

        with pytest.raises(AuthorizationError) as exc:
            gate.admit(GENERATE, "POST", BAD_ORIGIN)

        assert exc.value.status_code == 403
        assert exc.value.to_dict()["error"] == "Forbidden"
        assert gate.quota_table.count(GENERATE, "203.0.113.7", 10) == 0

    def test_referer_used_when_origin_missing(self):
        headers = {"referer": "https://crisper-preview.vercel.app/app", "x-forwarded-for": "203.0.113.7"}
        assert make_gate().admit(GENERATE, "POST", headers).preflight is False

    def test_eleventh_generate_request_throttled(self):
        gate = make_gate()
        for _ in range(10):
            gate.admit(GENERATE, "POST", GOOD_ORIGIN)

        with pytest.raises(ThrottledError) as exc:
            gate.admit(GENERATE, "POST", GOOD_ORIGIN)

        assert exc.value.status_code == 429
        assert exc.value.error == "Too Many Requests"
        assert exc.value.message == "Please wait a moment before generating more recipes"
        assert exc.value.retry_after >= 1

    def test_endpoints_have_separate_quotas(self):
        gate = make_gate()
        for _ in range(5):
            gate.admit(ANALYZE_IMAGE, "POST", GOOD_ORIGIN)

        with pytest.raises(ThrottledError):
            gate.admit(ANALYZE_IMAGE, "POST", GOOD_ORIGIN)
        gate.admit(GENERATE, "POST", GOOD_ORIGIN)

    def test_missing_server_key_after_quota(self):
        gate = make_gate(server_key="")

        with pytest.raises(ConfigurationError) as exc:
            gate.admit(GENERATE, "POST", GOOD_ORIGIN)

        assert exc.value.status_code == 500
        assert exc.value.error == "Server configuration error: API key not set"
        assert gate.quota_table.count(GENERATE, "203.0.113.7", 10) == 1

    def test_origin_checked_before_server_key(self):
        with pytest.raises(AuthorizationError):
            make_gate(server_key="").admit(GENERATE, "POST", BAD_ORIGIN)

    def test_untrusted_forwarding_uses_peer(self):
        gate = make_gate(trust_forwarded=False)
        admission = gate.admit(GENERATE, "POST", GOOD_ORIGIN, peer="192.0.2.9")

        assert admission.client_id == "192.0.2.9"


class TestParsePayload:
    """Test body validation for admitted requests."""

    def test_generate_payload(self):
        body = json.dumps({"prompt": "Make soup", "generationConfig": {"temperature": 0.2}}).encode()
        payload = make_gate().parse_payload(GENERATE, body)

        assert isinstance(payload, GenerateProxyRequest)
        assert payload.generation_config == {"temperature": 0.2}

    @pytest.mark.parametrize("body", [b"", b"{}", b'{"prompt": ""}', b'{"prompt": "   "}', b'{"prompt": 5}'])
    def test_prompt_required(self, body):
        with pytest.raises(ValidationError) as exc:
            make_gate().parse_payload(GENERATE, body)
        assert exc.value.error == "Prompt is required"

    def test_prompt_at_limit_accepted_and_over_limit_rejected(self):
        gate = make_gate(max_prompt_chars=100)
        gate.parse_payload(GENERATE, json.dumps({"prompt": "x" * 100}).encode())

        with pytest.raises(ValidationError) as exc:
            gate.parse_payload(GENERATE, json.dumps({"prompt": "x" * 101}).encode())
        assert exc.value.error == "Prompt too long"

    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            make_gate().parse_payload(GENERATE, b"{not json")

    def test_json_array_rejected(self):
        with pytest.raises(ValidationError):
            make_gate().parse_payload(GENERATE, b'["prompt"]')

    def test_image_payload(self):
        body = json.dumps({"imageBase64": "aGVsbG8=", "mimeType": "image/png"}).encode()
        payload = make_gate().parse_payload(ANALYZE_IMAGE, body)

        assert isinstance(payload, AnalyzeImageProxyRequest)
        assert payload.mime_type == "image/png"

    def test_image_required(self):
        with pytest.raises(ValidationError) as exc:
            make_gate().parse_payload(ANALYZE_IMAGE, b'{"mimeType": "image/png"}')
        assert exc.value.error == "Image data is required"

    def test_image_too_large(self):
        gate = make_gate(max_image_base64_bytes=16)

        with pytest.raises(ValidationError) as exc:
            gate.parse_payload(ANALYZE_IMAGE, json.dumps({"imageBase64": "A" * 17}).encode())
        assert exc.value.message == "Image too large. Please use a smaller image."

    def test_bad_mime_type_reported_as_validation_error(self):
        with pytest.raises(ValidationError):
            make_gate().parse_payload(ANALYZE_IMAGE, b'{"imageBase64": "aGVsbG8=", "mimeType": "text/plain"}')
