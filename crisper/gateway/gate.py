"""Origin & abuse gate evaluated for every proxy request.

Checks run in a fixed order and the first failure wins:
1. Method: OPTIONS is a preflight answered at once; anything but POST is rejected
2. Origin: Origin (or Referer) must be loopback or on the allow-list
3. Quota: per-client, per-endpoint fixed window (limits)
4. Server credential: the proxy must hold a GEMINI_API_KEY
5. Payload: required fields present and within size bounds

Only a request that passes all of them is forwarded upstream.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from crisper.gateway.origin import OriginPolicy, client_identity, request_origin
from crisper.gateway.quota import QuotaTable
from crisper.models.models import AnalyzeImageProxyRequest, GenerateProxyRequest
from crisper.utils.config import Config, config as default_config
from crisper.utils.errors import (
    AuthorizationError,
    ConfigurationError,
    MethodNotAllowedError,
    ThrottledError,
    ValidationError,
)
from crisper.utils.logger import logger


GENERATE = "generate"
ANALYZE_IMAGE = "analyze-image"

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type"


@dataclass(frozen=True)
class EndpointPolicy:
    """Per-endpoint gate settings."""

    name: str
    max_requests: int
    throttle_message: str


@dataclass
class Admission:
    """Outcome of the method/origin/quota/credential checks."""

    endpoint: str
    preflight: bool
    origin: Optional[str]
    client_id: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)


def preflight_headers(origin: Optional[str]) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
    }


class RequestGate:
    """Authorizes and rate-limits proxy requests before they reach the upstream."""

    def __init__(
        self,
        origin_policy: OriginPolicy,
        quota_table: QuotaTable,
        policies: Mapping[str, EndpointPolicy],
        server_key: Callable[[], str],
        max_prompt_chars: int = 10000,
        max_image_base64_bytes: int = 7 * 1024 * 1024,
        trust_forwarded: bool = True,
    ) -> None:
        """
        Args:
            origin_policy: Origin allow-list.
            quota_table: Shared quota state (injected so tests get a fresh one).
            policies: Endpoint name -> EndpointPolicy.
            server_key: Returns the server-held upstream key ("" when unset).
            max_prompt_chars: Upper bound on /generate prompt length.
            max_image_base64_bytes: Upper bound on encoded /analyze-image payloads.
            trust_forwarded: Derive client identity from forwarding headers.
        """
        self.origin_policy = origin_policy
        self.quota_table = quota_table
        self.policies = dict(policies)
        self.server_key = server_key
        self.max_prompt_chars = max_prompt_chars
        self.max_image_base64_bytes = max_image_base64_bytes
        self.trust_forwarded = trust_forwarded

    @classmethod
    def from_config(cls, cfg: Optional[Config] = None, quota_table: Optional[QuotaTable] = None) -> "RequestGate":
        """Build a gate from configuration, with a fresh QuotaTable unless one is given."""
        cfg = cfg or default_config
        return cls(
            origin_policy=OriginPolicy(cfg.ALLOWED_ORIGINS, cfg.ALLOWED_HOST_PATTERNS),
            quota_table=quota_table or QuotaTable(window_seconds=cfg.RATE_LIMIT_WINDOW_SECONDS),
            policies={
                GENERATE: EndpointPolicy(
                    GENERATE, cfg.GENERATE_MAX_REQUESTS, "Please wait a moment before generating more recipes"
                ),
                ANALYZE_IMAGE: EndpointPolicy(
                    ANALYZE_IMAGE, cfg.ANALYZE_MAX_REQUESTS, "Please wait before analyzing more images"
                ),
            },
            server_key=lambda: cfg.GEMINI_API_KEY,
            max_prompt_chars=cfg.MAX_PROMPT_CHARS,
            max_image_base64_bytes=cfg.MAX_IMAGE_BASE64_BYTES,
            trust_forwarded=cfg.TRUST_FORWARDED_HEADERS,
        )

    def admit(
        self,
        endpoint: str,
        method: str,
        headers: Mapping[str, str],
        peer: Optional[str] = None,
    ) -> Admission:
        """Run the method, origin, quota and server-credential checks.

        Args:
            endpoint: GENERATE or ANALYZE_IMAGE.
            method: HTTP method of the inbound request.
            headers: Request headers (case-insensitive mapping or lowercase keys).
            peer: Socket peer address, used when forwarding headers are not trusted.

        Returns:
            Admission; preflight=True means answer 200 with admission.headers
            and do nothing else.

        Raises:
            MethodNotAllowedError, AuthorizationError, ThrottledError, ConfigurationError
        """
        policy = self.policies[endpoint]
        origin = request_origin(headers)

        method = method.upper()
        if method == "OPTIONS":
            return Admission(endpoint=endpoint, preflight=True, origin=origin, headers=preflight_headers(origin))
        if method != "POST":
            raise MethodNotAllowedError("Only POST is supported on this endpoint")

        if not self.origin_policy.is_allowed(origin):
            logger.warning(
                f"[Security] Blocked {endpoint} request from unauthorized origin: {origin}",
                extra={"endpoint": endpoint, "origin": origin},
            )
            raise AuthorizationError("This API is only accessible from the Crisper application")

        client_id = client_identity(headers, peer=peer, trust_forwarded=self.trust_forwarded)
        decision = self.quota_table.hit(endpoint, client_id, policy.max_requests)
        if not decision.allowed:
            logger.warning(
                f"[Security] Rate limit exceeded for {client_id} on {endpoint}: "
                f"{decision.count}/{decision.limit}",
                extra={"endpoint": endpoint, "client_id": client_id},
            )
            raise ThrottledError(policy.throttle_message, retry_after=decision.retry_after)

        if not self.server_key():
            logger.error("GEMINI_API_KEY is not configured on the server", extra={"endpoint": endpoint})
            raise ConfigurationError("Please set GEMINI_API_KEY in the server environment")

        return Admission(
            endpoint=endpoint,
            preflight=False,
            origin=origin,
            client_id=client_id,
            headers={"Access-Control-Allow-Origin": origin or "*"},
        )

    def parse_payload(self, endpoint: str, body: bytes) -> BaseModel:
        """Validate the request body for an admitted request.

        Raises:
            ValidationError: Malformed JSON, missing fields or oversized input.
        """
        try:
            data: Any = json.loads(body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body must be valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        if endpoint == GENERATE:
            return self._parse_generate(data)
        return self._parse_analyze_image(data)

    def _parse_generate(self, data: dict) -> GenerateProxyRequest:
        prompt = data.get("prompt")
        if not prompt or not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Prompt is required", error="Prompt is required")
        if len(prompt) > self.max_prompt_chars:
            raise ValidationError(
                f"Prompt exceeds {self.max_prompt_chars} characters", error="Prompt too long"
            )
        try:
            return GenerateProxyRequest.model_validate(data)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid generate request: {e.errors()[0]['msg']}")

    def _parse_analyze_image(self, data: dict) -> AnalyzeImageProxyRequest:
        image = data.get("imageBase64")
        if not image or not isinstance(image, str):
            raise ValidationError("Image data is required", error="Image data is required")
        if len(image) > self.max_image_base64_bytes:
            raise ValidationError(
                "Image too large. Please use a smaller image.", error="Image too large"
            )
        try:
            return AnalyzeImageProxyRequest.model_validate(data)
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid image request: {e.errors()[0]['msg']}")
