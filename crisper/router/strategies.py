"""Transport strategies behind the generation router.

Two implementations of one contract, chosen once at startup:
- ProxyStrategy (production): POST to the same-origin proxy; the client never
  holds or asks for a credential.
- DirectStrategy (development): call Gemini with the session-held key and
  refresh the key's idle timeout after each successful call.

Both return the upstream generateContent body ({candidates: [...]}).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import aiohttp

from crisper.credentials.session_store import SessionCredentialStore
from crisper.gateway.upstream import GeminiClient, text_payload, vision_payload
from crisper.prompts.prompts import IMAGE_ANALYSIS_PROMPT, VISION_GENERATION_CONFIG
from crisper.utils.config import Config, config as default_config
from crisper.utils.errors import (
    AuthorizationError,
    ConfigurationError,
    CredentialExpiredError,
    CrisperError,
    MethodNotAllowedError,
    ThrottledError,
    UpstreamError,
    ValidationError,
)
from crisper.utils.logger import logger


class GenerationStrategy(ABC):
    """Sends prompts and images to the model, by whatever route."""

    requires_credential: bool = False

    @abstractmethod
    async def generate_content(self, prompt: str, generation_config: dict[str, Any]) -> dict[str, Any]:
        """Return the generateContent body for a text prompt."""

    @abstractmethod
    async def analyze_image(self, image_base64: str, mime_type: str) -> dict[str, Any]:
        """Return the generateContent body for an ingredient-detection request."""


def error_from_proxy(
    status: int,
    body: dict[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> CrisperError:
    """Map a proxy error response back to the typed error it was raised as.

    Bodies relayed from the model API (flagged upstream, or carrying details)
    always become UpstreamError with the upstream status, whatever that
    status is. Only the gate's own {error, message} bodies map by status.
    """
    error = body.get("error") if isinstance(body.get("error"), str) else None
    message = body.get("message") or error

    if body.get("upstream") is True or "details" in body:
        return UpstreamError(message or "Failed to generate recipes", status_code=status, details=body.get("details"))

    if status == 403:
        return AuthorizationError(message)
    if status == 429:
        retry_after = (headers or {}).get("Retry-After", "0")
        return ThrottledError(message, retry_after=int(retry_after) if retry_after.isdigit() else 0)
    if status == 405:
        return MethodNotAllowedError(message)
    if status == 400:
        return ValidationError(message)
    if status == 500 and error and "configuration" in error.lower():
        return ConfigurationError(message)
    return UpstreamError(message or "Failed to generate recipes", status_code=status)


class ProxyStrategy(GenerationStrategy):
    """Production path: the proxy attaches the server-held credential."""

    requires_credential = False

    def __init__(
        self,
        base_url: str,
        prefix: str = "/api",
        origin: Optional[str] = None,
        timeout_seconds: float = 30,
    ) -> None:
        self.base_url = base_url.rstrip("/") + prefix
        self.origin = origin
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.origin:
            headers["Origin"] = self.origin

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(f"{self.base_url}{path}", json=payload, headers=headers) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = {}
                    if not isinstance(body, dict):
                        body = {}
                    if response.status >= 400:
                        raise error_from_proxy(response.status, body, response.headers)
                    return body
        except aiohttp.ClientError as e:
            logger.warning(f"Proxy call to {path} failed: {type(e).__name__}")
            raise UpstreamError("Could not reach the recipe service", status_code=502)
        except asyncio.TimeoutError:
            raise UpstreamError("The recipe service took too long to respond", status_code=504)

    async def generate_content(self, prompt: str, generation_config: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/generate", {"prompt": prompt, "generationConfig": generation_config})

    async def analyze_image(self, image_base64: str, mime_type: str) -> dict[str, Any]:
        return await self._post("/analyze-image", {"imageBase64": image_base64, "mimeType": mime_type})


class DirectStrategy(GenerationStrategy):
    """Development path: the client calls Gemini with its session credential."""

    requires_credential = True

    def __init__(self, store: SessionCredentialStore, client: Optional[GeminiClient] = None) -> None:
        self.store = store
        self.client = client or GeminiClient()

    async def _call(self, payload: dict[str, Any], failure_message: str) -> dict[str, Any]:
        if not self.store.has_valid():
            raise CredentialExpiredError()
        api_key = await self.store.get()
        if not api_key:
            raise CredentialExpiredError()

        result = await self.client.generate_content(api_key, payload)
        if not result.ok:
            raise UpstreamError(
                result.error_message or failure_message,
                status_code=result.status,
                details=result.body.get("error"),
            )

        self.store.refresh()
        return result.body

    async def generate_content(self, prompt: str, generation_config: dict[str, Any]) -> dict[str, Any]:
        return await self._call(text_payload(prompt, generation_config), "Failed to generate recipes")

    async def analyze_image(self, image_base64: str, mime_type: str) -> dict[str, Any]:
        payload = vision_payload(IMAGE_ANALYSIS_PROMPT, image_base64, mime_type, VISION_GENERATION_CONFIG)
        return await self._call(payload, "Failed to analyze image")


def select_strategy(
    cfg: Optional[Config] = None,
    store: Optional[SessionCredentialStore] = None,
) -> GenerationStrategy:
    """Pick the strategy for this deployment. Called once at startup.

    Args:
        cfg: Configuration; DEPLOYMENT_MODE decides the strategy.
        store: Session store for development mode (a fresh one if omitted).
            Ignored in production.
    """
    cfg = cfg or default_config
    if cfg.is_production:
        logger.info(f"Using recipe proxy at {cfg.PROXY_BASE_URL}{cfg.PROXY_PREFIX}")
        return ProxyStrategy(
            base_url=cfg.PROXY_BASE_URL,
            prefix=cfg.PROXY_PREFIX,
            origin=cfg.CLIENT_ORIGIN,
            timeout_seconds=cfg.UPSTREAM_TIMEOUT_SECONDS,
        )

    logger.info("Using direct Gemini calls with a session-held API key (development mode)")
    return DirectStrategy(
        store=store or SessionCredentialStore(),
        client=GeminiClient(
            api_base=cfg.GEMINI_API_BASE,
            model=cfg.GEMINI_MODEL,
            timeout_seconds=cfg.UPSTREAM_TIMEOUT_SECONDS,
        ),
    )
