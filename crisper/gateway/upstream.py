"""Async client for the Gemini generateContent REST endpoint.

Shared by the proxy (server-held key) and the direct strategy (session-held
key). The key travels as the `key` query parameter and is never logged.
The response body is returned untouched so the proxy can relay it verbatim.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from crisper.utils.config import config
from crisper.utils.errors import UpstreamError
from crisper.utils.logger import logger


@dataclass
class UpstreamResponse:
    status: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def error_message(self) -> Optional[str]:
        error = self.body.get("error")
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
        return None


def text_payload(prompt: str, generation_config: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


def vision_payload(
    prompt: str,
    image_base64: str,
    mime_type: str,
    generation_config: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "contents": [
            {
                "parts": [
                    {"text": prompt},
                    {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                ]
            }
        ]
    }
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


class GeminiClient:
    """Minimal generateContent caller with a bounded total timeout and no retries."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.api_base = (api_base or config.GEMINI_API_BASE).rstrip("/")
        self.model = model or config.GEMINI_MODEL
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or config.UPSTREAM_TIMEOUT_SECONDS)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    async def generate_content(self, api_key: str, payload: dict[str, Any]) -> UpstreamResponse:
        """POST a generateContent payload.

        Args:
            api_key: Upstream credential (server-held or session-held).
            payload: Body with `contents` and optional `generationConfig`.

        Returns:
            UpstreamResponse with the upstream status and parsed JSON body,
            whether or not the status is a success.

        Raises:
            UpstreamError: Network failure or timeout (no response to relay).
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.endpoint, params={"key": api_key}, json=payload) as response:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = {"error": {"message": (await response.text())[:500]}}
                    if not isinstance(body, dict):
                        body = {"error": {"message": "Unexpected upstream response shape"}}
                    logger.debug(f"Gemini {self.model} responded with {response.status}")
                    return UpstreamResponse(status=response.status, body=body)
        except asyncio.TimeoutError:
            logger.warning(f"Gemini call timed out after {self.timeout.total}s")
            raise UpstreamError("The recipe service took too long to respond", status_code=504)
        except aiohttp.ClientError as e:
            logger.warning(f"Gemini call failed: {type(e).__name__}")
            raise UpstreamError("Could not reach the recipe service", status_code=502)
