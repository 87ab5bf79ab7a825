"""Same-origin proxy for Gemini, guarded by the request gate.

Endpoints (mounted under PROXY_PREFIX, default /api):
- {prefix}/generate       body {prompt, generationConfig?}
- {prefix}/analyze-image  body {imageBase64, mimeType?}
- /health                 liveness and whether a server key is configured

Both proxy endpoints accept every method so the gate, not the router, decides:
OPTIONS gets a permissive preflight, anything except POST gets 405. The
upstream body is relayed verbatim on success; upstream errors keep their
status with {error, details, upstream: true}.
"""

from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from crisper.gateway.gate import ANALYZE_IMAGE, GENERATE, RequestGate
from crisper.gateway.upstream import GeminiClient, text_payload, vision_payload
from crisper.models.models import ErrorResponse
from crisper.prompts.prompts import (
    IMAGE_ANALYSIS_PROMPT,
    PROXY_FALLBACK_GENERATION_CONFIG,
    VISION_GENERATION_CONFIG,
)
from crisper.utils.config import Config, config as default_config
from crisper.utils.errors import CrisperError, ThrottledError
from crisper.utils.logger import logger


ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

UPSTREAM_FAILURE_MESSAGES = {
    GENERATE: "Failed to generate recipes",
    ANALYZE_IMAGE: "Failed to analyze image",
}


def create_app(
    cfg: Optional[Config] = None,
    gate: Optional[RequestGate] = None,
    upstream: Optional[GeminiClient] = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        cfg: Configuration (defaults to the module-level config).
        gate: Request gate; defaults to one built from cfg with a fresh quota table.
        upstream: Gemini client; defaults to one built from cfg.

    Returns:
        FastAPI application with gate, upstream and config on app.state.
    """
    cfg = cfg or default_config
    app = FastAPI(
        title="Crisper Recipe Proxy",
        description="Rate-limited, origin-checked proxy for recipe generation and image analysis",
        version="1.0.0",
    )
    app.state.config = cfg
    app.state.gate = gate or RequestGate.from_config(cfg)
    app.state.upstream = upstream or GeminiClient(
        api_base=cfg.GEMINI_API_BASE,
        model=cfg.GEMINI_MODEL,
        timeout_seconds=cfg.UPSTREAM_TIMEOUT_SECONDS,
    )

    @app.exception_handler(CrisperError)
    async def handle_crisper_error(request: Request, exc: CrisperError) -> JSONResponse:
        headers = {}
        if isinstance(exc, ThrottledError) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(ErrorResponse(**exc.to_dict()).to_wire(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Proxy error on {request.url.path}: {exc}", exc_info=True)
        body = ErrorResponse(error="Internal server error", message="Something went wrong. Please try again.")
        return JSONResponse(body.to_wire(), status_code=500)

    router = APIRouter(prefix=cfg.PROXY_PREFIX)

    @router.api_route("/generate", methods=ALL_METHODS)
    async def generate(request: Request) -> Response:
        return await _proxy(request, GENERATE)

    @router.api_route("/analyze-image", methods=ALL_METHODS)
    async def analyze_image(request: Request) -> Response:
        return await _proxy(request, ANALYZE_IMAGE)

    app.include_router(router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "upstream_configured": bool(app.state.gate.server_key())}

    return app


async def _proxy(request: Request, endpoint: str) -> Response:
    gate: RequestGate = request.app.state.gate
    upstream: GeminiClient = request.app.state.upstream

    admission = gate.admit(
        endpoint,
        request.method,
        request.headers,
        peer=request.client.host if request.client else None,
    )
    if admission.preflight:
        return Response(status_code=200, headers=admission.headers)

    payload = gate.parse_payload(endpoint, await request.body())

    if endpoint == GENERATE:
        body = text_payload(payload.prompt, payload.generation_config or PROXY_FALLBACK_GENERATION_CONFIG)
    else:
        body = vision_payload(
            IMAGE_ANALYSIS_PROMPT, payload.image_base64, payload.mime_type, VISION_GENERATION_CONFIG
        )

    result = await upstream.generate_content(gate.server_key(), body)

    if not result.ok:
        logger.warning(
            f"Upstream rejected {endpoint} request with {result.status}",
            extra={"endpoint": endpoint, "client_id": admission.client_id, "status_code": result.status},
        )
        body = ErrorResponse(
            error=result.error_message or UPSTREAM_FAILURE_MESSAGES[endpoint],
            details=result.body.get("error"),
            upstream=True,
        )
        return JSONResponse(body.to_wire(), status_code=result.status)

    logger.info(
        f"Proxied {endpoint} for {admission.client_id}",
        extra={"endpoint": endpoint, "client_id": admission.client_id},
    )
    return JSONResponse(result.body, status_code=200, headers=admission.headers)
