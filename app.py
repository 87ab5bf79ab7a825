"""Crisper Recipe Proxy - server entry point.

Serves the same-origin Gemini proxy used by production deployments:
- Builds the FastAPI app with its request gate (origin allow-list + quotas)
- Holds the upstream GEMINI_API_KEY server-side; browsers never see it
- Relays generateContent responses verbatim

Run with: python app.py
"""

import uvicorn

from crisper.gateway.server import create_app
from crisper.utils.config import config
from crisper.utils.logger import logger


app = create_app(config)

if not config.GEMINI_API_KEY:
    logger.warning("GEMINI_API_KEY is not set; proxy requests will fail with a configuration error")


if __name__ == "__main__":
    logger.info(f"Starting Crisper Recipe Proxy on {config.HOST}:{config.PORT}")
    logger.info(f"Endpoints: {config.PROXY_PREFIX}/generate, {config.PROXY_PREFIX}/analyze-image")
    logger.info(
        f"Rate limits: generate {config.GENERATE_MAX_REQUESTS}/{config.RATE_LIMIT_WINDOW_SECONDS}s, "
        f"analyze-image {config.ANALYZE_MAX_REQUESTS}/{config.RATE_LIMIT_WINDOW_SECONDS}s per client"
    )
    logger.info(f"API docs available at: http://localhost:{config.PORT}/docs")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level="warning")
