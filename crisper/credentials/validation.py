"""Upstream validation of user-supplied Gemini API keys.

A credential only enters the session store after Gemini accepts it. The check
lists models with the candidate key using the google-genai client.
"""

from google import genai
from google.genai import errors, types

from crisper.credentials.session_store import SessionCredentialStore
from crisper.utils.config import config
from crisper.utils.errors import ValidationError
from crisper.utils.logger import logger, mask_secret


# Statuses Gemini uses to reject a bad or unauthorized key
REJECTED_KEY_STATUSES = (400, 401, 403)


async def validate_api_key(api_key: str) -> bool:
    """Check a candidate key against the upstream API.

    Args:
        api_key: Raw key typed by the user.

    Returns:
        False when Gemini rejects the key or cannot be reached.
        True when the key is accepted, or when the upstream fails for a reason
        unrelated to the key (e.g. 5xx, quota), since the key itself may be fine.
    """
    if not api_key or not api_key.strip():
        return False

    client = genai.Client(
        api_key=api_key.strip(),
        http_options=types.HttpOptions(timeout=int(config.UPSTREAM_TIMEOUT_SECONDS * 1000)),
    )
    try:
        await client.aio.models.list(config={"page_size": 1})
        return True
    except errors.APIError as e:
        if e.code in REJECTED_KEY_STATUSES:
            logger.info(f"API key {mask_secret(api_key)} rejected by upstream ({e.code})")
            return False
        logger.warning(f"API key validation inconclusive ({e.code}); accepting key")
        return True
    except Exception as e:
        logger.warning(f"API key validation failed to reach upstream: {e}")
        return False


async def submit_credential(store: SessionCredentialStore, raw_key: str) -> None:
    """Validate a raw key upstream and save it into the session store.

    Raises:
        ValidationError: If the key is rejected or cannot be stored.
    """
    raw_key = (raw_key or "").strip()
    if not await validate_api_key(raw_key):
        raise ValidationError("Invalid API key. Please check the key and try again.", error="Invalid API key")
    if not await store.save(raw_key):
        raise ValidationError("Could not store the API key securely. Please try again.")
    logger.info(f"API key {mask_secret(raw_key)} stored for {store.remaining_minutes()} minutes")
