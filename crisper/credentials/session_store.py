"""Session-scoped, encrypted holder for the user's Gemini API key.

Used only on the direct (development) path. The key is kept in a
session-scoped storage mapping as base64(nonce || AES-256-GCM ciphertext);
the encryption key is derived on demand with PBKDF2-HMAC-SHA256 from a random
per-session identifier plus a coarse client fingerprint and is never stored.

The stored key is forgotten automatically after KEY_EXPIRY_MINUTES without a
successful use (sliding idle timeout). There is a single async read path,
get(); no plaintext copy is cached between calls.

Storage layout (all three entries are erased together):
- crisper_secure_key: base64(nonce || ciphertext)
- crisper_key_ts:     last save/refresh, epoch milliseconds
- crisper_session_id: random session identifier
"""

import asyncio
import base64
import math
import os
import time
import uuid
from typing import Callable, MutableMapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from crisper.utils.config import config
from crisper.utils.logger import logger


ENCRYPTED_KEY = "crisper_secure_key"
KEY_TIMESTAMP = "crisper_key_ts"
SESSION_ID = "crisper_session_id"

# Plaintext entries written by earlier releases; removed on sight
LEGACY_KEYS = ("crisper_gemini_key", "crisper_api_key", "gemini_api_key")

KEY_DERIVATION_SALT = b"crisper-salt-v1"
NONCE_BYTES = 12
FINGERPRINT_CHARS = 20


def clear_legacy_keys(storage: MutableMapping[str, str]) -> list[str]:
    """Remove plaintext API keys left behind by older releases.

    Args:
        storage: Any storage mapping that may hold legacy entries.

    Returns:
        Names of the entries that were removed.
    """
    removed = []
    for name in LEGACY_KEYS:
        if storage.pop(name, None) is not None:
            removed.append(name)
            logger.info(f"[Security] Cleared legacy key: {name}")
    return removed


class SessionCredentialStore:
    """Encrypts, expires and erases the session's upstream credential."""

    def __init__(
        self,
        storage: Optional[MutableMapping[str, str]] = None,
        fingerprint: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        expiry_minutes: Optional[int] = None,
        iterations: Optional[int] = None,
    ) -> None:
        """
        Args:
            storage: Session-scoped string mapping. Defaults to a fresh dict,
                which lives exactly as long as this process.
            fingerprint: Coarse client fingerprint mixed into key derivation.
            clock: Returns the current time in epoch seconds.
            expiry_minutes: Idle timeout. Defaults to KEY_EXPIRY_MINUTES.
            iterations: PBKDF2 iterations. Defaults to KEY_DERIVATION_ITERATIONS.
        """
        self.storage: MutableMapping[str, str] = storage if storage is not None else {}
        self.fingerprint = fingerprint if fingerprint is not None else config.CLIENT_FINGERPRINT
        self.clock = clock
        self.expiry_ms = (expiry_minutes or config.KEY_EXPIRY_MINUTES) * 60 * 1000
        self.iterations = iterations or config.KEY_DERIVATION_ITERATIONS

    # ------------------------------------------------------------------
    # Key derivation and cipher
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _session_id(self, create: bool = False) -> Optional[str]:
        session_id = self.storage.get(SESSION_ID)
        if not session_id and create:
            session_id = str(uuid.uuid4())
            self.storage[SESSION_ID] = session_id
        return session_id

    def _derive_key(self, session_id: str) -> bytes:
        material = (session_id + self.fingerprint[:FINGERPRINT_CHARS]).encode("utf-8")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KEY_DERIVATION_SALT,
            iterations=self.iterations,
        )
        return kdf.derive(material)

    def _encrypt(self, plaintext: str, session_id: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = AESGCM(self._derive_key(session_id)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def _decrypt(self, blob: str, session_id: str) -> str:
        combined = base64.b64decode(blob, validate=True)
        nonce, ciphertext = combined[:NONCE_BYTES], combined[NONCE_BYTES:]
        return AESGCM(self._derive_key(session_id)).decrypt(nonce, ciphertext, None).decode("utf-8")

    def _is_expired(self) -> bool:
        timestamp = self.storage.get(KEY_TIMESTAMP)
        if not timestamp:
            return True
        try:
            saved_ms = int(timestamp)
        except ValueError:
            return True
        return self._now_ms() - saved_ms > self.expiry_ms

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, plaintext_key: str) -> bool:
        """Encrypt and store a credential, restarting the idle timeout.

        Returns:
            True on success, False if the key is empty or encryption failed.
        """
        if not plaintext_key:
            return False

        session_id = self._session_id(create=True)
        try:
            blob = await asyncio.to_thread(self._encrypt, plaintext_key, session_id)
        except Exception as e:
            logger.error(f"Credential encryption failed: {e}")
            return False

        self.storage[ENCRYPTED_KEY] = blob
        self.storage[KEY_TIMESTAMP] = str(self._now_ms())
        logger.debug("Credential saved to session storage")
        return True

    async def get(self) -> str:
        """Return the plaintext credential, or "" if it is expired or unreadable.

        Expiry triggers full erasure. Decryption failures (tampered storage,
        lost session identifier, different fingerprint) are reported as ""
        because the remedy is the same: ask the user for the key again.
        """
        if self._is_expired():
            self.clear()
            return ""

        blob = self.storage.get(ENCRYPTED_KEY)
        if not blob:
            return ""

        session_id = self._session_id()
        if not session_id:
            logger.warning("Session identifier missing; stored credential cannot be decrypted")
            return ""

        try:
            return await asyncio.to_thread(self._decrypt, blob, session_id)
        except (InvalidTag, ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Credential decryption failed: {type(e).__name__}")
            return ""

    def has_valid(self) -> bool:
        """Expiry-aware existence check. Does not decrypt."""
        if self._is_expired():
            self.clear()
            return False
        return bool(self.storage.get(ENCRYPTED_KEY))

    def refresh(self) -> None:
        """Restart the idle timeout without touching the ciphertext."""
        if self.storage.get(ENCRYPTED_KEY):
            self.storage[KEY_TIMESTAMP] = str(self._now_ms())

    def clear(self) -> None:
        """Erase ciphertext, timestamp and session identifier. Idempotent."""
        for name in (ENCRYPTED_KEY, KEY_TIMESTAMP, SESSION_ID):
            self.storage.pop(name, None)

    def remaining_minutes(self) -> int:
        """Minutes until the idle timeout fires, rounded up (for display only)."""
        timestamp = self.storage.get(KEY_TIMESTAMP)
        if not timestamp:
            return 0
        try:
            elapsed = self._now_ms() - int(timestamp)
        except ValueError:
            return 0
        return max(0, math.ceil((self.expiry_ms - elapsed) / 60000))
