"""Typed errors shared by the proxy gate, the router and the normalizer.

Every failure reaches the caller as one of these kinds. Each carries the HTTP
status the proxy answers with and renders to the wire body {error, message}.
"""

from typing import Any, Optional


class CrisperError(Exception):
    """Base exception for the recipe service."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, error: Optional[str] = None) -> None:
        """
        Args:
            message: Human-readable explanation shown to the user.
            error: Short error title; defaults to the class title.
        """
        self.message = message or self.error
        if error:
            self.error = error
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ConfigurationError(CrisperError):
    """Server-side credential is missing. Fatal, never retried."""

    status_code = 500
    error = "Server configuration error: API key not set"


class AuthorizationError(CrisperError):
    """Request origin is not on the allow-list."""

    status_code = 403
    error = "Forbidden"


class ThrottledError(CrisperError):
    """Client exceeded its request quota for the current window."""

    status_code = 429
    error = "Too Many Requests"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 0, **kwargs) -> None:
        """
        Args:
            message: Error message
            retry_after: Seconds until the quota window resets
        """
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ValidationError(CrisperError):
    """Malformed or oversized input. The caller must fix it before retrying."""

    status_code = 400
    error = "Bad Request"


class MethodNotAllowedError(ValidationError):
    status_code = 405
    error = "Method not allowed"


class UpstreamError(CrisperError):
    """The model API returned an error or could not be reached."""

    status_code = 502
    error = "Upstream error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        details: Any = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.details is not None:
            body["details"] = self.details
        return body


class MalformedContentError(CrisperError):
    """Model output could not be parsed into the expected structure."""

    status_code = 502
    error = "Malformed model output"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        super().__init__(message or "Failed to parse recipe data. Please try again.", **kwargs)


class CredentialExpiredError(CrisperError):
    """Session credential is missing or expired (development mode)."""

    status_code = 401
    error = "Credential required"

    def __init__(self, message: Optional[str] = None, **kwargs) -> None:
        super().__init__(
            message or "API key expired or not set. Please enter your Gemini API key.", **kwargs
        )
