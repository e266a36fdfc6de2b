"""
Shared error handling for the catalogue edge proxy.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    hint: Optional[str] = None
    status: Optional[int] = None


class ProxyError(Exception):
    """Base exception for proxy failures surfaced to the client."""

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message)

    def to_content(self) -> Dict[str, Any]:
        return self.to_response().model_dump(exclude_none=True)


class UpstreamNotConfiguredError(ProxyError):
    """No upstream base URL is configured."""

    status_code = 502

    def __init__(self, message: str = "Upstream API not configured"):
        super().__init__("UPSTREAM_NOT_CONFIGURED", message)


class MissingCredentialError(ProxyError):
    """Multi-tenant mode and neither a tenant nor a key could be resolved."""

    status_code = 400

    def __init__(
        self,
        message: str = "Missing tenant or API key",
        hint: str = "Send an X-Tenant header naming a configured tenant, or a known API key.",
    ):
        super().__init__("MISSING_CREDENTIAL", message, details={"hint": hint})

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, hint=self.details.get("hint"))


class InvalidRequestBodyError(ProxyError):
    """Inbound body declared as JSON could not be parsed."""

    status_code = 400

    def __init__(self, message: str = "Invalid JSON body"):
        super().__init__("INVALID_BODY", message)


class UpstreamRateLimitError(ProxyError):
    """Upstream answered 429."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded. Retry later.", retry_after: Optional[str] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details={"retry_after": retry_after})

    @property
    def retry_after(self) -> Optional[str]:
        return self.details.get("retry_after")


class UpstreamStatusError(ProxyError):
    """Upstream answered with a non-success status that is relayed as-is."""

    def __init__(self, status_code: int, message: str = "Upstream request failed", body: Optional[str] = None):
        super().__init__("UPSTREAM_STATUS", message, status_code=status_code, details={"body": body})

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(error=self.message, status=self.status_code)


class ProxyFailureError(ProxyError):
    """Upstream unreachable, timed out, or otherwise failed unexpectedly."""

    status_code = 500

    def __init__(self, message: str = "Proxy error", details: Optional[Dict[str, Any]] = None):
        super().__init__("PROXY_ERROR", message, details=details)
