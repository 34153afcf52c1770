"""Exception hierarchy for the chat gateway.

Only the request-validation errors (``InvalidRequest``, ``UnsupportedProvider``,
``ProviderNotConfigured``) ever reach the client as a non-200 status; the rest
are recovered inside the chat flow and surface as log lines, analytics entries
or an inline SSE error frame.
"""

from typing import Any, Dict, List, Optional


class ChatGatewayError(Exception):
    """Base exception for all gateway errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class InvalidRequest(ChatGatewayError):
    status_code = 400


class UnsupportedProvider(ChatGatewayError):
    status_code = 400

    def __init__(self, provider: Optional[str], valid_providers: List[str]):
        self.provider = provider
        self.valid_providers = list(valid_providers)
        super().__init__(
            message="Invalid provider",
            details=f"Supported providers: {', '.join(self.valid_providers)}",
            extra={"provider": provider, "validProviders": self.valid_providers},
        )


class ProviderNotConfigured(ChatGatewayError):
    status_code = 400

    def __init__(self, provider: str, display_name: str, credential: str):
        self.provider = provider
        self.credential = credential
        super().__init__(
            message="Provider not configured",
            details=(
                f"{display_name} requires a valid API key. "
                f"Please configure the {credential} environment variable."
            ),
            extra={"provider": provider, "credential": credential},
        )


class AugmentationFailure(ChatGatewayError):
    status_code = 502

    def __init__(self, message: str = "Content search failed", details: Optional[str] = None):
        super().__init__(message=message, details=details)


class UpstreamStreamFailure(ChatGatewayError):
    status_code = 502

    def __init__(self, provider: str, cause: BaseException):
        self.provider = provider
        self.cause = cause
        super().__init__(
            message=f"Upstream call to {provider} failed",
            details=str(cause) or type(cause).__name__,
            extra={"provider": provider},
        )


class AnalyticsFailure(ChatGatewayError):
    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(message=f"Analytics {operation} failed", details=str(cause))
