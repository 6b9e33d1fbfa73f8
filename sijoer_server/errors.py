"""Error types for the Sijoer storefront client."""

from typing import Any, Optional


class SijoerError(Exception):
    """Base class for storefront errors."""


class ConfigurationError(SijoerError):
    """Required settings are missing or invalid."""


class NotAuthenticatedError(SijoerError):
    """The operation needs a signed-in customer."""

    def __init__(self, message: str = "Not authenticated. Please login first.") -> None:
        super().__init__(message)


class ProductNotFoundError(SijoerError):
    """The requested product is not in the catalog."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class RemoteError(SijoerError):
    """A single failed call to the hosted backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        status: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status}, message={self.message!r})"


class TransientRemoteError(RemoteError):
    """A remote operation that still failed after all retry attempts."""

    def __init__(self, operation: str, last_error: RemoteError, attempts: int) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error.message}",
            code=last_error.code,
            status=last_error.status,
            retryable=last_error.retryable,
        )
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts


class SelectionValidationError(SijoerError):
    """Required options were left unselected."""

    def __init__(self, missing: dict[str, str]) -> None:
        self.missing = missing
        names = ", ".join(missing.values())
        super().__init__(f"Please select: {names}")


def classify_error(status: Optional[int], payload: Any = None) -> RemoteError:
    """
    Turn a failed backend response into a RemoteError.

    Args:
        status: HTTP status code, or None for transport failures
        payload: Decoded JSON error body, or the transport error message
    """
    body = payload if isinstance(payload, dict) else {}
    message = body.get("message") or body.get("error_description") or body.get("msg")
    if not message and isinstance(payload, str):
        message = payload
    code = str(body.get("code") or body.get("error") or "")

    if status is None:
        return RemoteError(
            message or "Network connection failed, please check your connection and retry",
            code="NETWORK_ERROR",
            retryable=True,
        )
    if status == 401:
        return RemoteError("Session expired, please login again", code="AUTH_ERROR", status=status, retryable=False)
    if status == 403:
        return RemoteError(message or "Permission denied", code="FORBIDDEN", status=status, retryable=False)
    if status == 429:
        return RemoteError("Too many requests, please try again later", code="RATE_LIMIT", status=status, retryable=True)
    if code.startswith("22") or code.startswith("23"):
        return RemoteError(
            "Data operation failed, please check your input",
            code="DATABASE_ERROR",
            status=status,
            retryable=False,
        )
    return RemoteError(
        message or "Operation failed, please try again later",
        code=code or "UNKNOWN_ERROR",
        status=status,
        retryable=True,
    )
