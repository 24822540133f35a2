"""Unified client exception taxonomy.

Every error raised by the request layer, the backend adapter and the
pipeline orchestrator derives from ``MapQLDError`` and carries the same
structured context, so retry decisions and diagnostics never depend on
parsing messages.

Taxonomy categories
-------------------
- ``ValidationError``: bad input or unmet precondition, never retryable.
- ``TransientError``: network or timeout trouble, retryable.
- ``PermanentError``: unrecoverable, not retryable.
- ``ContractError``: backend payload or schema drift, never retryable.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for logging.
"""

from __future__ import annotations

from typing import ClassVar


class MapQLDError(Exception):
    """Base exception for all client-domain errors.

    Attributes:
        message: Human-readable error description.
        stage: Pipeline stage where the error occurred
            (``"request"``, ``"resolve"``, ``"intersect"``, ``"export"``...).
        code: Machine-readable error code (e.g. ``"PARCEL_NOT_FOUND"``).
        retryable: Whether a retry could plausibly succeed.
        correlation_id: Request correlation identifier.
    """

    #: Class-level defaults; keyword arguments override them per instance.
    default_stage: ClassVar[str] = ""
    default_code: ClassVar[str] = ""
    default_retryable: ClassVar[bool] = False
    #: Set by the category base classes below.
    category_name: ClassVar[str] = ""

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool | None = None,
        correlation_id: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.correlation_id = correlation_id

    @property
    def category(self) -> str:
        """Taxonomy category of the concrete class, else derived from ``retryable``."""
        if self.category_name:
            return self.category_name
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(MapQLDError):
    """Input or precondition failure. Never retryable."""

    category_name = "validation"


class TransientError(MapQLDError):
    """Temporary failure that may succeed on retry."""

    category_name = "transient"
    default_retryable = True


class PermanentError(MapQLDError):
    """Unrecoverable failure. Not retryable."""

    category_name = "permanent"


class ContractError(MapQLDError):
    """Backend payload or schema drift. Never retryable."""

    category_name = "contract"


# ---------------------------------------------------------------------------
# Request layer
# ---------------------------------------------------------------------------


class RequestTimeoutError(TransientError):
    """A single request attempt exceeded its timeout."""

    default_stage = "request"
    default_code = "REQUEST_TIMEOUT"

    def __init__(self, timeout_s: float, label: str = "") -> None:
        self.timeout_s = timeout_s
        target = f" ({label})" if label else ""
        super().__init__(f"Request timed out after {timeout_s:g}s{target}")


class RequestCancelledError(PermanentError):
    """The request was cancelled through its cancellation token.

    Internal supersession signal: never retried and never shown to the user.
    """

    default_stage = "request"
    default_code = "REQUEST_CANCELLED"

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(f"Request cancelled: {reason}" if reason else "Request cancelled")


class HttpStatusError(MapQLDError):
    """The backend answered with a non-2xx status.

    Attributes:
        status_code: HTTP status code.
        reason: HTTP reason phrase (status text).
    """

    default_stage = "request"
    default_code = "HTTP_ERROR"

    def __init__(self, status_code: int, reason: str = "", *, url: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.url = url
        super().__init__(
            f"HTTP {status_code}: {reason}",
            retryable=status_code >= 500 or status_code == 429,
        )


class RequestTransportError(TransientError):
    """Connection, DNS, or protocol failure before a response arrived."""

    default_stage = "request"
    default_code = "TRANSPORT_ERROR"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ParcelNotFoundError(ValidationError):
    """No parcel with geometry resolved for the given lot/plan input."""

    default_stage = "resolve"
    default_code = "PARCEL_NOT_FOUND"

    def __init__(self, keys: list[str] | None = None) -> None:
        self.keys = list(keys or [])
        super().__init__("Parcel not found for that lot/plan.")


class MalformedResponseError(ContractError):
    """Backend payload is missing expected fields or is not decodable."""

    default_code = "MALFORMED_RESPONSE"
