"""
Custom exception hierarchy for record source and cache operations.

Exception Hierarchy:
    RecordSourceError (base)
    ├── MissingColumnError           - Selected column does not exist (recoverable)
    ├── SourceUnavailableError       - Relation missing or access denied
    │   ├── MissingRelationError
    │   └── PermissionDeniedError
    ├── RecordSourceConnectionError  - Network/timeout issues (retryable)
    └── RecordSourceDataError        - Invalid response structure

    CacheStoreError                  - Persisting the sales cache failed
    └── CacheQuotaExceededError      - Blob larger than the store allows

    ValidationError                  - Input validation failed
"""
import re
from typing import Any, Dict, Optional


class RecordSourceError(Exception):
    """Base exception for all record source errors."""

    def __init__(
        self,
        message: str,
        details: str = None,
        code: str = None,
        status_code: int = None,
    ):
        self.message = message
        self.details = details
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class MissingColumnError(RecordSourceError):
    """
    A selected column does not exist in this deployment.

    `column` is set when the error message names it.
    """

    def __init__(self, message: str, details: str = None, column: str = None, **kwargs):
        super().__init__(message, details, **kwargs)
        self.column = column


class SourceUnavailableError(RecordSourceError):
    """
    The relation cannot be read at all.

    Callers treat this as "zero results", never as a failure.
    """


class MissingRelationError(SourceUnavailableError):
    """Table/relation does not exist."""


class PermissionDeniedError(SourceUnavailableError):
    """Credentials are not allowed to read the relation."""


class RecordSourceConnectionError(RecordSourceError):
    """
    Network-related errors (timeout, connection refused, etc.).

    These are typically recoverable with retry.
    """

    def __init__(self, message: str, details: str = None, retry_after: int = None, **kwargs):
        super().__init__(message, details, **kwargs)
        self.retry_after = retry_after


class RecordSourceDataError(RecordSourceError):
    """Response has an unexpected structure."""

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class CacheStoreError(Exception):
    """Persisting or reading the sales cache failed."""


class CacheQuotaExceededError(CacheStoreError):
    """Serialized blob exceeds the store's size limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Cache blob of {size} bytes exceeds quota of {limit} bytes")


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating user input before processing.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


# ═══════════════════════════════════════════════════════════════════════════════
# POSTGREST ERROR CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

MISSING_COLUMN_CODES = {"42703", "PGRST204"}
MISSING_RELATION_CODES = {"42P01", "PGRST205"}
PERMISSION_CODES = {"42501"}

_COLUMN_PATTERNS = (
    re.compile(r'column\s+(?:"?\w+"?\.)?"?(\w+)"?\s+does not exist', re.IGNORECASE),
    re.compile(r"could not find the '(\w+)' column", re.IGNORECASE),
)


def extract_column_name(message: str) -> Optional[str]:
    """Pull the offending column name out of a database error message."""
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def classify_source_error(status_code: int, payload: Optional[Dict[str, Any]]) -> RecordSourceError:
    """
    Map a PostgREST error response onto the exception hierarchy.

    Args:
        status_code: HTTP status of the response
        payload: Decoded JSON error body ({"code", "message", "details", "hint"})

    Returns:
        The most specific RecordSourceError for the response
    """
    payload = payload if isinstance(payload, dict) else {}
    code = str(payload.get("code") or "")
    message = str(payload.get("message") or "")
    details = payload.get("details") or payload.get("hint")
    lowered = message.lower()
    kwargs = {"code": code or None, "status_code": status_code}

    if code in MISSING_COLUMN_CODES:
        return MissingColumnError(message or "Column does not exist", details,
                                  column=extract_column_name(message), **kwargs)

    if code in MISSING_RELATION_CODES or status_code == 404 or (
        "relation" in lowered and "does not exist" in lowered
    ):
        return MissingRelationError(message or "Relation does not exist", details, **kwargs)

    if code in PERMISSION_CODES or status_code in (401, 403) or "permission" in lowered:
        return PermissionDeniedError(message or "Permission denied", details, **kwargs)

    if status_code == 400 and ("column" in lowered or code.startswith("PGRST")):
        return MissingColumnError(message or "Column error", details,
                                  column=extract_column_name(message), **kwargs)

    if status_code >= 500:
        return RecordSourceConnectionError(
            message or f"Record source returned {status_code}", details, **kwargs
        )

    return RecordSourceError(message or f"Record source returned {status_code}", details, **kwargs)
