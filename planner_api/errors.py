from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    CONFIGURATION = "ConfigurationError"
    VALIDATION = "ValidationError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    CONTENT_BLOCKED = "ContentBlocked"
    MALFORMED_RESPONSE = "MalformedResponse"
    SCHEMA_VIOLATION = "SchemaViolation"
    TIMEOUT = "Timeout"


STATUS_CODES: Dict[ErrorKind, int] = {
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.VALIDATION: 400,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.CONTENT_BLOCKED: 422,
    ErrorKind.MALFORMED_RESPONSE: 500,
    ErrorKind.SCHEMA_VIOLATION: 500,
    ErrorKind.TIMEOUT: 504,
}

# Configuration and bad input need the caller to change something first.
NON_RETRYABLE = {ErrorKind.CONFIGURATION, ErrorKind.VALIDATION}


class GenerationError(Exception):
    """Failure of an acquisition or modification call.

    Carries one taxonomy kind plus a short human-readable detail. Upstream
    exceptions are summarised into ``detail``; tracebacks stay in the logs.
    """

    def __init__(self, kind: ErrorKind, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind not in NON_RETRYABLE

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.detail or self.kind.value,
            "retryable": self.retryable,
        }
