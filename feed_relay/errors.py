"""Error taxonomy for the RSS Arabic relay.

Every failure carries a machine-readable ``code`` so the trigger surface can
report it without inspecting exception types.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Feed
    EMPTY_FEED = "EMPTY_FEED"
    FETCH_ERROR = "FETCH_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    HTTP_ERROR = "HTTP_ERROR"

    # Extraction
    EXTRACTION_FAILED = "EXTRACTION_FAILED"

    # Generation
    API_ERROR = "API_ERROR"
    NO_CANDIDATES = "NO_CANDIDATES"
    NO_CONTENT = "NO_CONTENT"
    URL_CONTEXT_FAIL = "URL_CONTEXT_FAIL"
    HTML_CONTENT_FAIL = "HTML_CONTENT_FAIL"
    INVALID_RESPONSE = "INVALID_RESPONSE"

    # Validation
    MISSING_TITLE = "MISSING_TITLE"
    MISSING_LINK = "MISSING_LINK"
    INVALID_URL = "INVALID_URL"

    # Delivery / storage / transport
    DELIVERY_FAILED = "DELIVERY_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    TIMEOUT = "TIMEOUT"
    CONFIG_MISSING = "CONFIG_MISSING"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RelayError(Exception):
    """Base exception for all relay errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error": str(self),
            "code": self.code.value,
        }


class FeedError(RelayError):
    default_code = ErrorCode.FETCH_ERROR


class ExtractionError(RelayError):
    default_code = ErrorCode.EXTRACTION_FAILED


class GenerationError(RelayError):
    default_code = ErrorCode.API_ERROR


class ValidationError(RelayError):
    default_code = ErrorCode.MISSING_TITLE


class DeliveryError(RelayError):
    """Per-chunk delivery failure; recorded in reports, never fatal."""

    default_code = ErrorCode.DELIVERY_FAILED


class StorageError(RelayError):
    default_code = ErrorCode.STORAGE_ERROR


class RequestTimeoutError(RelayError):
    default_code = ErrorCode.TIMEOUT


class ConfigError(RelayError):
    default_code = ErrorCode.CONFIG_MISSING
