"""
Error taxonomy for AI dispatch.

Every error is local to a single dispatch; none is fatal to the process.
"""

from enum import Enum
from typing import Optional


class ConfigErrorReason(Enum):
    """Why a dispatch could not be configured."""
    UNKNOWN_MODEL = "unknown_model"
    MISSING_API_KEY = "missing_api_key"
    UNSUPPORTED_MODALITY = "unsupported_modality"


class ShoppingAIError(Exception):
    """Base class for all dispatch errors."""


class ConfigError(ShoppingAIError):
    """Raised before any network traffic when a dispatch is misconfigured."""
    def __init__(self, message: str, reason: ConfigErrorReason):
        super().__init__(message)
        self.reason = reason


class TransportError(ShoppingAIError):
    """Raised when the HTTP transport fails or the provider answers with an error status."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NoContentError(ShoppingAIError):
    """Raised when a provider response carries no assistant text."""


class DecodeFailure(ShoppingAIError):
    """Raised when extracted JSON does not match the expected result shape."""
