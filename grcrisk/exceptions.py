"""
Custom exceptions for the GRC risk engine.

Almost nothing in the aggregation path raises: bad data and bad configuration
degrade to documented defaults. These exist for the few calls that cannot
produce a meaningful number (an unknown risk id) and for start-up wiring.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes."""
    UNKNOWN_ERROR = "E1000"
    CONFIGURATION_ERROR = "E1002"
    DATA_NOT_FOUND = "E2000"


class GRCRiskError(Exception):
    """Base exception. All custom exceptions inherit from this class."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.error_code.value,
            "details": self.details,
        }


class RiskNotFoundError(GRCRiskError):
    """Raised when a risk id is unknown or the risk is soft-deleted."""

    def __init__(self, risk_id: str):
        super().__init__(
            f"Risk not found: {risk_id}",
            error_code=ErrorCode.DATA_NOT_FOUND,
            details={"risk_id": risk_id},
        )
        self.risk_id = risk_id


class ConfigurationError(GRCRiskError):
    """Raised when a backing store cannot be selected at start-up."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message, error_code=ErrorCode.CONFIGURATION_ERROR, details=details)
