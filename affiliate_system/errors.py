# affiliate_system/errors.py
"""
Error types for the attribution & commission core.

Redirect-path code never raises these: it degrades to None.
State machine and ledger errors propagate to the reconciliation caller.
"""
from typing import Optional, Dict, Any


class ErrorCodes:
    """Standard error codes."""
    NOT_FOUND = "NOT_FOUND"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    LEDGER_ERROR = "LEDGER_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class AffiliateError(Exception):
    """Base error with structured data."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def toDict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ConversionNotFoundError(AffiliateError):
    def __init__(self, conversionId):
        super().__init__(
            f"Conversion #{conversionId} not found",
            ErrorCodes.NOT_FOUND,
            {"conversionId": conversionId}
        )


class IllegalTransitionError(AffiliateError):
    def __init__(self, conversionId, currentStatus: str, requested: str):
        super().__init__(
            f"Conversion #{conversionId} cannot go to '{requested}' from '{currentStatus}'",
            ErrorCodes.ILLEGAL_TRANSITION,
            {"conversionId": conversionId, "status": currentStatus, "requested": requested}
        )


class LedgerError(AffiliateError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCodes.LEDGER_ERROR, details)


class InsufficientBalanceError(LedgerError):
    def __init__(self, userId: int, requested, available):
        AffiliateError.__init__(
            self,
            f"User {userId} cannot withdraw {requested}: balance is {available}",
            ErrorCodes.INSUFFICIENT_BALANCE,
            {"userId": userId, "requested": str(requested), "available": str(available)}
        )


class PostbackValidationError(AffiliateError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCodes.VALIDATION_ERROR, details)


class ProgramNotFoundError(AffiliateError):
    def __init__(self, programId):
        super().__init__(
            f"Affiliate program {programId} not found",
            ErrorCodes.NOT_FOUND,
            {"programId": programId}
        )
