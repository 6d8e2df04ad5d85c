"""
Ledger Errors

Every failure a ledger operation can report is one of these. Each carries a
stable error code and the HTTP status the API answers with.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    AMOUNT_EXCEEDS_OUTSTANDING = "AMOUNT_EXCEEDS_OUTSTANDING"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_INVOICE_NUMBER = "DUPLICATE_INVOICE_NUMBER"
    FISCAL_YEAR_MISMATCH = "FISCAL_YEAR_MISMATCH"
    MISSING_DELIVERY_DATE = "MISSING_DELIVERY_DATE"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    MISSING_CONVERSION_RATE = "MISSING_CONVERSION_RATE"
    INVALID_EXCHANGE_RATE = "INVALID_EXCHANGE_RATE"
    INVALID_STATE = "INVALID_STATE"
    INVALID_INPUT = "INVALID_INPUT"


class LedgerError(Exception):
    """Base class for ledger failures"""

    code: ErrorCode = ErrorCode.INVALID_STATE
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "code": self.code.value}
        if self.details:
            body["details"] = self.details
        return body


class InvalidAmount(LedgerError):
    code = ErrorCode.INVALID_AMOUNT


class AmountExceedsOutstanding(InvalidAmount):
    code = ErrorCode.AMOUNT_EXCEEDS_OUTSTANDING


class NotFound(LedgerError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, {"entity": entity, "id": entity_id})


class DuplicateInvoiceNumber(LedgerError):
    code = ErrorCode.DUPLICATE_INVOICE_NUMBER
    status_code = 409


class FiscalYearMismatch(LedgerError):
    code = ErrorCode.FISCAL_YEAR_MISMATCH


class MissingDeliveryDate(LedgerError):
    code = ErrorCode.MISSING_DELIVERY_DATE


class CurrencyMismatch(LedgerError):
    code = ErrorCode.CURRENCY_MISMATCH


class MissingConversionRate(LedgerError):
    code = ErrorCode.MISSING_CONVERSION_RATE


class InvalidExchangeRate(LedgerError):
    code = ErrorCode.INVALID_EXCHANGE_RATE


class InvalidState(LedgerError):
    code = ErrorCode.INVALID_STATE
    status_code = 409


class InvalidInput(LedgerError):
    code = ErrorCode.INVALID_INPUT
