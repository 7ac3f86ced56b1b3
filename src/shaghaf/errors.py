"""
Error Taxonomy

Every expected business failure in the billing core is one of four kinds.
The core raises the matching exception; the session orchestrator converts
it into a result variant so callers branch on `kind` instead of catching.
"""

from enum import Enum
from typing import Any, Dict


class ErrorKind(Enum):
    """Kinds of expected business failure."""
    INVALID_STATE = "INVALID_STATE"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"


class ShaghafError(Exception):
    """Base class for typed business errors."""
    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message}


class InvalidState(ShaghafError):
    """Operation attempted on a completed session, or an illegal transition."""
    kind = ErrorKind.INVALID_STATE


class NotFound(ShaghafError):
    """Referenced line item, individual, client, product or invoice is missing."""
    kind = ErrorKind.NOT_FOUND


class InsufficientStock(ShaghafError):
    """Requested product quantity exceeds available stock."""
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Product {product_id}: requested {requested}, only {available} in stock"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidArgument(ShaghafError):
    """Non-positive quantity, negative price or amount, empty individual list."""
    kind = ErrorKind.INVALID_ARGUMENT
