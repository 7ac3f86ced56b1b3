"""
Invoice and Payment Finalizer

Freezes a settlement into an invoice and records payment postings against
it. The invoice total is the settlement total, carried over rather than
re-derived, so what the desk showed during the session is what gets billed.

Payment policy is permissive: split payments across methods are normal,
and overpayment is accepted and reported as a negative remaining balance.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import structlog

from .ledger import LineItem
from .money import Money
from .settlement import SettlementResult
from ..errors import InvalidArgument

logger = structlog.get_logger()


class InvoiceStatus(Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentMethod(Enum):
    CASH = "CASH"
    CARD = "CARD"
    WALLET = "WALLET"


@dataclass(frozen=True)
class PaymentPosting:
    """A single payment against an invoice."""
    method: PaymentMethod
    amount: Money
    processed_at: datetime
    transaction_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "amount": self.amount,
            "processed_at": self.processed_at.isoformat(),
            "transaction_ref": self.transaction_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentPosting":
        return cls(
            method=PaymentMethod(data["method"]),
            amount=data["amount"],
            processed_at=datetime.fromisoformat(data["processed_at"]),
            transaction_ref=data.get("transaction_ref"),
        )


@dataclass
class Invoice:
    """
    An issued bill.

    Items and total are fixed at creation. Only `payment_postings` grows,
    and `status` follows from it.
    """
    id: str
    client_id: Optional[str]
    session_id: Optional[str]
    items: List[LineItem]
    total_amount: Money
    created_at: datetime
    is_partial: bool = False
    payment_postings: List[PaymentPosting] = field(default_factory=list)

    @property
    def total_paid(self) -> Money:
        return sum(p.amount for p in self.payment_postings)

    @property
    def remaining_balance(self) -> Money:
        return self.total_amount - self.total_paid

    @property
    def is_overpaid(self) -> bool:
        return self.remaining_balance < 0

    @property
    def status(self) -> InvoiceStatus:
        if self.total_paid >= self.total_amount:
            return InvoiceStatus.PAID
        return InvoiceStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "session_id": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "total_paid": self.total_paid,
            "remaining_balance": self.remaining_balance,
            "is_overpaid": self.is_overpaid,
            "status": self.status.value,
            "is_partial": self.is_partial,
            "payment_postings": [p.to_dict() for p in self.payment_postings],
            "created_at": self.created_at.isoformat(),
        }


class InvoiceFinalizer:
    """Builds invoices from settlements and applies payments to them."""

    def finalize(
        self,
        settlement: SettlementResult,
        invoice_id: str,
        client_id: Optional[str],
        session_id: Optional[str] = None,
        is_partial: bool = False,
    ) -> Invoice:
        invoice = Invoice(
            id=invoice_id,
            client_id=client_id,
            session_id=session_id,
            items=[item.copy() for item in settlement.line_items],
            total_amount=settlement.total_amount,
            created_at=settlement.settled_at,
            is_partial=is_partial,
        )

        logger.info(
            "invoice_finalized",
            invoice_id=invoice_id,
            session_id=session_id,
            total_amount=invoice.total_amount,
            is_partial=is_partial,
        )
        return invoice

    def apply_payment(
        self,
        invoice: Invoice,
        method: PaymentMethod,
        amount: Money,
        transaction_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """Append a posting. Mutates and returns `invoice`."""
        if not isinstance(amount, int) or amount < 0:
            raise InvalidArgument(f"Payment amount must be a non-negative integer amount, got {amount!r}")

        posting = PaymentPosting(
            method=method,
            amount=amount,
            processed_at=now or datetime.now(timezone.utc),
            transaction_ref=transaction_ref,
        )
        invoice.payment_postings.append(posting)

        logger.info(
            "payment_applied",
            invoice_id=invoice.id,
            method=method.value,
            amount=amount,
            remaining_balance=invoice.remaining_balance,
            status=invoice.status.value,
        )
        if invoice.is_overpaid:
            logger.warning("invoice_overpaid", invoice_id=invoice.id, overpaid_by=-invoice.remaining_balance)

        return invoice
