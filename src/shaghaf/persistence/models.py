"""
Data Models for Persistence Layer

Row-shaped records for the storage collaborator. Invoices and sessions are
stored with their nested parts (line items, postings, individuals) as JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import json

from ..core.invoice import Invoice, PaymentPosting
from ..core.ledger import LineItem, SessionLedger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ClientRecord:
    """Persisted client (member or walk-in visitor)."""
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    membership_type: str = "daily"
    membership_start: Optional[str] = None
    membership_end: Optional[str] = None
    created_at: str = field(default_factory=_now)

    @classmethod
    def walk_in(cls, client_id: str, name: str, phone: Optional[str], now: Optional[datetime] = None) -> "ClientRecord":
        """A visitor without an account gets a one-day membership."""
        now = now or datetime.now(timezone.utc)
        return cls(
            id=client_id,
            name=name,
            phone=phone,
            membership_type="daily",
            membership_start=now.isoformat(),
            membership_end=(now + timedelta(days=1)).isoformat(),
            created_at=now.isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "membership_type": self.membership_type,
            "membership_start": self.membership_start,
            "membership_end": self.membership_end,
            "created_at": self.created_at,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.id,
            self.name,
            self.phone,
            self.email,
            self.membership_type,
            self.membership_start,
            self.membership_end,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ClientRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            phone=row.get("phone"),
            email=row.get("email"),
            membership_type=row.get("membership_type", "daily"),
            membership_start=row.get("membership_start"),
            membership_end=row.get("membership_end"),
            created_at=row["created_at"],
        )


@dataclass
class ProductRecord:
    """Persisted catalog product with its stock level."""
    id: str
    name: str
    price: int
    stock_quantity: int = 0
    min_stock_level: int = 0
    category: Optional[str] = None
    unit: str = "piece"
    is_active: bool = True
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "unit": self.unit,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.id,
            self.name,
            self.category,
            self.price,
            self.stock_quantity,
            self.min_stock_level,
            self.unit,
            1 if self.is_active else 0,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProductRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            category=row.get("category"),
            price=row["price"],
            stock_quantity=row.get("stock_quantity", 0),
            min_stock_level=row.get("min_stock_level", 0),
            unit=row.get("unit", "piece"),
            is_active=bool(row.get("is_active", 1)),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class InvoiceRecord:
    """Persisted invoice."""
    id: str
    client_id: Optional[str]
    session_id: Optional[str]
    items: list
    total_amount: int
    payment_postings: list
    status: str
    is_partial: bool
    created_at: str
    updated_at: str = field(default_factory=_now)

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceRecord":
        return cls(
            id=invoice.id,
            client_id=invoice.client_id,
            session_id=invoice.session_id,
            items=[item.to_dict() for item in invoice.items],
            total_amount=invoice.total_amount,
            payment_postings=[p.to_dict() for p in invoice.payment_postings],
            status=invoice.status.value,
            is_partial=invoice.is_partial,
            created_at=invoice.created_at.isoformat(),
        )

    def to_invoice(self) -> Invoice:
        return Invoice(
            id=self.id,
            client_id=self.client_id,
            session_id=self.session_id,
            items=[LineItem.from_dict(i) for i in self.items],
            total_amount=self.total_amount,
            created_at=datetime.fromisoformat(self.created_at),
            is_partial=self.is_partial,
            payment_postings=[PaymentPosting.from_dict(p) for p in self.payment_postings],
        )

    def to_db_tuple(self) -> tuple:
        return (
            self.id,
            self.client_id,
            self.session_id,
            json.dumps(self.items),
            self.total_amount,
            json.dumps(self.payment_postings),
            self.status,
            1 if self.is_partial else 0,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "InvoiceRecord":
        items = row["items"]
        if isinstance(items, str):
            items = json.loads(items)

        postings = row["payment_postings"]
        if isinstance(postings, str):
            postings = json.loads(postings)

        return cls(
            id=row["id"],
            client_id=row.get("client_id"),
            session_id=row.get("session_id"),
            items=items,
            total_amount=row["total_amount"],
            payment_postings=postings,
            status=row.get("status", "PENDING"),
            is_partial=bool(row.get("is_partial", 0)),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class SessionRecord:
    """Persisted snapshot of a session ledger."""
    id: str
    client_id: Optional[str]
    invoice_id: str
    status: str
    started_at: str
    ended_at: Optional[str]
    ledger: Dict[str, Any]
    updated_at: str = field(default_factory=_now)

    @classmethod
    def from_ledger(cls, ledger: SessionLedger) -> "SessionRecord":
        return cls(
            id=ledger.id,
            client_id=ledger.primary_client_id,
            invoice_id=ledger.invoice_id,
            status=ledger.status.value,
            started_at=ledger.started_at.isoformat(),
            ended_at=ledger.ended_at.isoformat() if ledger.ended_at else None,
            ledger=ledger.to_dict(),
        )

    def to_ledger(self) -> SessionLedger:
        return SessionLedger.from_dict(self.ledger)

    def to_db_tuple(self) -> tuple:
        return (
            self.id,
            self.client_id,
            self.invoice_id,
            self.status,
            self.started_at,
            self.ended_at,
            json.dumps(self.ledger),
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SessionRecord":
        ledger = row["ledger"]
        if isinstance(ledger, str):
            ledger = json.loads(ledger)

        return cls(
            id=row["id"],
            client_id=row.get("client_id"),
            invoice_id=row["invoice_id"],
            status=row.get("status", "ACTIVE"),
            started_at=row["started_at"],
            ended_at=row.get("ended_at"),
            ledger=ledger,
            updated_at=row["updated_at"],
        )
