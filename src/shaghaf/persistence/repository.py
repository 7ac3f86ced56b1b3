"""
Repository Layer for Shaghaf

The storage collaborator of the session orchestrator: CRUD over clients,
products, invoices and session snapshots.
"""

from typing import Callable, List, Optional
from datetime import datetime, timezone
import json
import threading
import structlog

from .database import Database, get_database
from .models import ClientRecord, ProductRecord, InvoiceRecord, SessionRecord
from ..core.invoice import Invoice
from ..core.ledger import SessionLedger, new_id
from ..errors import InsufficientStock, InvalidArgument, NotFound

logger = structlog.get_logger()


class ClientRepository:
    """Repository for client records."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, client: ClientRecord) -> ClientRecord:
        self.db.execute(
            """INSERT INTO clients
               (id, name, phone, email, membership_type, membership_start,
                membership_end, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            client.to_db_tuple()
        )
        logger.info("client_created", client_id=client.id, membership_type=client.membership_type)
        return client

    def create_walk_in(self, name: str, phone: Optional[str]) -> ClientRecord:
        """Register a visitor without an account."""
        if not name or not name.strip():
            raise InvalidArgument("Walk-in client needs a name")
        return self.create(ClientRecord.walk_in(new_id("CLI"), name.strip(), phone))

    def get(self, client_id: str) -> ClientRecord:
        results = self.db.execute("SELECT * FROM clients WHERE id = ?", (client_id,))
        if not results:
            raise NotFound(f"Client {client_id} not found")
        return ClientRecord.from_row(results[0])

    def delete(self, client_id: str) -> None:
        """Withdraw a walk-in client whose session could not be saved."""
        self.db.execute_write("DELETE FROM clients WHERE id = ?", (client_id,))
        logger.warning("client_withdrawn", client_id=client_id)

    def search(self, term: str, limit: int = 20) -> List[ClientRecord]:
        """Match on name or phone."""
        pattern = f"%{term}%"
        results = self.db.execute(
            "SELECT * FROM clients WHERE name LIKE ? OR phone LIKE ? ORDER BY name LIMIT ?",
            (pattern, pattern, limit)
        )
        return [ClientRecord.from_row(r) for r in results]


class ProductRepository:
    """Repository for the product catalog and stock levels."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, product: ProductRecord) -> ProductRecord:
        if product.price < 0 or product.stock_quantity < 0:
            raise InvalidArgument("Product price and stock must be non-negative")
        self.db.execute(
            """INSERT INTO products
               (id, name, category, price, stock_quantity, min_stock_level,
                unit, is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            product.to_db_tuple()
        )
        logger.info("product_created", product_id=product.id, stock=product.stock_quantity)
        return product

    def get(self, product_id: str) -> ProductRecord:
        results = self.db.execute("SELECT * FROM products WHERE id = ?", (product_id,))
        if not results:
            raise NotFound(f"Product {product_id} not found")
        return ProductRecord.from_row(results[0])

    def list_active(self) -> List[ProductRecord]:
        results = self.db.execute(
            "SELECT * FROM products WHERE is_active = 1 ORDER BY name"
        )
        return [ProductRecord.from_row(r) for r in results]

    def list_low_stock(self) -> List[ProductRecord]:
        """Active products at or below their minimum stock level."""
        results = self.db.execute(
            """SELECT * FROM products
               WHERE is_active = 1 AND stock_quantity <= min_stock_level
               ORDER BY stock_quantity ASC"""
        )
        return [ProductRecord.from_row(r) for r in results]

    def decrement_stock(self, product_id: str, quantity: int) -> ProductRecord:
        """
        Take `quantity` units out of stock.

        The UPDATE is conditional, so stock never goes below zero even if
        two callers race past an earlier availability check.
        """
        if quantity < 1:
            raise InvalidArgument(f"quantity must be positive, got {quantity}")

        now = datetime.now(timezone.utc).isoformat()
        updated = self.db.execute_write(
            """UPDATE products
               SET stock_quantity = stock_quantity - ?, updated_at = ?
               WHERE id = ? AND stock_quantity >= ?""",
            (quantity, now, product_id, quantity)
        )
        if updated == 0:
            product = self.get(product_id)
            raise InsufficientStock(product_id, quantity, product.stock_quantity)

        logger.info("stock_decremented", product_id=product_id, quantity=quantity)
        return self.get(product_id)

    def restock(self, product_id: str, quantity: int) -> ProductRecord:
        """Return units to stock (deliveries, or rollback of a failed sale)."""
        if quantity < 1:
            raise InvalidArgument(f"quantity must be positive, got {quantity}")

        now = datetime.now(timezone.utc).isoformat()
        updated = self.db.execute_write(
            "UPDATE products SET stock_quantity = stock_quantity + ?, updated_at = ? WHERE id = ?",
            (quantity, now, product_id)
        )
        if updated == 0:
            raise NotFound(f"Product {product_id} not found")

        logger.info("stock_restocked", product_id=product_id, quantity=quantity)
        return self.get(product_id)


class InvoiceRepository:
    """Repository for invoices."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()
        self._update_lock = threading.Lock()

    def persist(self, invoice: Invoice) -> Invoice:
        self.db.execute(
            """INSERT INTO invoices
               (id, client_id, session_id, items, total_amount, payment_postings,
                status, is_partial, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            InvoiceRecord.from_invoice(invoice).to_db_tuple()
        )
        logger.info(
            "invoice_persisted",
            invoice_id=invoice.id,
            session_id=invoice.session_id,
            total_amount=invoice.total_amount,
            is_partial=invoice.is_partial,
        )
        return invoice

    def get(self, invoice_id: str) -> Invoice:
        results = self.db.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
        if not results:
            raise NotFound(f"Invoice {invoice_id} not found")
        return InvoiceRecord.from_row(results[0]).to_invoice()

    def update(self, invoice_id: str, mutator: Callable[[Invoice], Invoice]) -> Invoice:
        """
        Read-modify-write an invoice.

        Only payment postings and the derived status are written back;
        items and total are immutable once issued.
        """
        with self._update_lock:
            invoice = mutator(self.get(invoice_id))
            record = InvoiceRecord.from_invoice(invoice)
            self.db.execute_write(
                "UPDATE invoices SET payment_postings = ?, status = ?, updated_at = ? WHERE id = ?",
                (
                    json.dumps(record.payment_postings),
                    record.status,
                    datetime.now(timezone.utc).isoformat(),
                    invoice_id,
                )
            )
        return invoice

    def delete(self, invoice_id: str) -> None:
        """Withdraw an invoice whose session change could not be saved."""
        self.db.execute_write("DELETE FROM invoices WHERE id = ?", (invoice_id,))
        logger.warning("invoice_withdrawn", invoice_id=invoice_id)

    def list_by_session(self, session_id: str) -> List[Invoice]:
        results = self.db.execute(
            "SELECT * FROM invoices WHERE session_id = ? ORDER BY created_at ASC",
            (session_id,)
        )
        return [InvoiceRecord.from_row(r).to_invoice() for r in results]

    def list_by_client(self, client_id: str, limit: int = 100) -> List[Invoice]:
        results = self.db.execute(
            "SELECT * FROM invoices WHERE client_id = ? ORDER BY created_at DESC LIMIT ?",
            (client_id, limit)
        )
        return [InvoiceRecord.from_row(r).to_invoice() for r in results]


class SessionRepository:
    """Repository for session ledger snapshots."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def save(self, ledger: SessionLedger) -> SessionLedger:
        """Insert or replace the snapshot for this session."""
        self.db.execute(
            """INSERT OR REPLACE INTO sessions
               (id, client_id, invoice_id, status, started_at, ended_at, ledger, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            SessionRecord.from_ledger(ledger).to_db_tuple()
        )
        logger.debug("session_saved", session_id=ledger.id, status=ledger.status.value)
        return ledger

    def get(self, session_id: str) -> SessionLedger:
        results = self.db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        if not results:
            raise NotFound(f"Session {session_id} not found")
        return SessionRecord.from_row(results[0]).to_ledger()

    def list_by_status(self, status: Optional[str] = None) -> List[SessionLedger]:
        if status:
            results = self.db.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY started_at ASC",
                (status,)
            )
        else:
            results = self.db.execute("SELECT * FROM sessions ORDER BY started_at ASC")
        return [SessionRecord.from_row(r).to_ledger() for r in results]
