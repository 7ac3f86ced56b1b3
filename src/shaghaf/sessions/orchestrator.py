"""
Session Orchestrator

Coordinates the ledger, settlement engine and finalizer against storage.
This is the only component with side effects.

Every mutating call follows the same shape:
1. take the per-session lock
2. apply the change to a snapshot of the live ledger
3. run the external steps (stock, invoice, snapshot persistence)
4. swap the snapshot in only once all of them succeeded

A failed external step therefore leaves the live ledger exactly as it was.
Expected business failures come back as a `SessionResult` with a non-OK
outcome; storage failures propagate after any stock taken has been put back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar
import structlog

from ..core.invoice import Invoice, InvoiceFinalizer, PaymentMethod
from ..core.ledger import SessionLedger, SessionStatus, new_id
from ..core.money import Money
from ..core.pricing import PricingPolicy
from ..core.settlement import CostQuote, SettlementEngine
from ..errors import ErrorKind, InvalidArgument, InvalidState, ShaghafError
from ..persistence.repository import (
    ClientRepository,
    InvoiceRepository,
    ProductRepository,
    SessionRepository,
)

logger = structlog.get_logger()

T = TypeVar('T')


class SessionOutcome(Enum):
    """Outcome of an orchestrator call."""
    OK = "OK"
    INVALID_STATE = "INVALID_STATE"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"

    @classmethod
    def from_error(cls, kind: ErrorKind) -> "SessionOutcome":
        return cls[kind.name]


@dataclass
class SessionResult(Generic[T]):
    """Either a value (outcome OK) or an error kind with a message."""
    outcome: SessionOutcome
    value: Optional[T] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == SessionOutcome.OK

    def error_dict(self) -> Dict[str, Any]:
        return {"kind": self.outcome.value, "message": self.error_message}


@dataclass
class ExitReceipt:
    """What a partial exit produced."""
    invoice: Invoice
    ledger: SessionLedger
    exiting_names: List[str] = field(default_factory=list)


@dataclass
class CompletionReceipt:
    """What completing a session produced."""
    invoice: Invoice
    ledger: SessionLedger


@dataclass
class SessionStats:
    """Aggregates over a set of sessions."""
    total_sessions: int
    total_individuals: int
    total_product_lines: int
    total_revenue: Money

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "total_individuals": self.total_individuals,
            "total_product_lines": self.total_product_lines,
            "total_revenue": self.total_revenue,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionOrchestrator:
    """
    Entry point for every session operation.

    Sessions are kept in memory while the process runs and snapshotted to
    the session repository after every change; a session not in memory is
    loaded from its latest snapshot.
    """

    def __init__(
        self,
        policy: PricingPolicy,
        clients: ClientRepository,
        products: ProductRepository,
        invoices: InvoiceRepository,
        sessions: SessionRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.policy = policy
        self.clients = clients
        self.products = products
        self.invoices = invoices
        self.sessions = sessions
        self.clock = clock or _utcnow

        self.settlement = SettlementEngine(policy)
        self.finalizer = InvoiceFinalizer()

        self._live: Dict[str, SessionLedger] = {}
        self._session_locks: Dict[str, Lock] = {}
        self._product_locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

        # Metrics
        self._started_count = 0
        self._completed_count = 0
        self._partial_exit_count = 0
        self._rejected_count = 0

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _lock_for(self, registry: Dict[str, Lock], key: str) -> Lock:
        with self._locks_guard:
            if key not in registry:
                registry[key] = Lock()
            return registry[key]

    def _load(self, session_id: str) -> SessionLedger:
        ledger = self._live.get(session_id)
        if ledger is None:
            ledger = self.sessions.get(session_id)
            if ledger.is_active:
                self._live[session_id] = ledger
        return ledger

    def _run(self, operation: str, action: Callable[[], T], **context: Any) -> SessionResult[T]:
        try:
            return SessionResult(outcome=SessionOutcome.OK, value=action())
        except ShaghafError as e:
            self._rejected_count += 1
            logger.warning(
                "session_operation_rejected",
                operation=operation,
                kind=e.kind.value,
                error=e.message,
                **context,
            )
            return SessionResult(
                outcome=SessionOutcome.from_error(e.kind),
                error_message=e.message,
            )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        individual_names: List[str],
        client_id: Optional[str] = None,
        walk_in_name: Optional[str] = None,
        walk_in_phone: Optional[str] = None,
    ) -> SessionResult[SessionLedger]:
        """Open a session for an existing client or a new walk-in visitor."""

        def action() -> SessionLedger:
            if not individual_names:
                raise InvalidArgument("A session needs at least one individual")
            walk_in = None
            if client_id:
                client = self.clients.get(client_id)
            elif walk_in_name and walk_in_name.strip():
                client = walk_in = self.clients.create_walk_in(walk_in_name, walk_in_phone)
            else:
                raise InvalidArgument("Either an existing client or walk-in details are required")

            names = list(individual_names)
            if not (names[0] or "").strip():
                names[0] = client.name

            ledger = SessionLedger.start(client.id, names, now=self.clock())
            try:
                self.sessions.save(ledger)
            except Exception:
                if walk_in is not None:
                    self.clients.delete(walk_in.id)
                raise
            self._live[ledger.id] = ledger
            self._started_count += 1
            return ledger

        return self._run("start_session", action, client_id=client_id)

    def add_individuals(self, session_id: str, names: List[str]) -> SessionResult[SessionLedger]:
        def action() -> SessionLedger:
            with self._lock_for(self._session_locks, session_id):
                draft = self._load(session_id).snapshot()
                draft.add_individuals(names, now=self.clock())
                self.sessions.save(draft)
                self._live[session_id] = draft
                return draft

        return self._run("add_individuals", action, session_id=session_id)

    def complete_session(self, session_id: str) -> SessionResult[CompletionReceipt]:
        """Settle everything, issue the final invoice, close the session."""

        def action() -> CompletionReceipt:
            with self._lock_for(self._session_locks, session_id):
                now = self.clock()
                draft = self._load(session_id).snapshot()
                result = self.settlement.settle_full(draft, now)
                invoice = self.finalizer.finalize(
                    result,
                    invoice_id=draft.invoice_id,
                    client_id=draft.primary_client_id,
                    session_id=draft.id,
                )
                draft.complete(now)

                self.invoices.persist(invoice)
                try:
                    self.sessions.save(draft)
                except Exception:
                    self.invoices.delete(invoice.id)
                    raise

                # Completed ledgers are immutable; later reads come from storage.
                self._live.pop(session_id, None)
                with self._locks_guard:
                    self._session_locks.pop(session_id, None)
                self._completed_count += 1
                logger.info(
                    "session_completed",
                    session_id=session_id,
                    invoice_id=invoice.id,
                    total_amount=invoice.total_amount,
                )
                return CompletionReceipt(invoice=invoice, ledger=draft)

        return self._run("complete_session", action, session_id=session_id)

    def partial_exit(
        self,
        session_id: str,
        individual_ids: List[str],
        item_quantities: Optional[Mapping[str, int]] = None,
    ) -> SessionResult[ExitReceipt]:
        """
        Bill and release some individuals; the rest keep the session.

        Selecting every remaining individual is rejected; that is a
        completion, not a partial exit.
        """

        def action() -> ExitReceipt:
            with self._lock_for(self._session_locks, session_id):
                live = self._load(session_id)
                partial = self.settlement.settle_partial(
                    live, self.clock(), individual_ids, item_quantities
                )
                invoice = self.finalizer.finalize(
                    partial.settlement,
                    invoice_id=new_id("INV"),
                    client_id=live.primary_client_id,
                    session_id=live.id,
                    is_partial=True,
                )

                self.invoices.persist(invoice)
                try:
                    self.sessions.save(partial.ledger)
                except Exception:
                    self.invoices.delete(invoice.id)
                    raise

                self._live[session_id] = partial.ledger
                self._partial_exit_count += 1
                return ExitReceipt(
                    invoice=invoice,
                    ledger=partial.ledger,
                    exiting_names=partial.exiting_names,
                )

        return self._run("partial_exit", action, session_id=session_id)

    # ------------------------------------------------------------------
    # Product items
    # ------------------------------------------------------------------

    def add_product(
        self,
        session_id: str,
        product_id: str,
        quantity: int,
        unit_price: Optional[Money] = None,
        individual_name: Optional[str] = None,
    ) -> SessionResult[SessionLedger]:
        """
        Sell a product into the session.

        `unit_price` overrides the catalog price. Stock check and decrement
        run under the product lock; the line is only added to the live
        ledger after stock has actually been taken.
        """

        def action() -> SessionLedger:
            with self._lock_for(self._session_locks, session_id):
                draft = self._load(session_id).snapshot()

                with self._lock_for(self._product_locks, product_id):
                    product = self.products.get(product_id)
                    if not product.is_active:
                        raise InvalidState(f"Product {product_id} is not available for sale")

                    # Validates quantity, price and session state before any stock moves.
                    draft.add_product_item(
                        product_id=product.id,
                        name=product.name,
                        quantity=quantity,
                        unit_price=product.price if unit_price is None else unit_price,
                        attributed_individual_name=individual_name or None,
                    )
                    self.products.decrement_stock(product_id, quantity)

                try:
                    self.sessions.save(draft)
                except Exception:
                    self.products.restock(product_id, quantity)
                    raise

                self._live[session_id] = draft
                return draft

        return self._run("add_product", action, session_id=session_id, product_id=product_id)

    def update_product_item(
        self,
        session_id: str,
        item_id: str,
        quantity: Optional[int] = None,
        unit_price: Optional[Money] = None,
        individual_name: Optional[str] = None,
    ) -> SessionResult[SessionLedger]:
        """
        Edit a product line. A quantity change moves stock by the difference.
        """

        def action() -> SessionLedger:
            with self._lock_for(self._session_locks, session_id):
                draft = self._load(session_id).snapshot()
                before = draft.get_product_item(item_id)
                after = draft.update_product_item(
                    item_id,
                    quantity=quantity,
                    unit_price=unit_price,
                    attributed_individual_name=individual_name,
                )

                delta = after.quantity - before.quantity
                self._move_stock(after.product_id, delta)
                try:
                    self.sessions.save(draft)
                except Exception:
                    self._move_stock(after.product_id, -delta)
                    raise

                self._live[session_id] = draft
                return draft

        return self._run("update_product_item", action, session_id=session_id, item_id=item_id)

    def remove_product_item(self, session_id: str, item_id: str) -> SessionResult[SessionLedger]:
        """Drop a product line and return its units to stock."""

        def action() -> SessionLedger:
            with self._lock_for(self._session_locks, session_id):
                draft = self._load(session_id).snapshot()
                removed = draft.remove_product_item(item_id)

                self._move_stock(removed.product_id, -removed.quantity)
                try:
                    self.sessions.save(draft)
                except Exception:
                    self._move_stock(removed.product_id, removed.quantity)
                    raise

                self._live[session_id] = draft
                return draft

        return self._run("remove_product_item", action, session_id=session_id, item_id=item_id)

    def _move_stock(self, product_id: Optional[str], sold_delta: int) -> None:
        """Positive delta sells more units, negative returns units to stock."""
        if not product_id or sold_delta == 0:
            return
        with self._lock_for(self._product_locks, product_id):
            if sold_delta > 0:
                self.products.decrement_stock(product_id, sold_delta)
            else:
                self.products.restock(product_id, -sold_delta)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def apply_payment(
        self,
        invoice_id: str,
        method: PaymentMethod,
        amount: Money,
        transaction_ref: Optional[str] = None,
    ) -> SessionResult[Invoice]:
        def action() -> Invoice:
            return self.invoices.update(
                invoice_id,
                lambda invoice: self.finalizer.apply_payment(
                    invoice, method, amount, transaction_ref, now=self.clock()
                ),
            )

        return self._run("apply_payment", action, invoice_id=invoice_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> SessionResult[SessionLedger]:
        return self._run("get_session", lambda: self._load(session_id).snapshot(), session_id=session_id)

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[SessionLedger]:
        stored = {s.id: s for s in self.sessions.list_by_status(status.value if status else None)}
        for session_id, ledger in list(self._live.items()):
            if status is None or ledger.status == status:
                stored[session_id] = ledger
            else:
                stored.pop(session_id, None)
        return sorted((s.snapshot() for s in stored.values()), key=lambda s: s.started_at)

    def quote(self, session_id: str) -> SessionResult[CostQuote]:
        """Live running cost, recomputed on every call."""
        return self._run(
            "quote",
            lambda: self.settlement.quote(self._load(session_id), self.clock()),
            session_id=session_id,
        )

    def session_stats(self, status: SessionStatus = SessionStatus.ACTIVE) -> SessionStats:
        """Counts and a revenue estimate over active or completed sessions."""
        sessions = self.list_sessions(status)
        now = self.clock()
        revenue = sum(self.settlement.quote(s, now).total for s in sessions)
        return SessionStats(
            total_sessions=len(sessions),
            total_individuals=sum(s.headcount for s in sessions),
            total_product_lines=sum(len(s.product_items) for s in sessions),
            total_revenue=revenue,
        )

    def get_invoice(self, invoice_id: str) -> SessionResult[Invoice]:
        return self._run("get_invoice", lambda: self.invoices.get(invoice_id), invoice_id=invoice_id)

    def list_session_invoices(self, session_id: str) -> List[Invoice]:
        return self.invoices.list_by_session(session_id)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "sessions_started": self._started_count,
            "sessions_completed": self._completed_count,
            "partial_exits": self._partial_exit_count,
            "rejected_operations": self._rejected_count,
            "active_sessions": sum(1 for s in self._live.values() if s.is_active),
        }
