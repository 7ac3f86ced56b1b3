"""
SHAGHAF - Core Module
Shared-space session billing

Pricing policy, session ledger, settlement engine and invoice finalizer.
Everything here is pure, synchronous computation; storage lives in
`shaghaf.persistence` and coordination in `shaghaf.sessions`.
"""

from .pricing import PricingPolicy, DEFAULT_POLICY, compute_time_cost
from .ledger import SessionLedger, SessionStatus, Individual, LineItem, LineItemKind
from .settlement import SettlementEngine, SettlementResult, PartialSettlement, CostQuote
from .invoice import Invoice, InvoiceFinalizer, InvoiceStatus, PaymentMethod, PaymentPosting

__all__ = [
    "PricingPolicy",
    "DEFAULT_POLICY",
    "compute_time_cost",
    "SessionLedger",
    "SessionStatus",
    "Individual",
    "LineItem",
    "LineItemKind",
    "SettlementEngine",
    "SettlementResult",
    "PartialSettlement",
    "CostQuote",
    "Invoice",
    "InvoiceFinalizer",
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentPosting",
]
