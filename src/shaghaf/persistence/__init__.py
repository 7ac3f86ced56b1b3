"""
Persistence Layer for Shaghaf

SQLite-backed storage for clients, products, invoices and session snapshots.
"""

from .database import Database, get_database
from .models import ClientRecord, ProductRecord, InvoiceRecord, SessionRecord
from .repository import ClientRepository, ProductRepository, InvoiceRepository, SessionRepository

__all__ = [
    "Database",
    "get_database",
    "ClientRecord",
    "ProductRecord",
    "InvoiceRecord",
    "SessionRecord",
    "ClientRepository",
    "ProductRepository",
    "InvoiceRepository",
    "SessionRepository",
]
