"""
SHAGHAF - API Module

FastAPI server for the front desk:
- Session lifecycle (start, add people, partial exit, complete)
- Product lines with stock control
- Invoices and payments
- Catalog and low-stock reporting
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
