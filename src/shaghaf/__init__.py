"""
SHAGHAF - Shared-Space Session Billing

Time-and-products billing for a shared workspace: sessions with a
variable headcount, capped hourly pricing, partial exits with their own
invoices, and split payments.
"""

__version__ = "1.0.0"
