"""
Tests for the Invoice Finalizer and payments
"""

import pytest
from datetime import timedelta

from shaghaf.core.invoice import InvoiceFinalizer, InvoiceStatus, PaymentMethod
from shaghaf.core.ledger import LineItemKind, SessionLedger
from shaghaf.core.settlement import TIME_ITEM_NAME, SettlementEngine
from shaghaf.errors import InvalidArgument

from conftest import T0


@pytest.fixture
def finalizer():
    return InvoiceFinalizer()


@pytest.fixture
def invoice(policy, finalizer):
    """Two people for two hours: 140.00."""
    ledger = SessionLedger.start("CLI-1", ["Mona", "Karim"], now=T0)
    settlement = SettlementEngine(policy).settle_full(ledger, T0 + timedelta(hours=2))
    return finalizer.finalize(settlement, ledger.invoice_id, "CLI-1", session_id=ledger.id)


class TestFinalize:

    def test_total_carried_from_settlement(self, invoice):
        assert invoice.total_amount == 14000
        assert invoice.total_amount == sum(i.total_price for i in invoice.items)
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.remaining_balance == 14000

    def test_created_at_is_settlement_time(self, invoice):
        assert invoice.created_at == T0 + timedelta(hours=2)

    def test_uneven_time_split_reads_correctly(self, policy, finalizer):
        """Three people for five hours: 220.00 shown as 2 x 73.33 + 1 x 73.34."""
        ledger = SessionLedger.start("CLI-1", ["A", "B", "C"], now=T0)
        ledger.add_product_item("PRD-1", "Tea", 1, 1000)
        settlement = SettlementEngine(policy).settle_full(ledger, T0 + timedelta(hours=5))
        invoice = finalizer.finalize(settlement, ledger.invoice_id, "CLI-1", session_id=ledger.id)

        time_lines = [i for i in invoice.items if i.kind == LineItemKind.TIME]
        assert [(i.name, i.quantity, i.unit_price) for i in time_lines] == [
            (TIME_ITEM_NAME, 2, 7333),
            (TIME_ITEM_NAME, 1, 7334),
        ]
        assert sum(i.quantity for i in time_lines) == 3
        assert sum(i.total_price for i in time_lines) == 22000
        assert invoice.total_amount == 23000

        data = invoice.to_dict()
        assert sum(i["total_price"] for i in data["items"]) == data["total_amount"]

        finalizer.apply_payment(invoice, PaymentMethod.CASH, 23000)
        assert invoice.status == InvoiceStatus.PAID


class TestPayments:

    def test_split_payment_settles(self, finalizer, invoice):
        finalizer.apply_payment(invoice, PaymentMethod.CASH, 10000)
        assert invoice.status == InvoiceStatus.PENDING
        finalizer.apply_payment(invoice, PaymentMethod.CARD, 4000, transaction_ref="POS-991")

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.remaining_balance == 0
        assert [p.method for p in invoice.payment_postings] == [PaymentMethod.CASH, PaymentMethod.CARD]
        assert invoice.payment_postings[1].transaction_ref == "POS-991"

    def test_underpayment_stays_pending(self, finalizer, invoice):
        finalizer.apply_payment(invoice, PaymentMethod.WALLET, 13999)
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.remaining_balance == 1

    def test_overpayment_accepted(self, finalizer, invoice):
        finalizer.apply_payment(invoice, PaymentMethod.CASH, 20000)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.is_overpaid
        assert invoice.remaining_balance == -6000

    def test_zero_payment_allowed(self, finalizer, invoice):
        finalizer.apply_payment(invoice, PaymentMethod.CASH, 0)
        assert len(invoice.payment_postings) == 1
        assert invoice.status == InvoiceStatus.PENDING

    @pytest.mark.parametrize("amount", [-1, 12.5, "100"])
    def test_invalid_amount_rejected(self, finalizer, invoice, amount):
        with pytest.raises(InvalidArgument):
            finalizer.apply_payment(invoice, PaymentMethod.CASH, amount)
        assert invoice.payment_postings == []

    def test_to_dict(self, finalizer, invoice):
        finalizer.apply_payment(invoice, PaymentMethod.CASH, 14000, now=T0 + timedelta(hours=3))
        data = invoice.to_dict()
        assert data["status"] == "PAID"
        assert data["payment_postings"][0]["method"] == "CASH"
        assert data["payment_postings"][0]["processed_at"] == (T0 + timedelta(hours=3)).isoformat()
