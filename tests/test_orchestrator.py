"""
Tests for the Session Orchestrator

End-to-end over a real SQLite file with a fake clock.
"""

import threading
import pytest

from shaghaf.core.invoice import InvoiceStatus, PaymentMethod
from shaghaf.core.ledger import SessionStatus
from shaghaf.errors import NotFound
from shaghaf.sessions import SessionOrchestrator, SessionOutcome


class StorageDown(Exception):
    pass


def _fail(*args, **kwargs):
    raise StorageDown("disk full")


@pytest.fixture
def session(orchestrator):
    result = orchestrator.start_session(["", "Karim"], walk_in_name="Mona", walk_in_phone="0100")
    assert result.ok
    return result.value


class TestStartSession:

    def test_walk_in_creates_client(self, orchestrator, session, clients):
        client = clients.get(session.primary_client_id)
        assert client.name == "Mona"
        assert client.membership_type == "daily"
        assert session.individuals[0].display_name == "Mona"
        assert session.individuals[0].is_primary_client

    def test_existing_client(self, orchestrator, clients):
        client = clients.create_walk_in("Sara", None)
        result = orchestrator.start_session(["Sara"], client_id=client.id)
        assert result.ok
        assert result.value.primary_client_id == client.id

    def test_unknown_client(self, orchestrator):
        result = orchestrator.start_session(["Sara"], client_id="CLI-NOPE")
        assert result.outcome == SessionOutcome.NOT_FOUND
        assert result.value is None
        assert "CLI-NOPE" in result.error_message

    def test_no_client_details(self, orchestrator):
        result = orchestrator.start_session(["Sara"])
        assert result.outcome == SessionOutcome.INVALID_ARGUMENT

    def test_no_individuals(self, orchestrator, clients):
        result = orchestrator.start_session([], walk_in_name="Sara")
        assert result.outcome == SessionOutcome.INVALID_ARGUMENT
        assert clients.search("Sara") == []

    def test_snapshot_persisted(self, orchestrator, session, sessions):
        assert sessions.get(session.id).headcount == 2


class TestProducts:

    def test_add_product_takes_stock(self, orchestrator, session, coffee, products):
        result = orchestrator.add_product(session.id, coffee.id, 3, individual_name="Karim")
        assert result.ok
        item = result.value.product_items[0]
        assert (item.quantity, item.unit_price, item.total_price) == (3, 1000, 3000)
        assert item.attributed_individual_name == "Karim"
        assert products.get(coffee.id).stock_quantity == 2

    def test_custom_price_override(self, orchestrator, session, coffee):
        result = orchestrator.add_product(session.id, coffee.id, 1, unit_price=0)
        assert result.value.product_items[0].unit_price == 0

    def test_insufficient_stock_leaves_everything_unchanged(self, orchestrator, session, coffee, products):
        result = orchestrator.add_product(session.id, coffee.id, 6)
        assert result.outcome == SessionOutcome.INSUFFICIENT_STOCK
        assert orchestrator.get_session(session.id).value.product_items == []
        assert products.get(coffee.id).stock_quantity == 5

    def test_invalid_quantity_takes_no_stock(self, orchestrator, session, coffee, products):
        result = orchestrator.add_product(session.id, coffee.id, 0)
        assert result.outcome == SessionOutcome.INVALID_ARGUMENT
        assert products.get(coffee.id).stock_quantity == 5

    def test_unknown_product(self, orchestrator, session):
        result = orchestrator.add_product(session.id, "PRD-NOPE", 1)
        assert result.outcome == SessionOutcome.NOT_FOUND

    def test_unknown_session(self, orchestrator, coffee):
        result = orchestrator.add_product("SES-NOPE", coffee.id, 1)
        assert result.outcome == SessionOutcome.NOT_FOUND

    def test_failed_save_returns_stock(self, orchestrator, session, coffee, products, monkeypatch):
        monkeypatch.setattr(orchestrator.sessions, "save", _fail)
        with pytest.raises(StorageDown):
            orchestrator.add_product(session.id, coffee.id, 2)
        assert products.get(coffee.id).stock_quantity == 5
        assert orchestrator.get_session(session.id).value.product_items == []

    def test_update_quantity_moves_stock(self, orchestrator, session, coffee, products):
        item = orchestrator.add_product(session.id, coffee.id, 2).value.product_items[0]

        result = orchestrator.update_product_item(session.id, item.id, quantity=4)
        assert result.ok
        assert result.value.products_cost == 4000
        assert products.get(coffee.id).stock_quantity == 1

        orchestrator.update_product_item(session.id, item.id, quantity=1)
        assert products.get(coffee.id).stock_quantity == 4

    def test_update_beyond_stock_rejected(self, orchestrator, session, coffee, products):
        item = orchestrator.add_product(session.id, coffee.id, 2).value.product_items[0]
        result = orchestrator.update_product_item(session.id, item.id, quantity=9)
        assert result.outcome == SessionOutcome.INSUFFICIENT_STOCK
        assert orchestrator.get_session(session.id).value.product_items[0].quantity == 2
        assert products.get(coffee.id).stock_quantity == 3

    def test_update_price_only(self, orchestrator, session, coffee, products):
        item = orchestrator.add_product(session.id, coffee.id, 2).value.product_items[0]
        result = orchestrator.update_product_item(session.id, item.id, unit_price=750)
        assert result.value.product_items[0].total_price == 1500
        assert products.get(coffee.id).stock_quantity == 3

    def test_remove_returns_units(self, orchestrator, session, coffee, products):
        item = orchestrator.add_product(session.id, coffee.id, 2).value.product_items[0]
        result = orchestrator.remove_product_item(session.id, item.id)
        assert result.ok
        assert result.value.product_items == []
        assert products.get(coffee.id).stock_quantity == 5

    def test_concurrent_sales_never_oversell(self, orchestrator, session, coffee, products):
        results = []

        def sell():
            results.append(orchestrator.add_product(session.id, coffee.id, 1))

        threads = [threading.Thread(target=sell) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(r.ok for r in results) == 5
        assert all(r.outcome == SessionOutcome.INSUFFICIENT_STOCK for r in results if not r.ok)
        assert products.get(coffee.id).stock_quantity == 0
        assert orchestrator.get_session(session.id).value.products_cost == 5000


class TestPartialExit:

    def test_partial_invoice_issued(self, orchestrator, session, coffee, clock, invoices):
        item = orchestrator.add_product(session.id, coffee.id, 3).value.product_items[0]
        clock.advance(1800)

        karim = session.individuals[1]
        result = orchestrator.partial_exit(session.id, [karim.id], {item.id: 2})
        assert result.ok

        receipt = result.value
        assert receipt.invoice.total_amount == 6000
        assert receipt.invoice.is_partial
        assert receipt.invoice.id != session.invoice_id
        assert receipt.exiting_names == ["Karim"]

        stored = invoices.get(receipt.invoice.id)
        assert stored.is_partial
        assert stored.session_id == session.id

        remaining = orchestrator.get_session(session.id).value
        assert remaining.headcount == 1
        assert remaining.product_items[0].quantity == 1

    def test_everyone_selected_rejected(self, orchestrator, session):
        result = orchestrator.partial_exit(session.id, [i.id for i in session.individuals])
        assert result.outcome == SessionOutcome.INVALID_STATE
        assert orchestrator.get_session(session.id).value.headcount == 2

    def test_failed_save_withdraws_invoice(self, orchestrator, session, monkeypatch):
        monkeypatch.setattr(orchestrator.sessions, "save", _fail)
        with pytest.raises(StorageDown):
            orchestrator.partial_exit(session.id, [session.individuals[1].id])
        assert orchestrator.list_session_invoices(session.id) == []
        assert orchestrator.get_session(session.id).value.headcount == 2

    def test_then_complete(self, orchestrator, session, clock):
        orchestrator.partial_exit(session.id, [session.individuals[1].id])
        clock.advance(7200)
        receipt = orchestrator.complete_session(session.id).value
        # one person, two hours
        assert receipt.invoice.total_amount == 7000
        assert len(orchestrator.list_session_invoices(session.id)) == 2


class TestCompletion:

    def test_complete_issues_final_invoice(self, orchestrator, session, clock, invoices):
        clock.advance(7200)
        result = orchestrator.complete_session(session.id)
        assert result.ok

        receipt = result.value
        assert receipt.invoice.id == session.invoice_id
        assert receipt.invoice.total_amount == 14000
        assert not receipt.invoice.is_partial
        assert receipt.ledger.status == SessionStatus.COMPLETED
        assert receipt.ledger.ended_at == clock.now
        assert invoices.get(session.invoice_id).total_amount == 14000

    def test_complete_twice_rejected(self, orchestrator, session):
        orchestrator.complete_session(session.id)
        result = orchestrator.complete_session(session.id)
        assert result.outcome == SessionOutcome.INVALID_STATE

    def test_completed_session_frozen(self, orchestrator, session, coffee):
        orchestrator.complete_session(session.id)
        assert orchestrator.add_individuals(session.id, ["Sara"]).outcome == SessionOutcome.INVALID_STATE
        assert orchestrator.add_product(session.id, coffee.id, 1).outcome == SessionOutcome.INVALID_STATE

    def test_failed_save_keeps_session_active(self, orchestrator, session, invoices, monkeypatch):
        monkeypatch.setattr(orchestrator.sessions, "save", _fail)
        with pytest.raises(StorageDown):
            orchestrator.complete_session(session.id)
        assert orchestrator.get_session(session.id).value.is_active
        with pytest.raises(NotFound):
            invoices.get(session.invoice_id)

    def test_failed_start_withdraws_walk_in(self, orchestrator, clients, monkeypatch):
        monkeypatch.setattr(orchestrator.sessions, "save", _fail)
        with pytest.raises(StorageDown):
            orchestrator.start_session(["Sara"], walk_in_name="Sara")
        assert clients.search("Sara") == []
        assert orchestrator.get_metrics()["sessions_started"] == 0

    def test_failed_start_keeps_existing_client(self, orchestrator, clients, monkeypatch):
        client = clients.create_walk_in("Nour", None)
        monkeypatch.setattr(orchestrator.sessions, "save", _fail)
        with pytest.raises(StorageDown):
            orchestrator.start_session(["Nour"], client_id=client.id)
        assert clients.get(client.id).name == "Nour"

    def test_completed_session_leaves_memory(self, orchestrator, session):
        orchestrator.complete_session(session.id)
        assert session.id not in orchestrator._live
        assert session.id not in orchestrator._session_locks

        # still readable from storage, and not cached again
        reread = orchestrator.get_session(session.id).value
        assert reread.status == SessionStatus.COMPLETED
        assert session.id not in orchestrator._live

    def test_session_survives_restart(self, orchestrator, session, policy, clients, products, invoices, sessions, clock):
        orchestrator.add_individuals(session.id, ["Sara"])
        restarted = SessionOrchestrator(policy, clients, products, invoices, sessions, clock=clock)
        clock.advance(600)
        receipt = restarted.complete_session(session.id).value
        assert receipt.invoice.total_amount == 12000


class TestPayments:

    def test_split_payment(self, orchestrator, session, clock):
        clock.advance(7200)
        invoice = orchestrator.complete_session(session.id).value.invoice

        first = orchestrator.apply_payment(invoice.id, PaymentMethod.CASH, 10000)
        assert first.value.status == InvoiceStatus.PENDING
        second = orchestrator.apply_payment(invoice.id, PaymentMethod.CARD, 4000, "POS-1")
        assert second.value.status == InvoiceStatus.PAID
        assert second.value.remaining_balance == 0

        stored = orchestrator.get_invoice(invoice.id).value
        assert len(stored.payment_postings) == 2
        assert stored.payment_postings[0].processed_at == clock.now

    def test_negative_payment(self, orchestrator, session):
        invoice = orchestrator.complete_session(session.id).value.invoice
        result = orchestrator.apply_payment(invoice.id, PaymentMethod.CASH, -100)
        assert result.outcome == SessionOutcome.INVALID_ARGUMENT

    def test_unknown_invoice(self, orchestrator):
        result = orchestrator.apply_payment("INV-NOPE", PaymentMethod.CASH, 100)
        assert result.outcome == SessionOutcome.NOT_FOUND


class TestQueries:

    def test_quote_tracks_clock(self, orchestrator, session, coffee, clock):
        orchestrator.add_product(session.id, coffee.id, 1)
        assert orchestrator.quote(session.id).value.total == 9000
        clock.advance(2 * 3600)
        quote = orchestrator.quote(session.id).value
        assert quote.elapsed_seconds == 7200
        assert quote.total == 15000

    def test_list_and_stats(self, orchestrator, session, clock):
        other = orchestrator.start_session(["Sara"], walk_in_name="Sara").value
        orchestrator.complete_session(other.id)

        active = orchestrator.list_sessions(SessionStatus.ACTIVE)
        completed = orchestrator.list_sessions(SessionStatus.COMPLETED)
        assert [s.id for s in active] == [session.id]
        assert [s.id for s in completed] == [other.id]
        assert len(orchestrator.list_sessions()) == 2

        stats = orchestrator.session_stats(SessionStatus.ACTIVE)
        assert stats.total_sessions == 1
        assert stats.total_individuals == 2
        assert stats.total_revenue == 8000

    def test_metrics(self, orchestrator, session):
        orchestrator.complete_session(session.id)
        orchestrator.complete_session(session.id)
        metrics = orchestrator.get_metrics()
        assert metrics["sessions_started"] == 1
        assert metrics["sessions_completed"] == 1
        assert metrics["rejected_operations"] == 1
        assert metrics["active_sessions"] == 0
