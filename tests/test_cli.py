"""
Tests for the command line interface
"""

import pytest

from shaghaf.cli import main
from shaghaf.persistence import Database, ProductRecord, ProductRepository


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'shaghaf-cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    db = Database(url)
    db.initialize()
    yield db
    db.close()


def test_quote_two_hours(capsys, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    main(["quote", "2", "--hours", "2"])
    out = capsys.readouterr().out
    assert "Duration: 02:00:00" in out
    assert "Time cost: 140.00 EGP" in out


def test_quote_uses_configured_rates(capsys, monkeypatch):
    monkeypatch.setenv("SHAGHAF_FIRST_HOUR_RATE", "50")
    monkeypatch.setenv("SHAGHAF_CURRENCY", "USD")
    main(["quote", "1", "--minutes", "20"])
    assert "Time cost: 50.00 USD" in capsys.readouterr().out


def test_low_stock(capsys, cli_db):
    products = ProductRepository(cli_db)
    products.create(ProductRecord(id="PRD-1", name="Water", price=500, stock_quantity=1, min_stock_level=3))
    products.create(ProductRecord(id="PRD-2", name="Juice", price=1500, stock_quantity=20, min_stock_level=3))

    main(["low-stock"])
    out = capsys.readouterr().out
    assert "Water" in out
    assert "Juice" not in out


def test_unknown_invoice_exits(capsys, cli_db):
    with pytest.raises(SystemExit) as exc:
        main(["invoice", "INV-NOPE"])
    assert exc.value.code == 1
    assert "INV-NOPE" in capsys.readouterr().out
