"""
Shaghaf CLI

Commands:
  serve      - Run the billing server
  quote      - Price a stay for a headcount and duration
  low-stock  - List products that need restocking
  invoice    - Print an invoice
"""

import argparse
import sys

from .config import ShaghafConfig, configure_logging
from .core.money import format_currency, format_duration
from .core.pricing import SECONDS_PER_HOUR, additional_hour_blocks, compute_time_cost
from .errors import ShaghafError


def cmd_serve(args):
    """Run the billing server."""
    from .api.server import run

    print(f"Starting Shaghaf on {args.host}:{args.port}")
    run(host=args.host, port=args.port, reload=args.reload)


def cmd_quote(args, config: ShaghafConfig):
    """Price a stay without opening a session."""
    elapsed = int(args.hours * SECONDS_PER_HOUR) + args.minutes * 60
    cost = compute_time_cost(args.headcount, elapsed, config.pricing)

    print(f"Headcount: {args.headcount}")
    print(f"Duration: {format_duration(elapsed)}")
    print(f"Additional hours: {additional_hour_blocks(elapsed)}")
    print(f"Time cost: {format_currency(cost, config.currency)}")


def cmd_low_stock(args, config: ShaghafConfig):
    """List active products at or below their minimum level."""
    from .persistence import Database, ProductRepository

    db = Database(config.database_url)
    db.initialize()
    products = ProductRepository(db).list_low_stock()

    if not products:
        print("All products above minimum stock")
        return
    for product in products:
        print(
            f"{product.id}  {product.name:<24} "
            f"stock {product.stock_quantity:>4} {product.unit} (min {product.min_stock_level})"
        )


def cmd_invoice(args, config: ShaghafConfig):
    """Print an invoice with its line items and payments."""
    from .persistence import Database, InvoiceRepository

    db = Database(config.database_url)
    db.initialize()
    invoice = InvoiceRepository(db).get(args.invoice_id)
    currency = config.currency

    print(f"Invoice {invoice.id}{' (partial)' if invoice.is_partial else ''}")
    print("=" * 48)
    print(f"Session: {invoice.session_id or '-'}")
    print(f"Issued: {invoice.created_at.isoformat()}")
    print("-" * 48)
    for item in invoice.items:
        owner = f" [{item.attributed_individual_name}]" if item.attributed_individual_name else ""
        print(
            f"{item.quantity:>3} x {item.name}{owner} @ {format_currency(item.unit_price, currency)}"
            f" = {format_currency(item.total_price, currency)}"
        )
    print("-" * 48)
    print(f"Total: {format_currency(invoice.total_amount, currency)}")
    for posting in invoice.payment_postings:
        print(f"  Paid {posting.method.value}: {format_currency(posting.amount, currency)}")
    print(f"Remaining: {format_currency(invoice.remaining_balance, currency)}")
    print(f"Status: {invoice.status.value}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Shaghaf - Shared-space session billing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")

    # quote
    quote_parser = subparsers.add_parser("quote", help="Price a stay")
    quote_parser.add_argument("headcount", type=int, help="Number of people")
    quote_parser.add_argument("--hours", type=float, default=0, help="Hours spent")
    quote_parser.add_argument("--minutes", type=int, default=0, help="Minutes spent")

    # low-stock
    subparsers.add_parser("low-stock", help="List products needing restock")

    # invoice
    invoice_parser = subparsers.add_parser("invoice", help="Print an invoice")
    invoice_parser.add_argument("invoice_id", help="Invoice ID")

    args = parser.parse_args(argv)
    config = ShaghafConfig.from_env()
    configure_logging(config.log_level, config.log_json)

    try:
        if args.command == "serve":
            cmd_serve(args)
        elif args.command == "quote":
            cmd_quote(args, config)
        elif args.command == "low-stock":
            cmd_low_stock(args, config)
        elif args.command == "invoice":
            cmd_invoice(args, config)
        else:
            parser.print_help()
    except ShaghafError as e:
        print(f"Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
