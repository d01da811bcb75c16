"""Command-line entry points for the pharma ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the business layer and
printing what comes back. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end
that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, importer, log, search
from .calculator import build_line_item
from .constants import BillCategory, SearchMode
from .formatting import format_currency, format_date


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


@dataclass(frozen=True)
class ItemRequest:
    """One ``--item`` argument before it is resolved against the catalogue."""

    product_id: int
    quantity: int
    bonus_quantity: int = 0
    discount_percent: Decimal = Decimal("0")


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pharma-ledger",
        description="Command-line tools for the pharma ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as billing and imports."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-party": register_add_party_command(subparsers),
        "import-products": register_import_command(subparsers),
        "bill": register_bill_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as search and reports."""
    specs = {
        "search": register_search_command(subparsers),
        "stock": register_stock_command(subparsers),
        "invoices": register_invoices_command(subparsers),
        "summary": register_summary_command(subparsers),
        "map-columns": register_map_columns_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product batch in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--batch", required=True)
        parser.add_argument("--expiry", default=None, help="Expiry date as YYYY-MM-DD.")
        parser.add_argument("--hsn", default="")
        parser.add_argument("--tax-rate", default="0")
        parser.add_argument("--mrp", default="0")
        parser.add_argument("--purchase-rate", default="0")
        parser.add_argument("--sale-rate", required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--manufacturer", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_party_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-party``."""
    name = "add-party"
    help_text = "Register a new customer in the Parties sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in BillCategory],
            default=BillCategory.WHOLESALE.value,
        )
        parser.add_argument("--gstin", default="")
        parser.add_argument("--address", default="")
        parser.add_argument("--phone", default="")
        parser.add_argument("--email", default="")
        parser.add_argument("--state-code", default="")
        parser.add_argument("--dl-no-1", default="")
        parser.add_argument("--dl-no-2", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_party)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-products``."""
    name = "import-products"
    help_text = "Bulk import products from a supplier .xlsx or .csv stock sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("path", type=Path)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_products)


def register_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill``."""
    name = "bill"
    help_text = "Commit an invoice for one or more products."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="PRODUCT_ID:QTY[:FREE[:DISC%%]]; repeat for each line.",
        )
        parser.add_argument(
            "--category",
            choices=[member.value for member in BillCategory],
            default=BillCategory.RETAIL.value,
        )
        parser.add_argument("--party-id", type=int, default=None)
        parser.add_argument("--transport", default="")
        parser.add_argument("--vehicle-no", default="")
        parser.add_argument("--gr-no", default="")
        parser.add_argument("--destination", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill)


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""
    name = "search"
    help_text = "Find products by name or batch."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("query")
        parser.add_argument("--accurate", action="store_true", help="Scan every product with fuzzy matching.")
        parser.add_argument("--limit", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--filter", dest="query", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_invoices_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoices``."""
    name = "invoices"
    help_text = "List committed invoices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoices_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display sales and stock headline figures."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_map_columns_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``map-columns``."""
    name = "map-columns"
    help_text = "Show how a stock sheet's headers would be mapped, without importing."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("path", type=Path)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_map_columns)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _decimal(raw: str, label: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid {label}: {raw!r}") from exc


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "batch": args.batch,
        "expiry": date.fromisoformat(args.expiry) if args.expiry else None,
        "hsn": args.hsn,
        "tax_rate": _decimal(args.tax_rate, "tax rate"),
        "mrp": _decimal(args.mrp, "MRP"),
        "purchase_rate": _decimal(args.purchase_rate, "purchase rate"),
        "sale_rate": _decimal(args.sale_rate, "sale rate"),
        "stock": args.stock,
        "manufacturer": args.manufacturer,
    }


def translate_add_party(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-party request."""
    return {
        "name": args.name,
        "category": BillCategory(args.category),
        "tax_id": args.gstin,
        "address": args.address,
        "phone": args.phone,
        "email": args.email,
        "state_code": args.state_code,
        "dl_no_1": args.dl_no_1,
        "dl_no_2": args.dl_no_2,
    }


def parse_item_argument(raw: str) -> ItemRequest:
    """Parse ``PRODUCT_ID:QTY[:FREE[:DISC%]]``.

    Raises:
        ValueError: If the text does not follow that layout.
    """
    parts = raw.split(":")
    if not 2 <= len(parts) <= 4:
        raise ValueError(f"Invalid item {raw!r}; expected PRODUCT_ID:QTY[:FREE[:DISC%]]")
    try:
        return ItemRequest(
            product_id=int(parts[0]),
            quantity=int(parts[1]),
            bonus_quantity=int(parts[2]) if len(parts) > 2 and parts[2] else 0,
            discount_percent=_decimal(parts[3], "discount") if len(parts) > 3 else Decimal("0"),
        )
    except ValueError as exc:
        raise ValueError(f"Invalid item {raw!r}: {exc}") from exc


def translate_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.InvoiceCommand:
    """Translate CLI args into an invoice command, snapshotting each product."""
    lines: List[data_manager.InvoiceItemRow] = []
    for raw in args.items:
        request = parse_item_argument(raw)
        product = core_logic.get_product(context, request.product_id)
        lines.append(
            build_line_item(
                product,
                request.quantity,
                bonus_quantity=request.bonus_quantity,
                discount_percent=request.discount_percent,
            )
        )
    return core_logic.InvoiceCommand(
        items=lines,
        category=BillCategory(args.category),
        party_id=args.party_id,
        logistics=data_manager.LogisticsDetails(
            transport=args.transport,
            vehicle_no=args.vehicle_no,
            gr_no=args.gr_no,
            destination=args.destination,
        ),
    )


def _print_products(products: Sequence[data_manager.ProductRow]) -> None:
    if not products:
        print("No products found.")
        return
    for product in products:
        print(
            f"{product.product_id:>5}  {product.name:<30} {product.batch:<12} "
            f"{format_date(product.expiry):<12} {product.stock:>7}  {format_currency(product.sale_rate)}"
        )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    record = core_logic.add_product(context, **payload)
    print(f"Added product {record.product_id}: {record.name} ({record.batch})")
    return 0


def run_add_party(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-party workflow in the BLL."""
    payload = translate_add_party(args)
    record = core_logic.add_party(context, **payload)
    print(f"Added party {record.party_id}: {record.name}")
    return 0


def run_import_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a bulk product import."""
    result = importer.import_products(context, args.path)
    print(f"Imported {result.count} products.")
    return 0


def run_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice commit workflow via the BLL."""
    command = translate_bill(context, args)
    invoice = core_logic.commit_invoice(context, command)
    print(f"Committed invoice {invoice.invoice_no} for {invoice.party_name}: {format_currency(invoice.grand_total)}")
    return 0


def run_search(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a product search."""
    mode = SearchMode.ACCURATE if args.accurate else SearchMode.FAST
    _print_products(search.search_products(context, args.query, mode=mode, limit=args.limit))
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    _print_products(search.list_inventory(context, args.query))
    return 0


def run_invoices_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the invoice listing workflow."""
    invoices = core_logic.list_invoices(context)
    if not invoices:
        print("No invoices recorded.")
    for invoice in invoices:
        print(
            f"{invoice.invoice_no:<10} {invoice.timestamp_iso[:10]}  {invoice.party_name:<30} "
            f"{format_currency(invoice.grand_total):>15}"
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dashboard summary workflow."""
    summary = core_logic.calculate_dashboard_summary(context)
    print(f"Total sales:    {format_currency(summary.total_sales)}")
    print(f"Invoices:       {summary.invoice_count}")
    print(f"Low stock:      {summary.low_stock_count}")
    print(f"Expiring soon:  {summary.expiring_soon_count}")
    return 0


def run_map_columns(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Show the inferred header mapping for a stock sheet."""
    headers, _ = importer.read_sheet_rows(args.path)
    for field_name, header in importer.map_columns(headers).items():
        print(f"{field_name:<14} -> {header if header is not None else '(unmapped)'}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.CommitError):
        log.error("%s", error)
        return 4
    if isinstance(error, importer.ImportDecodeError):
        log.error("%s", error)
        return 5
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
