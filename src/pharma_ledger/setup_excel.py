"""Utility for initializing the pharma ledger workbook.

The module doubles as a script (``pharma-ledger-setup``) and as a library
used by tests or other tooling. Shared helpers keep the workbook bootstrap
logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import DEFAULT_INVOICE_PREFIX, DEFAULT_STARTING_INVOICE_NUMBER, DEFAULT_TERMS


def create_master_workbook(
    destination: Path,
    *,
    company_name: str,
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX,
    starting_invoice_number: int = DEFAULT_STARTING_INVOICE_NUMBER,
    terms: str = DEFAULT_TERMS,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    Every sheet gets its bold header row, and the ``Settings`` sheet gets its
    single data row holding the invoice counter, the company name and the
    terms printed under each invoice. When ``overwrite`` is ``False`` (the
    default) this function raises ``FileExistsError`` if the target already
    exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger workbook: {destination}"
        )
    if starting_invoice_number < 1:
        raise ValueError("Starting invoice number must be positive")

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    settings_sheet = workbook[data_manager.SETTINGS_SHEET]
    seed = {
        "InvoicePrefix": invoice_prefix,
        "NextInvoiceNumber": starting_invoice_number,
        "CompanyName": company_name,
        "Terms": terms,
    }
    settings_sheet.append([seed.get(column, "") for column in sheet_columns[data_manager.SETTINGS_SHEET]])

    data_manager.save_workbook(workbook, destination)
    log.info("Created ledger workbook at '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini`` using its company and billing settings."""

    config_path = Path(config_path)
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(
        settings.data_file,
        company_name=settings.company_name,
        invoice_prefix=settings.invoice_prefix,
        starting_invoice_number=settings.starting_invoice_number,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the pharma ledger data file")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Pharma Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except ValueError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
