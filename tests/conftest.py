"""Shared pytest fixtures and utilities for pharma ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pharma_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from pharma_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_COMPANY_NAME = "Test Distributors"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n"
    "DocumentDir = {document_dir}\n\n"
    "[Billing]\n"
    "InvoicePrefix = {invoice_prefix}\n"
    "StartingInvoiceNumber = {starting_invoice_number}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    document_dir: Path
    schema_version: str
    company_name: str
    invoice_prefix: str
    starting_invoice_number: int


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        company_name: str = DEFAULT_COMPANY_NAME,
        invoice_prefix: str = constants.DEFAULT_INVOICE_PREFIX,
        starting_invoice_number: int = constants.DEFAULT_STARTING_INVOICE_NUMBER,
        filename: str = "ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            company_name=company_name,
            invoice_prefix=invoice_prefix,
            starting_invoice_number=starting_invoice_number,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        company_name: str = DEFAULT_COMPANY_NAME,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        invoice_prefix: str = constants.DEFAULT_INVOICE_PREFIX,
        starting_invoice_number: int = constants.DEFAULT_STARTING_INVOICE_NUMBER,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=bundle_dir.name,
            company_name=company_name,
            invoice_prefix=invoice_prefix,
            starting_invoice_number=starting_invoice_number,
        )
        document_dir = bundle_dir / "invoices"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=workbook_path.name if make_relative else str(workbook_path),
                company_name=company_name,
                schema_version=schema_version,
                document_dir="invoices" if make_relative else str(document_dir),
                invoice_prefix=invoice_prefix,
                starting_invoice_number=starting_invoice_number,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            document_dir=document_dir,
            schema_version=schema_version,
            company_name=company_name,
            invoice_prefix=invoice_prefix,
            starting_invoice_number=starting_invoice_number,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """A default config/workbook bundle."""

    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def stocked_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context seeded with three products and one wholesale party."""

    for name, batch, stock, rate in (
        ("Paracetamol 500", "PCM01", 100, "10.00"),
        ("Ibuprofen 400", "IBU07", 40, "12.50"),
        ("Paravex Syrup", "PVX11", 5, "85.00"),
    ):
        core_logic.add_product(
            runtime_context,
            name=name,
            batch=batch,
            expiry=date(2030, 6, 30),
            hsn="3004",
            tax_rate=Decimal("12"),
            mrp=Decimal(rate) * 2,
            purchase_rate=Decimal(rate) / 2,
            sale_rate=Decimal(rate),
            stock=stock,
            manufacturer="Acme Pharma",
        )
    core_logic.add_party(
        runtime_context,
        name="City Medicals",
        category=constants.BillCategory.WHOLESALE,
        tax_id="27abcde1234f1z5",
        address="12 Market Road",
    )
    return runtime_context


# ---------------------------------------------------------------------------
# Core logic fixtures with a mocked data layer
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        company_name=DEFAULT_COMPANY_NAME,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        document_dir=tmp_path / "invoices",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch):
    """Patch core_logic.datetime.now to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


def make_product(product_id: int = 1, name: str = "Paracetamol 500", **overrides) -> data_manager.ProductRow:
    """Build a product row with sensible defaults."""

    values = dict(
        product_id=product_id,
        name=name,
        batch="B1",
        expiry=date(2030, 1, 31),
        hsn="3004",
        tax_rate=Decimal("12"),
        mrp=Decimal("20.00"),
        purchase_rate=Decimal("8.00"),
        sale_rate=Decimal("10.00"),
        stock=100,
        manufacturer="Acme Pharma",
    )
    values.update(overrides)
    return data_manager.ProductRow(**values)


@pytest.fixture
def product_factory() -> Callable[..., data_manager.ProductRow]:
    """Expose :func:`make_product` to tests."""

    return make_product


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pharma-ledger", description="Pharma ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
