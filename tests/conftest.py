from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from invoicing.services.company_service import CompanyService
from invoicing.services.customer_service import CustomerService
from invoicing.services.invoice_service import InvoiceService
from invoicing.services.numbering import NumberingService
from invoicing.services.product_service import ProductService
from invoicing.settings import Settings, load_settings

FIXED_DAY = date(2024, 3, 15)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "INVOICING_DATA_DIR",
        "INVOICING_EXPORTS_DIR",
        "INVOICING_NUMBERING_POLICY",
        "WKHTMLTOPDF",
        "WKHTMLTOPDF_CMD",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def settings(data_dir: Path) -> Settings:
    return load_settings(data_dir)


@pytest.fixture
def numbering(settings: Settings) -> NumberingService:
    return NumberingService(settings, clock=lambda: FIXED_DAY)


@pytest.fixture
def companies(settings: Settings) -> CompanyService:
    return CompanyService(settings)


@pytest.fixture
def customers(settings: Settings) -> CustomerService:
    return CustomerService(settings)


@pytest.fixture
def products(settings: Settings) -> ProductService:
    return ProductService(settings)


@pytest.fixture
def invoices(settings, numbering, companies, customers) -> InvoiceService:
    return InvoiceService(settings, numbering=numbering, companies=companies, customers=customers)
