# invoicing/services/invoice_service.py
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Any, Dict, List, Mapping, Optional

import pdfkit
from jinja2 import Environment, FileSystemLoader, select_autoescape

from invoicing.errors import (
    DuplicateInvoiceNumberError,
    InvoicingError,
    NotFoundError,
    PdfExportError,
)
from invoicing.models.common import utcnow
from invoicing.models.invoice import Invoice, LineItem
from invoicing.models.numbering import InvoiceNumberSequence
from invoicing.models.product import Product
from invoicing.services.calculator import clamp_percent, compute_totals, format_amount, line_total
from invoicing.services.common import build, hydrate, merge
from invoicing.services.company_service import CompanyService
from invoicing.services.customer_service import CustomerService
from invoicing.services.numbering import (
    NumberingService,
    invoice_number_suffix,
    is_valid_invoice_number,
    next_invoice_number,
    validate_invoice_number,
)
from invoicing.settings import Settings, load_settings
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)

# derived amounts a client may send along; never trusted
CLIENT_TOTAL_KEYS = ("total", "subtotal", "discountAmount", "discount_amount",
                     "taxAmount", "tax_amount", "subtotal_after_discount", "totals")
PERCENT_ALIASES = {"discount_percent": "discount", "tax_percent": "tax"}
MAX_ISSUE_ATTEMPTS = 1000


# ---------- Formats ----------
_UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def _filename_part(text: Optional[str], fallback: str) -> str:
    """Make ``text`` usable inside a file name; ``fallback`` when nothing is left."""
    cleaned = " ".join(_UNSAFE_FILENAME_RE.sub("_", text or "").split())
    return cleaned or fallback


def _normalize_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Map form/API keys onto the model and strip what is recomputed."""
    out = dict(payload)
    sent = [k for k in CLIENT_TOTAL_KEYS if k in out]
    if sent:
        logger.debug("Ignoring client supplied totals: %s", ", ".join(sent))
    for k in sent:
        out.pop(k)

    for field, alias in PERCENT_ALIASES.items():
        if field not in out and alias in out:
            out[field] = out.pop(alias)
        else:
            out.pop(alias, None)
        if field in out:
            out[field] = clamp_percent(out[field])

    if "user_id" in out:
        out.pop("user_id")
    if "items" in out:
        out["items"] = [
            it.model_dump() if isinstance(it, LineItem) else dict(it)
            for it in (out.get("items") or [])
            if str((it.name if isinstance(it, LineItem) else it.get("name")) or "").strip()
        ]
    for k in ("description", "notes", "privacy"):
        if isinstance(out.get(k), str) and not out[k].strip():
            out[k] = None
    return out


# ---------- PDF helpers ----------
def _clean_path(p: str) -> str:
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    return os.path.normpath(p)


def _find_wkhtmltopdf(configured: Optional[str] = None) -> Optional[str]:
    """Configured path first, then the usual Windows install dirs, then PATH."""
    if configured:
        path = _clean_path(configured)
        if Path(path).is_file():
            return path
        logger.warning("Configured wkhtmltopdf not found: %s", path)

    for env in ("ProgramFiles", "ProgramFiles(x86)"):
        base = os.environ.get(env)
        if base:
            candidate = Path(base) / "wkhtmltopdf" / "bin" / "wkhtmltopdf.exe"
            if candidate.is_file():
                return str(candidate)

    found = which("wkhtmltopdf")
    return _clean_path(found) if found else None


def _render_pdf_with_weasyprint(html: str, out_path: Path, stylesheet: Path, base_url: str) -> None:
    try:
        from weasyprint import CSS, HTML
    except (ImportError, OSError) as e:
        raise PdfExportError(
            "No wkhtmltopdf found and WeasyPrint is unusable. "
            "Install wkhtmltopdf or WeasyPrint's system libraries."
        ) from e

    styles = [CSS(filename=str(stylesheet))] if stylesheet.exists() else None
    HTML(string=html, base_url=base_url).write_pdf(str(out_path), stylesheets=styles)


# ---------- Service ----------
class InvoiceService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        numbering: Optional[NumberingService] = None,
        companies: Optional[CompanyService] = None,
        customers: Optional[CustomerService] = None,
    ):
        self.settings = settings or load_settings()
        self.repo = JsonRepository(
            Path(self.settings.data_dir) / "invoices.json",
            entity_name="invoice",
            key="id",
            backup_keep=self.settings.backup_keep,
        )
        self.numbering = numbering or NumberingService(self.settings)
        self.companies = companies or CompanyService(self.settings)
        self.customers = customers or CustomerService(self.settings)

    # ----------- queries -----------
    def list_invoices(self, owner_id: str) -> List[Invoice]:
        rows = self.repo.find(lambda d: d.get("owner_id") == owner_id)
        return sorted(hydrate(Invoice, rows), key=lambda inv: inv.created_at, reverse=True)

    def get_invoice(self, invoice_id: str) -> Invoice:
        row = self.repo.get_by_id(invoice_id)
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return Invoice.model_validate(row)

    def _find_by_number(self, owner_id: str, invoice_number: str) -> Optional[Dict[str, Any]]:
        return self.repo.find_one(
            lambda d: d.get("owner_id") == owner_id and d.get("invoice_number") == invoice_number
        )

    def invoice_exists(self, owner_id: str, invoice_number: str) -> bool:
        return self._find_by_number(owner_id, invoice_number) is not None

    # ----------- numbering -----------
    def _numbering_floor(self, owner_id: str) -> int:
        """Highest ``#NNN`` already stored for the owner (imported invoices)."""
        highest = 0
        for d in self.repo.find(lambda x: x.get("owner_id") == owner_id):
            num = d.get("invoice_number")
            if is_valid_invoice_number(num) and num.startswith("#"):
                highest = max(highest, int(invoice_number_suffix(num)))
        return highest

    def next_invoice_number(self, owner_id: str) -> str:
        """Preview of the number the next ``create_invoice`` would get."""
        if self.numbering.get_sequence(owner_id) is None and self.numbering.policy == "MONOTONIC":
            seq = InvoiceNumberSequence(owner_id=owner_id, counter=self._numbering_floor(owner_id))
            number, _ = next_invoice_number(seq, "MONOTONIC", self.numbering.clock())
            return number
        return self.numbering.peek(owner_id)

    def _issue_number(self, owner_id: str) -> str:
        if self.numbering.get_sequence(owner_id) is None and self.numbering.policy == "MONOTONIC":
            self.numbering.seed(owner_id, self._numbering_floor(owner_id))
        for _ in range(MAX_ISSUE_ATTEMPTS):
            number = self.numbering.issue(owner_id)
            if not self.invoice_exists(owner_id, number):
                return number
            logger.warning("Issued number %s already used by owner %s, skipping", number, owner_id)
        raise InvoicingError(f"Could not find a free invoice number for owner {owner_id}")

    # ----------- CRUD -----------
    def create_invoice(self, owner_id: str, payload: Mapping[str, Any]) -> Invoice:
        data = _normalize_payload(payload)
        data["owner_id"] = owner_id
        data.pop("id", None)

        with self.repo.lock:
            number = data.get("invoice_number")
            if number:
                validate_invoice_number(number)
                if self.invoice_exists(owner_id, number):
                    raise DuplicateInvoiceNumberError(number)

            inv = build(Invoice, {**data, "invoice_number": number or ""}, "invoice")
            if not number:
                # only a payload that validated consumes a sequence number
                inv.invoice_number = self._issue_number(owner_id)
            inv.totals = compute_totals(inv.items, inv.discount_percent, inv.tax_percent)
            self.repo.add(inv)

        logger.info("Invoice %s created for owner %s (total %s)",
                    inv.invoice_number, owner_id, format_amount(inv.totals.total))
        return inv

    def update_invoice(self, invoice_id: str, changes: Mapping[str, Any]) -> Invoice:
        data = _normalize_payload(changes)
        with self.repo.lock:
            current = self.get_invoice(invoice_id)
            number = data.get("invoice_number")
            if number is not None and number != current.invoice_number:
                validate_invoice_number(number)
                if self.invoice_exists(current.owner_id, number):
                    raise DuplicateInvoiceNumberError(number)

            inv = build(Invoice, {**merge(current, data), "updated_at": utcnow()}, "invoice")
            inv.totals = compute_totals(inv.items, inv.discount_percent, inv.tax_percent)
            self.repo.update(inv)
        logger.info("Invoice %s updated", inv.invoice_number)
        return inv

    def delete_invoice(self, invoice_id: str) -> Invoice:
        inv = self.get_invoice(invoice_id)
        self.repo.delete(invoice_id)
        logger.info("Invoice %s deleted", inv.invoice_number)
        return inv

    @staticmethod
    def line_from_product(product: Product, quantity: Any = 1) -> LineItem:
        return LineItem(
            product_id=product.id,
            name=product.name,
            description=product.description or "",
            quantity=quantity,
            price=product.price,
        )

    # ----------- parties ----------
    def _party(self, lookup, *args) -> Dict[str, Any]:
        try:
            p = lookup(*args)
        except NotFoundError:
            return {}
        return p.model_dump(include={"name", "email", "phone", "address", "logo"})

    # ----------- PDF export ----------
    def render_invoice_html(self, inv: Invoice) -> str:
        env = Environment(
            loader=FileSystemLoader(str(self.settings.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        tpl = env.get_template("invoice.html")
        cur = self.settings.currency
        totals = inv.totals.rounded()

        ctx = {
            "invoice": {
                "number": inv.invoice_number,
                "type": inv.type,
                "date": inv.created_at.strftime("%Y-%m-%d"),
                "description": inv.description,
                "lines": [
                    {
                        "name": ln.name,
                        "description": ln.description,
                        "quantity": f"{ln.quantity.normalize():f}",
                        "price": format_amount(ln.price, cur),
                        "total": format_amount(line_total(ln), cur),
                    } for ln in inv.items
                ],
                "discount_percent": f"{inv.discount_percent.normalize():f}",
                "tax_percent": f"{inv.tax_percent.normalize():f}",
                "subtotal": format_amount(totals.subtotal, cur),
                "discount_amount": format_amount(totals.discount_amount, cur),
                "tax_amount": format_amount(totals.tax_amount, cur),
                "total": format_amount(totals.total, cur),
                "has_discount": inv.discount_percent > 0,
                "has_tax": inv.tax_percent > 0,
                "notes": inv.notes,
                "privacy": inv.privacy,
            },
            "company": self._party(self.companies.get_company, inv.owner_id),
            "customer": self._party(self.customers.get_customer, inv.customer_id) if inv.customer_id else {},
        }
        return tpl.render(**ctx)

    def export_invoice_pdf(self, inv: Invoice, out_dir: Optional[str | Path] = None) -> str:
        """
        Write the invoice PDF and return its path.
        wkhtmltopdf (pdfkit) first, WeasyPrint as fallback.
        """
        html = self.render_invoice_html(inv)

        exports_dir = Path(out_dir) if out_dir else (self.settings.exports_dir / "invoices")
        exports_dir.mkdir(parents=True, exist_ok=True)

        customer = self._party(self.customers.get_customer, inv.customer_id) if inv.customer_id else {}
        filename = (
            f"{inv.created_at:%Y%m%d}-{invoice_number_suffix(inv.invoice_number)} "
            f"({_filename_part(customer.get('name'), fallback='no customer')}).pdf"
        )
        out_path = exports_dir / filename
        templates_dir = Path(self.settings.templates_dir)
        stylesheet = templates_dir / "stylesheet.css"

        wkhtml = _find_wkhtmltopdf(self.settings.pdf.wkhtmltopdf_path)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"enable-local-file-access": None, "quiet": "", "encoding": "UTF-8"}
                css = str(stylesheet.resolve()) if stylesheet.exists() else None
                pdfkit.from_string(html, str(out_path), options=options, configuration=config, css=css)
                logger.info("Invoice %s exported to %s", inv.invoice_number, out_path)
                return str(out_path)
            except (IOError, OSError) as e:
                logger.warning("wkhtmltopdf failed (%s), falling back to WeasyPrint", e)

        _render_pdf_with_weasyprint(html, out_path, stylesheet, base_url=str(templates_dir.resolve()))
        logger.info("Invoice %s exported to %s", inv.invoice_number, out_path)
        return str(out_path)
