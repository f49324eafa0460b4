"""Runtime settings.

Values come from ``<data_dir>/settings.json`` (same layout the desktop ERP
used: ``numbering``, ``company``, ``pdf`` blocks) and can be overridden by
environment variables:

- ``INVOICING_DATA_DIR``: where the JSON collections live
- ``INVOICING_EXPORTS_DIR``: where PDFs are written
- ``INVOICING_NUMBERING_POLICY``: ``MONOTONIC`` or ``DAILY_RESET``
- ``WKHTMLTOPDF`` / ``WKHTMLTOPDF_CMD``: path to the wkhtmltopdf binary
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from invoicing.errors import ValidationFailedError
from invoicing.models.numbering import NumberingPolicy

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[1]
PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_DIR / "templates" / "pdf"
DEFAULT_DATA_DIR = ROOT_DIR / "data"


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None
    exports_dir: Optional[Path] = None


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    numbering_policy: NumberingPolicy = "MONOTONIC"
    currency: str = "$"
    backup_keep: int = Field(default=5, ge=0)
    pdf: PdfSettings = Field(default_factory=PdfSettings)
    templates_dir: Path = TEMPLATES_DIR

    @property
    def exports_dir(self) -> Path:
        return self.pdf.exports_dir or (self.data_dir.parent / "exports")


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(data_dir: Optional[str | Path] = None) -> Settings:
    base = Path(data_dir or os.environ.get("INVOICING_DATA_DIR") or DEFAULT_DATA_DIR)
    raw = _load_json(base / "settings.json")

    numbering = raw.get("numbering") if isinstance(raw.get("numbering"), dict) else {}
    pdf_conf = raw.get("pdf") if isinstance(raw.get("pdf"), dict) else {}

    values: Dict[str, Any] = {"data_dir": base}
    policy = os.environ.get("INVOICING_NUMBERING_POLICY") or numbering.get("policy")
    if policy:
        values["numbering_policy"] = str(policy).strip().upper()
    if raw.get("currency"):
        values["currency"] = raw["currency"]
    if raw.get("backup_keep") is not None:
        values["backup_keep"] = raw["backup_keep"]

    pdf: Dict[str, Any] = {}
    wk = os.environ.get("WKHTMLTOPDF") or os.environ.get("WKHTMLTOPDF_CMD") or pdf_conf.get("wkhtmltopdf_path")
    if wk:
        pdf["wkhtmltopdf_path"] = wk
    exports = os.environ.get("INVOICING_EXPORTS_DIR") or pdf_conf.get("exports_dir")
    if exports:
        pdf["exports_dir"] = exports
    values["pdf"] = pdf

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ValidationFailedError(f"Invalid settings in {base}", errors=e.errors()) from e
