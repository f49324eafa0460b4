from __future__ import annotations
from typing import Any, Dict, List, Optional


class InvoicingError(Exception):
    """Base error. ``status_code`` is what the REST layer answers with."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class NotFoundError(InvoicingError, KeyError):
    status_code = 404


class ValidationFailedError(InvoicingError, ValueError):
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidInvoiceNumberError(ValidationFailedError):
    def __init__(self, message: str = "Invalid invoice number format"):
        super().__init__(message)


class DuplicateInvoiceNumberError(InvoicingError):
    status_code = 409

    def __init__(self, invoice_number: str):
        super().__init__("Invoice number already exists")
        self.invoice_number = invoice_number


class SequenceStateError(InvoicingError, RuntimeError):
    """Corrupt numbering state; a bug, not a user error."""


class SequenceExhaustedError(SequenceStateError):
    pass


class PdfExportError(InvoicingError, RuntimeError):
    pass
