from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .common import OwnedDocument

InvoiceType = Literal["complete", "quick"]

CENT = Decimal("0.01")
ZERO = Decimal("0")


class LineItem(BaseModel):
    product_id: Optional[str] = None
    name: str = Field(min_length=1)
    description: Optional[str] = ""
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(ge=0)


class InvoiceTotals(BaseModel):
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    subtotal_after_discount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO

    def rounded(self) -> "InvoiceTotals":
        """Copy with every amount rounded to cents, for display only."""
        return InvoiceTotals(**{
            k: v.quantize(CENT, rounding=ROUND_HALF_UP) for k, v in self
        })


class Invoice(OwnedDocument):
    invoice_number: str
    company_id: Optional[str] = None
    customer_id: Optional[str] = None
    type: InvoiceType = "complete"
    description: Optional[str] = Field(default=None, min_length=3, max_length=1000)

    items: List[LineItem] = Field(default_factory=list)
    discount_percent: Decimal = Field(default=ZERO, ge=0, le=100)
    tax_percent: Decimal = Field(default=ZERO, ge=0, le=100)
    # always recomputed by InvoiceService, never read from the payload
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)

    notes: Optional[str] = Field(default=None, min_length=3, max_length=1000)
    privacy: Optional[str] = Field(default=None, min_length=3, max_length=1000)
