from __future__ import annotations
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

NumberingPolicy = Literal["DAILY_RESET", "MONOTONIC"]
NUMBERING_POLICIES = ("DAILY_RESET", "MONOTONIC")


class InvoiceNumberSequence(BaseModel):
    model_config = ConfigDict(extra="ignore")

    owner_id: Optional[str] = None
    last_issued_date: Optional[date] = None
    # not constrained here: a negative counter must reach next_invoice_number
    # and fail there as corrupt state
    counter: int = 0
    version: int = 0
