from __future__ import annotations
from decimal import Decimal
from typing import Optional

from pydantic import Field

from .common import OwnedDocument


class Product(OwnedDocument):
    name: str = Field(min_length=3, max_length=30)
    description: Optional[str] = None
    quantity: Decimal  # stock on hand
    price: Decimal = Field(ge=0)
