from __future__ import annotations
from typing import Any, Optional

from pydantic import EmailStr, Field, field_validator

from .common import OwnedDocument


class Party(OwnedDocument):
    """Fields shared by the issuing company and its customers."""

    name: str = Field(min_length=3, max_length=30)
    phone: str = Field(min_length=1)
    email: EmailStr
    address: Optional[str] = Field(default=None, min_length=3, max_length=300)

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("address", mode="before")
    @classmethod
    def _blank_address(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Company(Party):
    # stored file reference, upload handling lives outside this package
    logo: Optional[str] = None


class Customer(Party):
    pass
