from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, computed_field

CENT = Decimal("0.01")


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    total_allotment_cents: int = Field(default=0, ge=0)
    credential_ref: Optional[str] = Field(default=None, max_length=64)


class CategoryIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    allotment_cents: int = Field(default=0, ge=0)


class ChargeIn(BaseModel):
    category_id: str
    description: str = Field(default="", max_length=200)
    amount_cents: int = Field(..., ge=0)
    date: date


class UserOut(BaseModel):
    id: str
    credential_ref: Optional[str]
    name: str
    total_amount_cents: int
    total_allotment_cents: int

    @computed_field
    @property
    def total_amount(self) -> Decimal:
        return cents_to_decimal(self.total_amount_cents)

    @computed_field
    @property
    def total_allotment(self) -> Decimal:
        return cents_to_decimal(self.total_allotment_cents)


class CategoryOut(BaseModel):
    id: str
    user_id: str
    title: str
    allotment_cents: int
    amount_cents: int

    @computed_field
    @property
    def allotment(self) -> Decimal:
        return cents_to_decimal(self.allotment_cents)

    @computed_field
    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)


class ChargeOut(BaseModel):
    id: str
    user_id: str
    category_id: str
    description: str
    amount_cents: int
    date: date

    @computed_field
    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)


class Summary(BaseModel):
    """Snapshot returned by one recompute: the user with every category and charge."""

    user: UserOut
    categories: list[CategoryOut]
    charges: list[ChargeOut]


class TokenIn(BaseModel):
    subject: str = Field(..., min_length=1, max_length=64)
