from __future__ import annotations
from pydantic import BaseModel, Field, model_validator
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from decimal import Decimal
from .common import gen_id, utcnow

QuoteStatus = Literal["DRAFT", "SENT", "APPROVED", "REJECTED"]
QUOTE_STATUSES = ("DRAFT", "SENT", "APPROVED", "REJECTED")

ZERO = Decimal("0")


# ---------- Pricing method (exactly one active) ---------- #

class Markup(BaseModel):
    kind: Literal["markup"] = "markup"
    percent: Decimal = Field(default=ZERO, ge=0)

    def label(self) -> str:
        return f"Markup {self.percent.normalize():f}%"


class FixedPrice(BaseModel):
    kind: Literal["fixed"] = "fixed"
    amount: Decimal = Field(ge=0)

    def label(self) -> str:
        return "Fixed client price"


PricingMethod = Annotated[Union[Markup, FixedPrice], Field(discriminator="kind")]


class PricingParameters(BaseModel):
    method: PricingMethod = Field(default_factory=Markup)
    # None -> default from settings
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    installation_fee: Decimal = Field(default=ZERO, ge=0)
    misc_expenses: Decimal = Field(default=ZERO, ge=0)


# ---------- Lines ---------- #

class LineItemInput(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    # override of the catalog price
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    room_name: Optional[str] = None
    notes: Optional[str] = None


class QuoteItem(BaseModel):
    id: str = Field(default_factory=gen_id)
    product_id: str
    item_code: str = ""
    description: str = ""
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    msrp: Optional[Decimal] = Field(default=None, ge=0)
    line_total: Decimal = ZERO  # always unit_price * quantity
    room_name: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _recompute_line_total(self):
        self.line_total = self.unit_price * self.quantity
        return self


# ---------- Snapshot ---------- #

class Quote(BaseModel):
    id: str = Field(default_factory=gen_id)
    quote_number: Optional[str] = None
    customer_id: str
    collection_id: str
    style_id: str
    status: QuoteStatus = "DRAFT"

    items: List[QuoteItem] = Field(default_factory=list)
    pricing: PricingMethod = Field(default_factory=Markup)

    subtotal: Decimal = ZERO  # wholesale
    msrp_total: Decimal = ZERO
    client_cabinet_price: Decimal = ZERO
    installation_fee: Decimal = ZERO
    misc_expenses: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO

    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    # helpers
    @property
    def client_subtotal(self) -> Decimal:
        return self.client_cabinet_price + self.installation_fee + self.misc_expenses

    @property
    def profit(self) -> Decimal:
        return self.client_subtotal - self.subtotal

    @property
    def is_below_cost(self) -> bool:
        return self.profit < 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    class Config:
        extra = "ignore"  # tolerates older keys in the JSON file


class QuotePage(BaseModel):
    quotes: List[Quote]
    total: int
    page: int
    limit: int
    total_pages: int
