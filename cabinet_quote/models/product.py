from __future__ import annotations
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from .common import gen_id


class Collection(BaseModel):
    id: str = Field(default_factory=gen_id)
    name: str
    description: Optional[str] = None


class Style(BaseModel):
    id: str = Field(default_factory=gen_id)
    collection_id: str
    code: str
    name: str
    description: Optional[str] = None


class Product(BaseModel):
    id: str = Field(default_factory=gen_id)
    collection_id: Optional[str] = None
    item_code: str
    description: str = ""
    category: str = ""
    width: Optional[float] = None
    height: Optional[float] = None
    depth: Optional[float] = None
    doors: Optional[str] = None
    # wholesale unit cost
    price: Decimal = Field(default=Decimal("0"), ge=0)
    # retail reference, only used for savings framing
    msrp: Optional[Decimal] = Field(default=None, ge=0)
    active: bool = True
