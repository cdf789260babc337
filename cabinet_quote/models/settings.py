from __future__ import annotations
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


class CompanyInfo(BaseModel):
    name: str = "Cabinet Quoting Company"
    email: str = "info@cabinetquoting.com"
    phone: str = "(555) 123-4567"
    address: Optional[str] = None


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None


class QuoteSettings(BaseModel):
    """Global defaults, read once per quote creation and passed in explicitly."""
    tax_rate: Decimal = Field(default=Decimal("0.0875"), ge=0)
    quote_validity_days: int = Field(default=30, ge=0)
    company: CompanyInfo = Field(default_factory=CompanyInfo)
    pdf: PdfSettings = Field(default_factory=PdfSettings)

    class Config:
        extra = "ignore"
