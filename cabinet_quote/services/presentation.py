"""
Projection of one stored quote into the installer or client rendering model.

Both views read the same persisted figures. The client view is where cost
information is withheld: wholesale cost, unit costs, profit and the separate
installation/misc charges never reach it.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from cabinet_quote.errors import ValidationError
from cabinet_quote.models.common import to_money
from cabinet_quote.models.quote import PricingParameters, Quote, QuoteStatus
from cabinet_quote.models.settings import CompanyInfo
from cabinet_quote.services import pricing

ViewKind = Literal["installer", "client"]
VIEW_KINDS = ("installer", "client")

BELOW_COST_WARNING = "BELOW COST: this quote loses {loss} against wholesale cost."


def format_currency(amount) -> str:
    value = to_money(amount if amount is not None else 0)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_percent(rate) -> str:
    """0.0875 -> '8.75%'"""
    return f"{Decimal(str(rate or 0)) * 100:.2f}%"


class QuoteContext(BaseModel):
    """Header data resolved from the collaborators (customer, catalog, settings)."""
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    customer_address: Optional[str] = None
    customer_city_line: str = ""
    collection_name: str = ""
    style_name: str = ""
    company: CompanyInfo = Field(default_factory=CompanyInfo)


class ClientLine(BaseModel):
    item_code: str
    description: str
    room_name: Optional[str] = None
    quantity: int


class InstallerLine(BaseModel):
    item_code: str
    description: str
    room_name: Optional[str] = None
    quantity: int
    msrp: Decimal
    unit_cost: Decimal
    line_total: Decimal
    notes: Optional[str] = None


class _QuoteHeader(BaseModel):
    quote_number: str
    status: QuoteStatus
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    notes: Optional[str] = None
    context: QuoteContext = Field(default_factory=QuoteContext)


class ClientQuoteView(_QuoteHeader):
    view: Literal["client"] = "client"
    lines: List[ClientLine]
    display_msrp: Decimal
    display_savings: Decimal
    # cabinets, installation and misc in one figure
    package_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


class InstallerQuoteView(_QuoteHeader):
    view: Literal["installer"] = "installer"
    lines: List[InstallerLine]
    msrp_total: Decimal
    wholesale_cost: Decimal
    pricing_method: str
    client_cabinet_price: Decimal
    installation_fee: Decimal
    misc_expenses: Decimal
    client_subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    profit: Decimal
    margin_percent: Decimal
    is_below_cost: bool
    warning: Optional[str] = None


QuoteView = Union[ClientQuoteView, InstallerQuoteView]


def _pricing_label(quote: Quote) -> str:
    """Method label, or the cabinet price as it stands once item changes left it behind."""
    expected = pricing.compute_client_cabinet_price(quote.subtotal, PricingParameters(method=quote.pricing))
    if to_money(expected) == to_money(quote.client_cabinet_price):
        return quote.pricing.label()
    markup = pricing.compute_margin_percent(quote.client_cabinet_price - quote.subtotal, quote.subtotal)
    return f"Adjusted price, {to_money(markup).normalize():f}% over cost (set as {quote.pricing.label()})"


def _header(quote: Quote, context: Optional[QuoteContext], now: Optional[datetime]) -> dict:
    return dict(
        quote_number=quote.quote_number or "",
        status=quote.status,
        created_at=quote.created_at,
        expires_at=quote.expires_at,
        is_expired=quote.is_expired(now),
        notes=quote.notes,
        context=context or QuoteContext(),
    )


def client_view(quote: Quote, context: Optional[QuoteContext] = None, now: Optional[datetime] = None) -> ClientQuoteView:
    display_msrp = pricing.compute_display_msrp(
        quote.msrp_total, quote.installation_fee, quote.misc_expenses, quote.client_subtotal
    )
    return ClientQuoteView(
        **_header(quote, context, now),
        lines=[
            ClientLine(item_code=it.item_code, description=it.description, room_name=it.room_name, quantity=it.quantity)
            for it in quote.items
        ],
        display_msrp=to_money(display_msrp),
        display_savings=to_money(display_msrp - quote.client_subtotal),
        package_price=to_money(quote.client_subtotal),
        tax_rate=quote.tax_rate,
        tax_amount=to_money(quote.tax_amount),
        total=to_money(quote.total),
    )


def installer_view(quote: Quote, context: Optional[QuoteContext] = None, now: Optional[datetime] = None) -> InstallerQuoteView:
    profit = quote.profit
    return InstallerQuoteView(
        **_header(quote, context, now),
        lines=[
            InstallerLine(
                item_code=it.item_code,
                description=it.description,
                room_name=it.room_name,
                quantity=it.quantity,
                msrp=to_money(it.msrp if it.msrp is not None else it.unit_price),
                unit_cost=to_money(it.unit_price),
                line_total=to_money(it.line_total),
                notes=it.notes,
            )
            for it in quote.items
        ],
        msrp_total=to_money(quote.msrp_total),
        wholesale_cost=to_money(quote.subtotal),
        pricing_method=_pricing_label(quote),
        client_cabinet_price=to_money(quote.client_cabinet_price),
        installation_fee=to_money(quote.installation_fee),
        misc_expenses=to_money(quote.misc_expenses),
        client_subtotal=to_money(quote.client_subtotal),
        tax_rate=quote.tax_rate,
        tax_amount=to_money(quote.tax_amount),
        total=to_money(quote.total),
        profit=to_money(profit),
        margin_percent=to_money(pricing.compute_margin_percent(profit, quote.client_subtotal)),
        is_below_cost=quote.is_below_cost,
        warning=BELOW_COST_WARNING.format(loss=format_currency(-profit)) if quote.is_below_cost else None,
    )


def render_quote(
    quote: Quote,
    view: str,
    context: Optional[QuoteContext] = None,
    now: Optional[datetime] = None,
) -> QuoteView:
    if view == "client":
        return client_view(quote, context, now)
    if view == "installer":
        return installer_view(quote, context, now)
    raise ValidationError("Unknown view", [f"view: {view}"])
