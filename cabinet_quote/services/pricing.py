"""
Pricing engine: pure arithmetic over already validated line items.

Nothing here rounds or raises. Rounding to currency precision happens where a
quote is persisted or displayed.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from cabinet_quote.models.quote import FixedPrice, Markup, PricingParameters

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# market-rate estimate for installation and misc work shown to the client
MARKET_FEE_MULTIPLIER = Decimal("1.5")
# the client always sees at least this ratio between retail value and price
MIN_DISPLAY_MSRP_RATIO = Decimal("1.15")


class PricedLine(Protocol):
    unit_price: Decimal
    quantity: int
    msrp: Optional[Decimal]


@dataclass(frozen=True)
class Totals:
    client_subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class Profit:
    amount: Decimal
    is_below_cost: bool


@dataclass(frozen=True)
class PricingResult:
    wholesale_cost: Decimal
    msrp_total: Decimal
    client_cabinet_price: Decimal
    installation_fee: Decimal
    misc_expenses: Decimal
    tax_rate: Decimal
    client_subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    profit: Decimal
    is_below_cost: bool
    display_msrp: Decimal


def _dec(v) -> Decimal:
    return v if isinstance(v, Decimal) else Decimal(str(v))


def compute_wholesale_cost(items: Iterable[PricedLine]) -> Decimal:
    return sum((_dec(it.unit_price) * it.quantity for it in items), ZERO)


def compute_msrp_total(items: Iterable[PricedLine]) -> Decimal:
    # no msrp on a line -> its cost stands in, so that line shows no saving
    total = ZERO
    for it in items:
        msrp = it.msrp if it.msrp is not None else it.unit_price
        total += _dec(msrp) * it.quantity
    return total


def compute_client_cabinet_price(wholesale_cost: Decimal, params: PricingParameters) -> Decimal:
    """Markup over wholesale, or the fixed amount as given (may be below cost)."""
    method = params.method
    if isinstance(method, Markup):
        return _dec(wholesale_cost) * (1 + _dec(method.percent) / HUNDRED)
    if isinstance(method, FixedPrice):
        return _dec(method.amount)
    raise TypeError(f"Unknown pricing method {method!r}")


def compute_totals(
    client_cabinet_price: Decimal,
    installation_fee: Decimal,
    misc_expenses: Decimal,
    tax_rate: Decimal,
) -> Totals:
    # tax is on what the client pays, never on wholesale cost
    client_subtotal = _dec(client_cabinet_price) + _dec(installation_fee) + _dec(misc_expenses)
    tax_amount = client_subtotal * _dec(tax_rate)
    return Totals(client_subtotal=client_subtotal, tax_amount=tax_amount, total=client_subtotal + tax_amount)


def compute_profit(client_subtotal: Decimal, wholesale_cost: Decimal) -> Profit:
    amount = _dec(client_subtotal) - _dec(wholesale_cost)
    return Profit(amount=amount, is_below_cost=amount < 0)


def compute_margin_percent(profit: Decimal, client_subtotal: Decimal) -> Decimal:
    client_subtotal = _dec(client_subtotal)
    if client_subtotal == 0:
        return ZERO
    return _dec(profit) / client_subtotal * HUNDRED


def compute_display_msrp(
    msrp_total: Decimal,
    installation_fee: Decimal,
    misc_expenses: Decimal,
    client_subtotal: Decimal,
) -> Decimal:
    """
    Retail value shown to the client.

    Installation and misc are valued at a market-rate estimate, and the result
    is floored at 115 % of the client subtotal, so a positive saving is shown
    even on thin-margin or below-cost quotes.
    """
    market_value = _dec(msrp_total) + (_dec(installation_fee) + _dec(misc_expenses)) * MARKET_FEE_MULTIPLIER
    floor = _dec(client_subtotal) * MIN_DISPLAY_MSRP_RATIO
    return max(market_value, floor)


def price_quote(items: Iterable[PricedLine], params: PricingParameters, tax_rate: Decimal) -> PricingResult:
    """Run every computation for one set of lines; `tax_rate` is already resolved."""
    items = list(items)
    wholesale = compute_wholesale_cost(items)
    msrp_total = compute_msrp_total(items)
    cabinet_price = compute_client_cabinet_price(wholesale, params)
    totals = compute_totals(cabinet_price, params.installation_fee, params.misc_expenses, tax_rate)
    profit = compute_profit(totals.client_subtotal, wholesale)
    return PricingResult(
        wholesale_cost=wholesale,
        msrp_total=msrp_total,
        client_cabinet_price=cabinet_price,
        installation_fee=_dec(params.installation_fee),
        misc_expenses=_dec(params.misc_expenses),
        tax_rate=_dec(tax_rate),
        client_subtotal=totals.client_subtotal,
        tax_amount=totals.tax_amount,
        total=totals.total,
        profit=profit.amount,
        is_below_cost=profit.is_below_cost,
        display_msrp=compute_display_msrp(
            msrp_total, params.installation_fee, params.misc_expenses, totals.client_subtotal
        ),
    )
