from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from cabinet_quote.models.customer import Customer
from cabinet_quote.models.product import Collection, Product, Style
from cabinet_quote.models.quote import LineItemInput, Markup, PricingParameters
from cabinet_quote.services.catalog_service import CatalogService
from cabinet_quote.services.customer_service import CustomerService
from cabinet_quote.services.quote_service import QuoteService
from cabinet_quote.services.settings_service import SettingsService


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now):
    return Clock(fixed_now)


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def catalog(data_dir):
    return CatalogService(data_dir=data_dir)


@pytest.fixture
def customers(data_dir):
    return CustomerService(data_dir=data_dir)


@pytest.fixture
def settings_service(data_dir):
    return SettingsService(data_dir=data_dir)


@pytest.fixture
def seeded(catalog, customers):
    collection = catalog.add_collection(Collection(name="Shaker Classic"))
    style = catalog.add_style(Style(collection_id=collection.id, code="SW", name="Shaker White"))
    base = catalog.add_product(Product(
        collection_id=collection.id, item_code="B24", description="Base cabinet 24in",
        category="Base", price=Decimal("250.00"), msrp=Decimal("400.00"),
    ))
    wall = catalog.add_product(Product(
        collection_id=collection.id, item_code="W3030", description="Wall cabinet 30x30",
        category="Wall", price=Decimal("125.00"),
    ))
    filler = catalog.add_product(Product(
        collection_id=collection.id, item_code="F3", description="Filler 3in",
        category="Accessory", price=Decimal("19.99"), msrp=Decimal("35.00"),
    ))
    customer = customers.add_customer(Customer(
        first_name="Dana", last_name="Reyes", email="dana.reyes@example.com",
        phone="555-0101", address="12 Elm St", city="Springfield", state="IL", zip_code="62701",
    ))
    return SimpleNamespace(
        collection=collection, style=style, base=base, wall=wall, filler=filler, customer=customer,
    )


@pytest.fixture
def quotes(data_dir, catalog, customers, settings_service, clock):
    return QuoteService(
        data_dir=data_dir, catalog=catalog, customers=customers, settings=settings_service, clock=clock,
    )


@pytest.fixture
def markup_params():
    """wholesale 1000 (4 x B24), markup 40 %, installation 200, misc 50, tax 8.75 %"""
    return PricingParameters(
        method=Markup(percent=Decimal("40")),
        tax_rate=Decimal("0.0875"),
        installation_fee=Decimal("200"),
        misc_expenses=Decimal("50"),
    )


@pytest.fixture
def make_quote(quotes, seeded, markup_params):
    def _make(items=None, params=markup_params, **kwargs):
        items = items if items is not None else [LineItemInput(product_id=seeded.base.id, quantity=4)]
        return quotes.create_quote(
            seeded.customer.id, seeded.collection.id, seeded.style.id, items, params, **kwargs,
        )
    return _make
