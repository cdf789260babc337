from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from cabinet_quote.errors import ConflictError, NotFoundError, ValidationError
from cabinet_quote.models.common import gen_id, to_money, utcnow
from cabinet_quote.models.quote import (
    QUOTE_STATUSES,
    LineItemInput,
    PricingParameters,
    Quote,
    QuoteItem,
    QuotePage,
)
from cabinet_quote.models.settings import QuoteSettings
from cabinet_quote.services import pricing
from cabinet_quote.services.catalog_service import CatalogService
from cabinet_quote.services.customer_service import CustomerService
from cabinet_quote.services.settings_service import SettingsService
from cabinet_quote.storage.json_repo import JsonRepository

log = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"

# retries of the numbered insert before a collision is surfaced
MAX_NUMBER_ATTEMPTS = 25


# ---------- Helpers ---------- #

def _parse_items(items: Iterable[LineItemInput | Dict[str, Any]]) -> List[LineItemInput]:
    out: List[LineItemInput] = []
    for i, it in enumerate(items):
        if isinstance(it, LineItemInput):
            out.append(it)
            continue
        try:
            out.append(LineItemInput.model_validate(it))
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(f"Invalid item #{i + 1}", e) from e
    return out


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are UTC-aware; a naive bound is read as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_params(params: PricingParameters | Dict[str, Any] | None) -> PricingParameters:
    if params is None:
        return PricingParameters()
    if isinstance(params, PricingParameters):
        return params
    try:
        return PricingParameters.model_validate(params)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic("Invalid pricing parameters", e) from e


# ---------- Service ---------- #

class QuoteService:
    """
    Quote lifecycle: creation, numbering, item changes with recalculation,
    status changes, duplication and deletion.

    Computed figures are frozen on the stored quote at save time; reading a
    quote never re-prices it.
    """

    def __init__(
        self,
        data_dir: Optional[str | Path] = None,
        catalog: Optional[CatalogService] = None,
        customers: Optional[CustomerService] = None,
        settings: Optional[SettingsService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        base = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        base.mkdir(parents=True, exist_ok=True)
        self.repo = JsonRepository(base / "quotes.json", entity_name="quote", key="id")
        self.catalog = catalog or CatalogService(data_dir=base)
        self.customers = customers or CustomerService(data_dir=base)
        self.settings = settings or SettingsService(data_dir=base)
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    # ----- Lines ----- #

    def _build_items(self, inputs: List[LineItemInput]) -> List[QuoteItem]:
        """Resolve products and snapshot their price, msrp and labels onto the lines."""
        missing: List[str] = []
        out: List[QuoteItem] = []
        for inp in inputs:
            product = self.catalog.get_product(inp.product_id)
            if product is None:
                missing.append(f"product_id: {inp.product_id}")
                continue
            unit_price = inp.unit_price if inp.unit_price is not None else product.price
            out.append(QuoteItem(
                product_id=product.id,
                item_code=product.item_code,
                description=product.description,
                quantity=inp.quantity,
                unit_price=unit_price,
                msrp=product.msrp,
                room_name=inp.room_name,
                notes=inp.notes,
            ))
        if missing:
            raise ValidationError("Unknown product", missing)
        return out

    def _check_references(self, customer_id: str, collection_id: str, style_id: str) -> None:
        problems: List[str] = []
        if not customer_id or self.customers.get_by_id(customer_id) is None:
            problems.append(f"customer_id: {customer_id}")
        if not collection_id or self.catalog.get_collection(collection_id) is None:
            problems.append(f"collection_id: {collection_id}")
        if not style_id or self.catalog.get_style(style_id) is None:
            problems.append(f"style_id: {style_id}")
        if problems:
            raise ValidationError("Unknown reference", problems)

    # ----- Pricing / snapshot ----- #

    @staticmethod
    def _freeze_totals(quote: Quote) -> None:
        """Derive tax and total from the stored charges; everything is at currency precision."""
        totals = pricing.compute_totals(
            quote.client_cabinet_price, quote.installation_fee, quote.misc_expenses, quote.tax_rate
        )
        quote.tax_amount = to_money(totals.tax_amount)
        quote.total = totals.client_subtotal + quote.tax_amount

    def _reprice(self, quote: Quote, items: List[QuoteItem], params: Optional[PricingParameters]) -> None:
        """
        Refresh the figures that derive from items.

        Without params the cabinet price, fees and tax rate already on the
        quote are kept; with params the quote is priced from scratch.
        """
        quote.items = items
        if params is not None:
            tax_rate = params.tax_rate if params.tax_rate is not None else quote.tax_rate
            result = pricing.price_quote(items, params, tax_rate)
            quote.pricing = params.method
            quote.client_cabinet_price = to_money(result.client_cabinet_price)
            quote.installation_fee = to_money(result.installation_fee)
            quote.misc_expenses = to_money(result.misc_expenses)
            quote.tax_rate = result.tax_rate
        quote.subtotal = to_money(pricing.compute_wholesale_cost(items))
        quote.msrp_total = to_money(pricing.compute_msrp_total(items))
        self._freeze_totals(quote)
        log.debug(
            "Repriced quote %s: wholesale=%s client_subtotal=%s tax=%s total=%s",
            quote.quote_number or quote.id, quote.subtotal, quote.client_subtotal, quote.tax_amount, quote.total,
        )
        if quote.is_below_cost:
            log.warning(
                "Quote %s is priced below cost (client subtotal %s < wholesale %s)",
                quote.quote_number or quote.id, quote.client_subtotal, quote.subtotal,
            )

    # ----- Numbering ----- #

    def _next_quote_number(self) -> str:
        """Highest sequence used this year + 1, so gaps left by deletes are never reused."""
        year = self.now().year
        prefix = f"Q-{year}-"
        max_n = 0
        for d in self.repo.list_all():
            num = d.get("quote_number") or ""
            if not num.startswith(prefix):
                continue
            try:
                max_n = max(max_n, int(num[len(prefix):]))
            except ValueError:
                continue
        return f"{prefix}{max_n + 1:04d}"

    def _insert_numbered(self, quote: Quote) -> Quote:
        """Insert with a fresh number; a concurrent writer taking it first sends us back for the new maximum."""
        for _ in range(MAX_NUMBER_ATTEMPTS):
            quote.quote_number = self._next_quote_number()
            try:
                self.repo.add_unique(quote, unique=("quote_number",))
                return quote
            except ConflictError as e:
                if e.field != "quote_number":
                    raise
                log.warning("Quote number %s already taken, retrying", quote.quote_number)
        raise ConflictError("quote", "quote_number", quote.quote_number)

    # ----- Reads ----- #

    def _hydrate(self, d: Dict[str, Any]) -> Quote:
        return Quote.model_validate(d)

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        d = self.repo.get_by_id(quote_id)
        return self._hydrate(d) if d else None

    def require_quote(self, quote_id: str) -> Quote:
        q = self.get_quote(quote_id)
        if q is None:
            raise NotFoundError("quote", quote_id)
        return q

    def get_by_number(self, quote_number: str) -> Optional[Quote]:
        d = self.repo.find_one(lambda x: x.get("quote_number") == quote_number)
        return self._hydrate(d) if d else None

    def list_quotes(
        self,
        status: Optional[str] = None,
        customer_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> QuotePage:
        if page < 1 or limit < 1:
            raise ValidationError("Invalid pagination", [f"page={page}", f"limit={limit}"])
        start, end = _as_utc(start), _as_utc(end)
        needle = (search or "").strip().casefold()
        quotes: List[Quote] = []
        for q in (self._hydrate(d) for d in self.repo.list_all()):
            if status and q.status != status:
                continue
            if customer_id and q.customer_id != customer_id:
                continue
            if start and q.created_at < start:
                continue
            if end and q.created_at > end:
                continue
            if needle and needle not in (q.quote_number or "").casefold():
                continue
            quotes.append(q)
        quotes.sort(key=lambda q: q.created_at, reverse=True)
        total = len(quotes)
        skip = (page - 1) * limit
        return QuotePage(
            quotes=quotes[skip: skip + limit],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def list_by_customer(self, customer_id: str) -> List[Quote]:
        rows = self.repo.find(lambda d: d.get("customer_id") == customer_id)
        return sorted((self._hydrate(d) for d in rows), key=lambda q: q.created_at, reverse=True)

    # ----- Writes ----- #

    def create_quote(
        self,
        customer_id: str,
        collection_id: str,
        style_id: str,
        items: Iterable[LineItemInput | Dict[str, Any]],
        params: PricingParameters | Dict[str, Any] | None = None,
        notes: Optional[str] = None,
        settings: Optional[QuoteSettings] = None,
    ) -> Quote:
        inputs = _parse_items(items)
        if not inputs:
            raise ValidationError("A quote needs at least one item")
        params = _parse_params(params)
        self._check_references(customer_id, collection_id, style_id)
        quote_items = self._build_items(inputs)

        settings = settings or self.settings.load()
        tax_rate = params.tax_rate if params.tax_rate is not None else settings.tax_rate

        now = self.now()
        quote = Quote(
            customer_id=customer_id,
            collection_id=collection_id,
            style_id=style_id,
            status="DRAFT",
            tax_rate=tax_rate,
            notes=notes,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=settings.quote_validity_days),
        )
        self._reprice(quote, quote_items, params)
        self._insert_numbered(quote)
        log.info("Created quote %s for customer %s (total %s)", quote.quote_number, customer_id, quote.total)
        return quote

    def _save(self, quote: Quote) -> Quote:
        quote.updated_at = self.now()
        self.repo.update(quote)
        return quote

    def update_items(
        self,
        quote_id: str,
        items: Iterable[LineItemInput | Dict[str, Any]],
        params: PricingParameters | Dict[str, Any] | None = None,
    ) -> Quote:
        quote = self.require_quote(quote_id)
        inputs = _parse_items(items)
        if not inputs:
            raise ValidationError("A quote needs at least one item")
        new_items = self._build_items(inputs)
        self._reprice(quote, new_items, _parse_params(params) if params is not None else None)
        return self._save(quote)

    def add_item(self, quote_id: str, item: LineItemInput | Dict[str, Any]) -> Quote:
        quote = self.require_quote(quote_id)
        new_item = self._build_items(_parse_items([item]))[0]
        self._reprice(quote, [*quote.items, new_item], None)
        return self._save(quote)

    def update_item(self, quote_id: str, item_id: str, **changes: Any) -> Quote:
        """Change quantity, unit_price, room_name or notes of one line."""
        allowed = {"quantity", "unit_price", "room_name", "notes"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError("Cannot change item fields", sorted(unknown))
        quote = self.require_quote(quote_id)
        items: List[QuoteItem] = []
        found = False
        for it in quote.items:
            if it.id == item_id:
                found = True
                try:
                    it = QuoteItem.model_validate({**it.model_dump(), **changes})
                except PydanticValidationError as e:
                    raise ValidationError.from_pydantic("Invalid item", e) from e
            items.append(it)
        if not found:
            raise NotFoundError("quote item", item_id)
        self._reprice(quote, items, None)
        return self._save(quote)

    def remove_item(self, quote_id: str, item_id: str) -> Quote:
        quote = self.require_quote(quote_id)
        items = [it for it in quote.items if it.id != item_id]
        if len(items) == len(quote.items):
            raise NotFoundError("quote item", item_id)
        if not items:
            raise ValidationError("A quote needs at least one item; delete the quote instead")
        self._reprice(quote, items, None)
        return self._save(quote)

    def update_notes(self, quote_id: str, notes: Optional[str]) -> Quote:
        quote = self.require_quote(quote_id)
        quote.notes = (notes or "").strip() or None
        return self._save(quote)

    def update_status(self, quote_id: str, status: str) -> Quote:
        if status not in QUOTE_STATUSES:
            raise ValidationError("Unknown status", [f"status: {status}"])
        quote = self.require_quote(quote_id)
        previous = quote.status
        quote.status = status
        if status == "SENT":
            quote.sent_at = self.now()
        self._save(quote)
        log.info("Quote %s status %s -> %s", quote.quote_number, previous, status)
        return quote

    def duplicate_quote(self, quote_id: str) -> Quote:
        original = self.require_quote(quote_id)
        now = self.now()
        validity = self.settings.load().quote_validity_days
        dup = original.model_copy(
            deep=True,
            update={
                "id": gen_id(),
                "quote_number": None,
                "status": "DRAFT",
                "created_at": now,
                "updated_at": now,
                "sent_at": None,
                "expires_at": now + timedelta(days=validity),
                "items": [it.model_copy(update={"id": gen_id()}) for it in original.items],
            },
        )
        self._insert_numbered(dup)
        log.info("Duplicated quote %s as %s", original.quote_number, dup.quote_number)
        return dup

    def delete_quote(self, quote_id: str) -> None:
        # items live inside the quote record and go with it
        if not self.repo.delete(quote_id):
            raise NotFoundError("quote", quote_id)
        log.info("Deleted quote %s", quote_id)
