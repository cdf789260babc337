from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from cabinet_quote.errors import ValidationError
from cabinet_quote.models.product import Collection, Product, Style
from cabinet_quote.storage.json_repo import JsonRepository

T = TypeVar("T", bound=BaseModel)

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


class CatalogService:
    """
    Products, collections and styles.
    - repos created under data_dir (products.json, collections.json, styles.json) unless given
    - hydrates JSON rows into models
    - "smart" product upsert: match by id, then by item_code within the same collection
    """

    def __init__(
        self,
        products_repo: Optional[JsonRepository] = None,
        collections_repo: Optional[JsonRepository] = None,
        styles_repo: Optional[JsonRepository] = None,
        data_dir: Optional[str | Path] = None,
    ) -> None:
        base = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        base.mkdir(parents=True, exist_ok=True)

        self.products_repo = products_repo or JsonRepository(
            base / "products.json", entity_name="product", key="id"
        )
        self.collections_repo = collections_repo or JsonRepository(
            base / "collections.json", entity_name="collection", key="id"
        )
        self.styles_repo = styles_repo or JsonRepository(
            base / "styles.json", entity_name="style", key="id"
        )

    # ---------- hydration ---------- #

    @staticmethod
    def _hydrate(d: Optional[Dict[str, Any]], model: Type[T]) -> Optional[T]:
        if d is None:
            return None
        return model.model_validate(d)

    def _hydrate_list(self, rows: List[Dict[str, Any]], model: Type[T]) -> List[T]:
        return [model.model_validate(d) for d in rows]

    # ---------- smart upsert ---------- #

    @staticmethod
    def _match_product(row: Dict[str, Any], probe: Dict[str, Any]) -> bool:
        """Priority: id -> (collection_id, item_code)."""
        if probe.get("id") and str(row.get("id")) == str(probe["id"]):
            return True
        code = (probe.get("item_code") or "").strip()
        if code and (row.get("item_code") or "").strip() == code:
            return row.get("collection_id") == probe.get("collection_id")
        return False

    def _smart_upsert(self, repo: JsonRepository, payload: Dict[str, Any]) -> Dict[str, Any]:
        with repo._lock:
            rows = repo.list_all()
            for i, r in enumerate(rows):
                if self._match_product(r, payload):
                    merged = {**r, **payload, "id": r.get("id")}
                    rows[i] = merged
                    repo._write_raw(rows)
                    return merged
            return repo.add(payload)

    # ---------- products ---------- #

    def list_products(
        self,
        collection_id: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        active_only: bool = True,
    ) -> List[Product]:
        needle = (search or "").strip().casefold()

        def keep(d: Dict[str, Any]) -> bool:
            if active_only and not d.get("active", True):
                return False
            if collection_id and d.get("collection_id") != collection_id:
                return False
            if category and d.get("category") != category:
                return False
            if needle:
                hay = f"{d.get('item_code') or ''} {d.get('description') or ''}".casefold()
                return needle in hay
            return True

        rows = self.products_repo.find(keep)
        return sorted(self._hydrate_list(rows, Product), key=lambda p: p.item_code)

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._hydrate(self.products_repo.get_by_id(product_id), Product)

    def add_product(self, p: Product | Dict[str, Any]) -> Product:
        payload = self._validated(p, Product)
        return Product.model_validate(self.products_repo.add(payload))

    def update_product(self, p: Product | Dict[str, Any]) -> Product:
        payload = self._validated(p, Product)
        return Product.model_validate(self._smart_upsert(self.products_repo, payload))

    def delete_product(self, product_id: str) -> bool:
        return self.products_repo.delete(product_id)

    # ---------- collections & styles ---------- #

    def list_collections(self) -> List[Collection]:
        rows = self.collections_repo.list_all()
        return sorted(self._hydrate_list(rows, Collection), key=lambda c: c.name)

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        return self._hydrate(self.collections_repo.get_by_id(collection_id), Collection)

    def add_collection(self, c: Collection | Dict[str, Any]) -> Collection:
        payload = self._validated(c, Collection)
        return Collection.model_validate(self.collections_repo.add(payload))

    def list_styles(self, collection_id: Optional[str] = None) -> List[Style]:
        rows = self.styles_repo.find(lambda d: not collection_id or d.get("collection_id") == collection_id)
        return self._hydrate_list(rows, Style)

    def get_style(self, style_id: str) -> Optional[Style]:
        return self._hydrate(self.styles_repo.get_by_id(style_id), Style)

    def add_style(self, s: Style | Dict[str, Any]) -> Style:
        payload = self._validated(s, Style)
        if not self.get_collection(payload["collection_id"]):
            raise ValidationError("Unknown collection", [f"collection_id: {payload['collection_id']}"])
        return Style.model_validate(self.styles_repo.add(payload))

    # ---------- misc ---------- #

    @staticmethod
    def _validated(obj: BaseModel | Dict[str, Any], model: Type[T]) -> Dict[str, Any]:
        try:
            m = obj if isinstance(obj, model) else model.model_validate(obj)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(f"Invalid {model.__name__.lower()}", e) from e
        return m.model_dump(mode="json")
