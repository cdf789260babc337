from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError as PydanticValidationError

from cabinet_quote.errors import ConflictError, NotFoundError, ValidationError
from cabinet_quote.models.common import utcnow
from cabinet_quote.models.customer import Customer
from cabinet_quote.storage.json_repo import JsonRepository

log = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


class CustomerService:
    def __init__(self, data_dir: Optional[str | Path] = None):
        base = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        self.repo = JsonRepository(base / "customers.json", entity_name="customer", key="id")

    def list_customers(self, search: Optional[str] = None) -> List[Customer]:
        needle = (search or "").strip().casefold()
        out: List[Customer] = []
        for d in self.repo.list_all():
            try:
                c = Customer(**d)
            except PydanticValidationError:
                log.warning("Skipping invalid customer record %s", d.get("id"))
                continue
            if needle:
                hay = " ".join([c.first_name, c.last_name, str(c.email), c.phone]).casefold()
                if needle not in hay:
                    continue
            out.append(c)
        return sorted(out, key=lambda c: (c.last_name.casefold(), c.first_name.casefold()))

    def get_by_id(self, customer_id: str) -> Optional[Customer]:
        d = self.repo.get_by_id(customer_id)
        if d is None:
            return None
        return Customer(**d)

    def _check_email_free(self, customer: Customer) -> None:
        email = str(customer.email).casefold()
        clash = self.repo.find_one(
            lambda d: str(d.get("email")).casefold() == email and d.get("id") != customer.id
        )
        if clash:
            raise ConflictError("customer", "email", customer.email)

    def add_customer(self, customer: Customer | Dict[str, Any]) -> Customer:
        c = self._validated(customer)
        with self.repo._lock:
            self._check_email_free(c)
            self.repo.add(c)
        return c

    def update_customer(self, customer: Customer) -> Customer:
        with self.repo._lock:
            self._check_email_free(customer)
            customer.touch()
            self.repo.update(customer)
        return customer

    def delete_customer(self, customer_id: str) -> None:
        if not self.repo.delete(customer_id):
            raise NotFoundError("customer", customer_id)

    @staticmethod
    def _validated(customer: Customer | Dict[str, Any]) -> Customer:
        if isinstance(customer, Customer):
            return customer
        try:
            return Customer(**customer)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid customer", e) from e
