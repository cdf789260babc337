from __future__ import annotations
from typing import Iterable, List, Optional


class QuoteError(Exception):
    """Base error for the quoting package."""


class ValidationError(QuoteError, ValueError):
    """Bad input: empty item list, unknown reference, negative amount, unknown status."""

    def __init__(self, message: str, details: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: List[str] = list(details or [])

    def __str__(self) -> str:
        if not self.details:
            return self.message
        return f"{self.message}: " + "; ".join(self.details)

    @classmethod
    def from_pydantic(cls, message: str, exc) -> "ValidationError":
        details = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            details.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
        return cls(message, details)


class NotFoundError(QuoteError, LookupError):
    def __init__(self, entity: str, obj_id: object) -> None:
        super().__init__(f"{entity} {obj_id} not found")
        self.entity = entity
        self.obj_id = obj_id


class ConflictError(QuoteError):
    """A unique key is already taken in the store."""

    def __init__(self, entity: str, field: str, value: object) -> None:
        super().__init__(f"{entity} with {field}={value} already exists")
        self.entity = entity
        self.field = field
        self.value = value
