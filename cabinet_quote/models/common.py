from pydantic import BaseModel, Field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import uuid

CENT = Decimal("0.01")


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    """Round to currency precision (2 decimals, half up)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self, now: datetime | None = None):
        object.__setattr__(self, "updated_at", now or utcnow())
