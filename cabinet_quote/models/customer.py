from pydantic import EmailStr, Field
from .common import TimeStamped, gen_id


class Customer(TimeStamped):
    id: str = Field(default_factory=gen_id)
    first_name: str
    last_name: str
    email: EmailStr
    phone: str = ""
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def city_line(self) -> str:
        if not self.city:
            return ""
        tail = " ".join(p for p in (self.state, self.zip_code) if p)
        return f"{self.city}, {tail}" if tail else self.city
