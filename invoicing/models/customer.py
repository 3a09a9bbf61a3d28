from pydantic import EmailStr, Field
from .common import Document, TimeStamped, gen_id

class Address(Document):
    line1: str
    line2: str | None = None
    postal_code: str
    city: str
    country: str | None = None

class Customer(TimeStamped):
    id: str = Field(default_factory=gen_id)
    name: str = Field(min_length=1)
    contact_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: Address | None = None
    tax_id: str | None = None
    notes: str | None = None
