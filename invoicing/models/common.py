from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from typing import Annotated, Any, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from invoicing.errors import ValidationError

CENT = Decimal("0.01")

# Montants : Decimal en mémoire, nombre dans le JSON
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal(value: Union[Decimal, int, float, str, Any], field: Optional[str] = None) -> Decimal:
    """Conversion stricte : montant fini, sinon ValidationError."""
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(repr(value))
        else:
            d = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{value!r} is not a valid number", field=field) from None
    if not d.is_finite():
        raise ValidationError(f"{value!r} is not a finite number", field=field)
    return d


def round2(value: Union[Decimal, int, float, str], field: Optional[str] = None) -> Decimal:
    """Arrondi commercial à 2 décimales (half-up, pas d'arrondi bancaire)."""
    return to_decimal(value, field).quantize(CENT, rounding=ROUND_HALF_UP)


class Document(BaseModel):
    """Base des documents JSON : attributs snake_case, clés camelCase sur disque."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class TimeStamped(Document):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self):
        object.__setattr__(self, "updated_at", utcnow())
