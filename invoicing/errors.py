from __future__ import annotations
from typing import Any, Optional


class InvoicingError(Exception):
    """Base de toutes les erreurs métier remontées à l'appelant."""


class ValidationError(InvoicingError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidTransitionError(InvoicingError):
    def __init__(self, current: str, attempted: str, message: Optional[str] = None):
        self.current = current
        self.attempted = attempted
        super().__init__(message or f"cannot change invoice status from {current} to {attempted}")


class NotFoundError(InvoicingError):
    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} not found")


class InstallmentNotFoundError(NotFoundError, ValidationError):
    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        NotFoundError.__init__(self, "installment", index)
        self.message = f"installment index {index} out of range (invoice has {count})"
        self.field = "index"
        self.args = (self.message,)


class ConflictError(InvoicingError):
    pass


def from_pydantic(exc: Exception, prefix: str = "") -> ValidationError:
    """Convertit une pydantic.ValidationError en ValidationError métier (premier problème)."""
    errors = getattr(exc, "errors", None)
    if callable(errors):
        items = errors()
        if items:
            first = items[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            msg = first.get("msg", str(exc))
            text = f"{prefix}{loc}: {msg}" if loc else f"{prefix}{msg}"
            return ValidationError(text, field=loc or None)
    return ValidationError(f"{prefix}{exc}")
