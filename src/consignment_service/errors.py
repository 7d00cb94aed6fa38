"""Domain errors raised by the service layer."""
from __future__ import annotations


class BusinessRuleViolation(ValueError):
    """A request that is well formed but breaks an inventory rule."""


class NegativeQuantityError(BusinessRuleViolation):
    def __init__(
        self,
        *,
        item_id: str | None,
        sku: str | None,
        current: int,
        change: int,
    ) -> None:
        self.item_id = item_id
        self.sku = sku
        self.current = current
        self.change = change
        label = sku or item_id or "item"
        super().__init__(
            f"Quantity of {label} cannot go below zero "
            f"(current quantity {current}, change {change:+d})"
        )


class MissingCostPriceError(BusinessRuleViolation):
    def __init__(self) -> None:
        super().__init__("Products require a cost price")


class DuplicateNameError(BusinessRuleViolation):
    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} named {name!r} already exists")


class InvalidPaginationError(ValueError):
    """Page or limit outside the accepted range."""


class ImportFormatError(ValueError):
    """The uploaded file cannot be imported at all."""


class RowImportError(ValueError):
    """A single import row is invalid; the rest of the batch continues."""


__all__ = [
    "BusinessRuleViolation",
    "NegativeQuantityError",
    "MissingCostPriceError",
    "DuplicateNameError",
    "InvalidPaginationError",
    "ImportFormatError",
    "RowImportError",
]
