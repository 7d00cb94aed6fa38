"""Quantity arithmetic shared by the bulk and single-record paths."""
from __future__ import annotations

from .errors import NegativeQuantityError
from .schemas import QuantityMode


def resolve_quantity(
    current: int,
    mode: QuantityMode,
    value: int,
    *,
    item_id: str | None = None,
    sku: str | None = None,
) -> int:
    """Return the new quantity for ``mode``.

    ``set`` replaces the quantity with ``value``; ``increment`` adds the
    signed ``value`` to ``current``. A negative result raises
    :class:`NegativeQuantityError` naming the record and its current quantity.
    """

    if mode == "set":
        new_quantity = value
    elif mode == "increment":
        new_quantity = current + value
    else:
        raise ValueError(f"Unknown quantity mode: {mode!r}")
    if new_quantity < 0:
        raise NegativeQuantityError(
            item_id=item_id,
            sku=sku,
            current=current,
            change=value if mode == "increment" else value - current,
        )
    return new_quantity


__all__ = ["resolve_quantity"]
