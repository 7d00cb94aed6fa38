from __future__ import annotations

import pytest

from consignment_service.errors import BusinessRuleViolation, NegativeQuantityError
from consignment_service.quantity import resolve_quantity


def test_set_returns_value() -> None:
    assert resolve_quantity(5, "set", 12) == 12
    assert resolve_quantity(5, "set", 0) == 0


def test_increment_adds_signed_value() -> None:
    assert resolve_quantity(5, "increment", 3) == 8
    assert resolve_quantity(5, "increment", -5) == 0


def test_increment_by_zero_is_noop() -> None:
    assert resolve_quantity(7, "increment", 0) == 7


def test_increment_below_zero_names_record() -> None:
    with pytest.raises(NegativeQuantityError) as excinfo:
        resolve_quantity(2, "increment", -10, item_id="abc", sku="SKU-00001")

    error = excinfo.value
    assert isinstance(error, BusinessRuleViolation)
    assert error.item_id == "abc"
    assert error.current == 2
    assert error.change == -10
    assert "SKU-00001" in str(error)
    assert "current quantity 2" in str(error)


def test_set_negative_rejected() -> None:
    with pytest.raises(NegativeQuantityError):
        resolve_quantity(3, "set", -1)


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_quantity(3, "multiply", 2)  # type: ignore[arg-type]
