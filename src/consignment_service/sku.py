"""Sequential SKU assignment backed by persisted counters."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from .models import ItemType, SystemSetting

SKU_PREFIXES = {
    ItemType.PRODUCT: "SKU",
    ItemType.CONSIGNMENT: "CSG",
}

_COUNTER_KEYS = {
    ItemType.PRODUCT: "next_product_sku",
    ItemType.CONSIGNMENT: "next_consignment_sku",
}


async def next_item_sku(session: AsyncSession, item_type: ItemType) -> str:
    """Reserve the next SKU for ``item_type`` in the caller's transaction."""

    key = _COUNTER_KEYS[item_type]
    setting = await session.get(SystemSetting, key)
    if setting is None:
        next_number = 1
        session.add(SystemSetting(key=key, value=str(next_number + 1)))
    else:
        next_number = int(setting.value)
        setting.value = str(next_number + 1)
    await session.flush()
    return f"{SKU_PREFIXES[item_type]}-{next_number:05d}"


__all__ = ["SKU_PREFIXES", "next_item_sku"]
