"""Bulk edit and bulk delete across many items in one unit of work.

Nothing here commits. Callers run these inside :func:`database.atomic`
so a failure in any step (a negative increment, a missing reference, a
change-log write) leaves every targeted row untouched.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import changelog, crud, schemas
from .changelog import Actor
from .logging_config import log_context
from .models import Item, ItemTag, utcnow
from .quantity import resolve_quantity

logger = logging.getLogger(__name__)


async def _load_targets(session: AsyncSession, ids: Sequence[str]) -> list[Item]:
    wanted = list(dict.fromkeys(ids))
    stmt = (
        select(Item)
        .where(Item.id.in_(wanted))
        .order_by(Item.sku)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    items = list(result.scalars().all())
    if not items:
        raise NoResultFound("None of the selected items exist")
    return items


async def replace_tags(session: AsyncSession, item_ids: Sequence[str], tag_ids: Sequence[str]) -> None:
    """Drop every tag of ``item_ids`` and attach ``tag_ids`` to each of them."""

    tag_ids = [tag.id for tag in await crud.load_tags(session, tag_ids)]
    await session.execute(delete(ItemTag).where(ItemTag.item_id.in_(item_ids)))
    if tag_ids:
        await session.execute(
            insert(ItemTag),
            [{"item_id": item_id, "tag_id": tag_id} for item_id in item_ids for tag_id in tag_ids],
        )


async def increment_quantities(session: AsyncSession, items: Sequence[Item], value: int) -> int:
    """Add ``value`` to every item, refusing the whole batch if one would go negative."""

    new_quantities = [
        resolve_quantity(item.quantity, "increment", value, item_id=item.id, sku=item.sku)
        for item in items
    ]
    for item, quantity in zip(items, new_quantities):
        item.quantity = quantity
    await session.flush()
    return len(items)


async def bulk_edit(
    session: AsyncSession,
    ids: Sequence[str],
    updates: schemas.BulkEditUpdates,
    actor: Actor,
) -> schemas.BulkEditResult:
    with log_context(action="bulk_edit", actor=actor.name):
        items = await _load_targets(session, ids)
        target_ids = [item.id for item in items]

        values: dict[str, object] = dict(updates.reference_updates())
        await crud.ensure_references(session, values)

        if updates.tag_ids is not None:
            await replace_tags(session, target_ids, updates.tag_ids)

        updated_count = 0
        quantity = updates.quantity
        if quantity is not None and quantity.mode == "increment":
            try:
                updated_count = await increment_quantities(session, items, quantity.value)
            except ValueError:
                logger.warning("Rejected bulk increment of %+d across %d items", quantity.value, len(items))
                raise
        elif quantity is not None:
            values["quantity"] = quantity.value

        if values:
            values["updated_at"] = utcnow()
            result = await session.execute(
                update(Item).where(Item.id.in_(target_ids)).values(**values)
            )
            updated_count = max(updated_count, result.rowcount)
        elif not updated_count:
            updated_count = len(items)

        for item in items:
            await changelog.record_update(session, item, actor)

        logger.info("Bulk edit updated %d of %d requested items", updated_count, len(ids))
        return schemas.BulkEditResult(
            updated_count=updated_count,
            message=f"Updated {updated_count} items",
        )


async def bulk_delete(
    session: AsyncSession, ids: Sequence[str], actor: Actor
) -> schemas.BulkDeleteResult:
    """Delete the items; images, materials and tag links go with them by FK cascade."""

    with log_context(action="bulk_delete", actor=actor.name):
        items = await _load_targets(session, ids)
        for item in items:
            await changelog.record_delete(session, item, actor)

        result = await session.execute(
            delete(Item).where(Item.id.in_([item.id for item in items]))
        )
        deleted_count = result.rowcount
        logger.info("Bulk delete removed %d of %d requested items", deleted_count, len(ids))
        return schemas.BulkDeleteResult(
            deleted_count=deleted_count,
            message=f"Deleted {deleted_count} items",
        )


__all__ = ["replace_tags", "increment_quantities", "bulk_edit", "bulk_delete"]
