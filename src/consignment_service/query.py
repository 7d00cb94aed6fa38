"""Filter, sort and pagination query building for item listings."""
from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import ColumnElement, Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidPaginationError
from .models import Category, Item, ItemTag, ItemType, Location, Manufacturer

ITEM_SORT_FIELDS: dict[str, Any] = {
    "manufacturer": Manufacturer.name,
    "category": Category.name,
    "location": Location.name,
    "name": Item.name,
    "sku": Item.sku,
    "specification": Item.specification,
    "quantity": Item.quantity,
    "cost_price": Item.cost_price,
    "list_price": Item.list_price,
    "created_at": Item.created_at,
}

_SORT_JOINS = {
    "manufacturer": Item.manufacturer,
    "category": Item.category,
    "location": Item.location,
}


@dataclass
class ItemFilters:
    search: str | None = None
    category_id: str | None = None
    manufacturer_id: str | None = None
    location_id: str | None = None
    arrival_date: str | None = None
    tag_ids: list[str] = field(default_factory=list)
    include_sold: bool = False
    item_type: ItemType | None = None


@dataclass
class ItemQuery:
    """Predicate plus ordering usable for counting, paging and id listing."""

    conditions: list[ColumnElement[bool]]
    order_by: list[Any]
    joins: list[Any] = field(default_factory=list)

    def select_items(self) -> Select[tuple[Item]]:
        stmt = select(Item)
        for relationship in self.joins:
            stmt = stmt.outerjoin(relationship)
        return stmt.where(*self.conditions).order_by(*self.order_by)

    def select_ids(self) -> Select[tuple[str]]:
        stmt = select(Item.id)
        for relationship in self.joins:
            stmt = stmt.outerjoin(relationship)
        return stmt.where(*self.conditions).order_by(*self.order_by)

    def count(self) -> Select[tuple[int]]:
        return select(func.count()).select_from(Item).where(*self.conditions)


def parse_item_type(value: str | None) -> ItemType | None:
    """Case-insensitive item type query parameter; anything else means all types."""

    if not value:
        return None
    try:
        return ItemType(value.strip().upper())
    except ValueError:
        return None


def parse_id_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def build_item_conditions(filters: ItemFilters) -> list[ColumnElement[bool]]:
    conditions: list[ColumnElement[bool]] = []
    if filters.item_type is not None:
        conditions.append(Item.item_type == filters.item_type)
    if filters.search:
        term = filters.search.strip()
        if term:
            conditions.append(
                or_(
                    Item.name.icontains(term, autoescape=True),
                    Item.specification.icontains(term, autoescape=True),
                )
            )
    if filters.category_id:
        conditions.append(Item.category_id == filters.category_id)
    if filters.manufacturer_id:
        conditions.append(Item.manufacturer_id == filters.manufacturer_id)
    if filters.location_id:
        conditions.append(Item.location_id == filters.location_id)
    if filters.arrival_date:
        conditions.append(Item.arrival_date.contains(filters.arrival_date, autoescape=True))
    if not filters.include_sold:
        conditions.append(Item.is_sold.is_(False))
    if filters.tag_ids:
        # any of the given tags
        tagged = select(ItemTag.item_id).where(ItemTag.tag_id.in_(filters.tag_ids))
        conditions.append(Item.id.in_(tagged))
    return conditions


def build_item_order_by(
    sort_by: str | None, sort_order: str | None
) -> tuple[list[Any], list[Any]]:
    """Return ``(order_by, joins)``; unknown sort fields fall back to newest first."""

    if not sort_by or sort_by not in ITEM_SORT_FIELDS:
        return [Item.created_at.desc(), Item.id.desc()], []
    column = ITEM_SORT_FIELDS[sort_by]
    ordered = column.asc() if sort_order == "asc" else column.desc()
    joins = [_SORT_JOINS[sort_by]] if sort_by in _SORT_JOINS else []
    return [ordered, Item.id.asc()], joins


def build_item_query(
    filters: ItemFilters, sort_by: str | None = None, sort_order: str | None = None
) -> ItemQuery:
    order_by, joins = build_item_order_by(sort_by, sort_order)
    return ItemQuery(conditions=build_item_conditions(filters), order_by=order_by, joins=joins)


def validate_pagination(page: int, limit: int, *, max_page_size: int) -> None:
    if page < 1:
        raise InvalidPaginationError("page must be 1 or greater")
    if limit < 1 or limit > max_page_size:
        raise InvalidPaginationError(f"limit must be between 1 and {max_page_size}")


async def paginate_items(
    session: AsyncSession,
    query: ItemQuery,
    *,
    page: int,
    limit: int,
    max_page_size: int,
) -> tuple[Sequence[Item], dict[str, int]]:
    validate_pagination(page, limit, max_page_size=max_page_size)
    total = (await session.execute(query.count())).scalar_one()
    stmt = query.select_items().offset((page - 1) * limit).limit(limit)
    items = (await session.execute(stmt)).scalars().all()
    pagination = {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }
    return items, pagination


async def list_item_ids(
    session: AsyncSession, query: ItemQuery, *, limit: int | None = None
) -> list[str]:
    """Every id matching ``query``, independent of paging."""

    stmt = query.select_ids()
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


__all__ = [
    "ITEM_SORT_FIELDS",
    "ItemFilters",
    "ItemQuery",
    "parse_item_type",
    "parse_id_list",
    "build_item_conditions",
    "build_item_order_by",
    "build_item_query",
    "validate_pagination",
    "paginate_items",
    "list_item_ids",
]
