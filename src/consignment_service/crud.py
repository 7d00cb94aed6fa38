"""Business logic for interacting with the database."""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import changelog, schemas
from .changelog import Actor
from .errors import DuplicateNameError, MissingCostPriceError
from .models import (
    Category,
    Item,
    ItemImage,
    ItemMaterial,
    ItemType,
    Location,
    Manufacturer,
    MasterDataMixin,
    MaterialType,
    Tag,
    Unit,
    User,
    utcnow,
)
from .sku import next_item_sku

MasterT = TypeVar("MasterT", bound=MasterDataMixin)

_REFERENCE_MODELS: dict[str, type[MasterDataMixin]] = {
    "manufacturer_id": Manufacturer,
    "category_id": Category,
    "location_id": Location,
    "unit_id": Unit,
}


# ----------------------------------------------------------------------
# Master data
# ----------------------------------------------------------------------
async def list_master_data(session: AsyncSession, model: type[MasterT]) -> Sequence[MasterT]:
    if model is MaterialType:
        stmt = select(model).order_by(MaterialType.order, MaterialType.name)
    else:
        stmt = select(model).order_by(model.name)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_master_data(session: AsyncSession, model: type[MasterT], entity_id: str) -> MasterT:
    entity = await session.get(model, entity_id)
    if entity is None:
        raise NoResultFound(f"{model.__name__} {entity_id} not found")
    return entity


async def _ensure_unique_name(
    session: AsyncSession, model: type[MasterDataMixin], name: str, *, exclude_id: str | None = None
) -> None:
    stmt = select(model.id).where(model.name == name)
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise DuplicateNameError(model.__name__, name)


async def create_master_data(
    session: AsyncSession, model: type[MasterT], data: schemas.MasterDataCreate
) -> MasterT:
    await _ensure_unique_name(session, model, data.name)
    entity = model(name=data.name)
    if isinstance(entity, MaterialType):
        if data.order is None:
            max_order = (await session.execute(select(func.max(MaterialType.order)))).scalar()
            entity.order = 0 if max_order is None else max_order + 1
        else:
            entity.order = data.order
    session.add(entity)
    await session.flush()
    return entity


async def update_master_data(
    session: AsyncSession, entity: MasterT, data: schemas.MasterDataUpdate
) -> MasterT:
    fields = data.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in fields:
        fields["name"] = fields["name"].strip()
        await _ensure_unique_name(session, type(entity), fields["name"], exclude_id=entity.id)
    if not isinstance(entity, MaterialType):
        fields.pop("order", None)
    for field, value in fields.items():
        setattr(entity, field, value)
    await session.flush()
    return entity


async def delete_master_data(session: AsyncSession, entity: MasterDataMixin) -> None:
    await session.delete(entity)
    await session.flush()


async def ensure_references(session: AsyncSession, values: dict[str, Any]) -> None:
    """Raise :class:`NoResultFound` when a referenced master-data id does not exist."""

    for field, model in _REFERENCE_MODELS.items():
        entity_id = values.get(field)
        if entity_id is not None:
            await get_master_data(session, model, entity_id)


async def load_tags(session: AsyncSession, tag_ids: Iterable[str]) -> list[Tag]:
    wanted = list(dict.fromkeys(tag_ids))
    if not wanted:
        return []
    result = await session.execute(select(Tag).where(Tag.id.in_(wanted)))
    tags = {tag.id: tag for tag in result.scalars().all()}
    missing = [tag_id for tag_id in wanted if tag_id not in tags]
    if missing:
        raise NoResultFound(f"Tag {', '.join(missing)} not found")
    return [tags[tag_id] for tag_id in wanted]


# ----------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------
def _apply_sold_state(item: Item, is_sold: bool | None, sold_at: datetime | None) -> None:
    """Keep ``is_sold`` and ``sold_at`` consistent with each other."""

    if sold_at is not None:
        item.is_sold = True
        item.sold_at = sold_at
    elif is_sold:
        item.is_sold = True
        if item.sold_at is None:
            item.sold_at = utcnow()
    elif is_sold is not None:
        item.is_sold = False
        item.sold_at = None


async def get_item(session: AsyncSession, item_id: str) -> Item:
    stmt = (
        select(Item)
        .where(Item.id == item_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    item = result.scalar_one_or_none()
    if item is None:
        raise NoResultFound(f"Item {item_id} not found")
    return item


async def create_item(
    session: AsyncSession,
    data: schemas.ProductItemCreate | schemas.ConsignmentItemCreate,
    actor: Actor,
) -> Item:
    values = data.model_dump(exclude={"item_type", "tag_ids", "images", "is_sold", "sold_at"})
    await ensure_references(session, values)
    tags = await load_tags(session, data.tag_ids)

    item_type = ItemType(data.item_type)
    if item_type is ItemType.CONSIGNMENT:
        values["cost_price"] = Decimal("0")
    item = Item(
        sku=await next_item_sku(session, item_type),
        item_type=item_type,
        **values,
    )
    _apply_sold_state(item, data.is_sold, data.sold_at)
    item.tags = tags
    item.images = [ItemImage(url=image.url, order=image.order) for image in data.images]
    session.add(item)
    await session.flush()
    await changelog.record_create(session, item, actor)
    return item


async def update_item(
    session: AsyncSession, item: Item, data: schemas.ItemUpdate, actor: Actor
) -> Item:
    """Apply a partial update and log the field-level diff when anything changed."""

    fields = data.model_dump(exclude_unset=True)
    if item.item_type is ItemType.PRODUCT:
        if "cost_price" in fields and fields["cost_price"] is None:
            raise MissingCostPriceError()
    else:
        fields.pop("cost_price", None)
    await ensure_references(session, fields)

    tag_ids = fields.pop("tag_ids", None)
    images = fields.pop("images", None)
    has_sold_state = "is_sold" in fields or "sold_at" in fields
    is_sold = fields.pop("is_sold", None)
    sold_at = fields.pop("sold_at", None)
    tags = await load_tags(session, tag_ids) if tag_ids is not None else None

    before = changelog.snapshot(item)
    for field, value in fields.items():
        setattr(item, field, value)
    if has_sold_state:
        _apply_sold_state(item, is_sold, sold_at)
    if tags is not None:
        item.tags = tags
    if images is not None:
        item.images = [ItemImage(url=image["url"], order=image["order"]) for image in images]
    item.updated_at = utcnow()
    await session.flush()

    changes = changelog.diff(before, changelog.snapshot(item))
    if changes:
        await changelog.record_update(session, item, actor, changes)
    return item


async def replace_item_materials(
    session: AsyncSession, item: Item, materials: Sequence[schemas.ItemMaterialIn]
) -> Item:
    for material in materials:
        await get_master_data(session, MaterialType, material.material_type_id)
    item.materials = [
        ItemMaterial(
            material_type_id=material.material_type_id,
            description=material.description,
            order=material.order,
        )
        for material in materials
    ]
    item.updated_at = utcnow()
    await session.flush()
    return item


async def delete_item(session: AsyncSession, item: Item, actor: Actor) -> None:
    await changelog.record_delete(session, item, actor)
    await session.delete(item)
    await session.flush()


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------
async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession) -> Sequence[User]:
    result = await session.execute(select(User).order_by(User.username))
    return result.scalars().all()


async def create_user(
    session: AsyncSession, *, username: str, password_hash: str, role: str = "staff"
) -> User:
    if await get_user_by_username(session, username) is not None:
        raise DuplicateNameError("User", username)
    user = User(username=username, password_hash=password_hash, role=role)
    session.add(user)
    await session.flush()
    return user


__all__ = [name for name in globals() if not name.startswith("_")]
