"""Database models for consignment inventory management."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemType(str, enum.Enum):
    PRODUCT = "PRODUCT"
    CONSIGNMENT = "CONSIGNMENT"


class TimestampMixin:
    """Mixin providing created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class MasterDataMixin(TimestampMixin):
    """Shared reference entity resolved by its unique name."""

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)


class Manufacturer(Base, MasterDataMixin):
    __tablename__ = "manufacturers"


class Category(Base, MasterDataMixin):
    __tablename__ = "categories"


class Location(Base, MasterDataMixin):
    __tablename__ = "locations"


class Unit(Base, MasterDataMixin):
    __tablename__ = "units"


class Tag(Base, MasterDataMixin):
    __tablename__ = "tags"


class MaterialType(Base, MasterDataMixin):
    __tablename__ = "material_types"

    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ItemTag(Base):
    __tablename__ = "item_tags"

    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[str] = mapped_column(
        ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )


class Item(Base, TimestampMixin):
    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    sku: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    item_type: Mapped[ItemType] = mapped_column(
        Enum(ItemType, native_enum=False, length=16), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    manufacturer_id: Mapped[str | None] = mapped_column(
        ForeignKey("manufacturers.id", ondelete="SET NULL")
    )
    category_id: Mapped[str | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    location_id: Mapped[str | None] = mapped_column(
        ForeignKey("locations.id", ondelete="SET NULL")
    )
    unit_id: Mapped[str | None] = mapped_column(ForeignKey("units.id", ondelete="SET NULL"))
    specification: Mapped[str | None] = mapped_column(Text)
    size: Mapped[str | None] = mapped_column(String(200))
    fabric_color: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    list_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    arrival_date: Mapped[str | None] = mapped_column(String(50))
    designer: Mapped[str | None] = mapped_column(String(200))
    notes: Mapped[str | None] = mapped_column(Text)
    is_sold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    manufacturer: Mapped[Manufacturer | None] = relationship(lazy="selectin")
    category: Mapped[Category | None] = relationship(lazy="selectin")
    location: Mapped[Location | None] = relationship(lazy="selectin")
    unit: Mapped[Unit | None] = relationship(lazy="selectin")
    tags: Mapped[list[Tag]] = relationship(
        secondary="item_tags", lazy="selectin", order_by="Tag.name"
    )
    images: Mapped[list["ItemImage"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ItemImage.order",
    )
    materials: Mapped[list["ItemMaterial"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ItemMaterial.order",
    )

    @property
    def total_cost(self) -> Decimal:
        if self.cost_price is None:
            return Decimal("0")
        return self.cost_price * self.quantity


class ItemImage(Base):
    __tablename__ = "item_images"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    item: Mapped[Item] = relationship(back_populates="images")


class ItemMaterial(Base):
    __tablename__ = "item_materials"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    material_type_id: Mapped[str] = mapped_column(
        ForeignKey("material_types.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    item: Mapped[Item] = relationship(back_populates="materials")
    material_type: Mapped[MaterialType] = relationship(lazy="selectin")


class ChangeLog(Base):
    __tablename__ = "change_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_sku: Mapped[str] = mapped_column(String(32), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    changes: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON)
    user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    user_name: Mapped[str] = mapped_column(String(150), nullable=False)
    item_type: Mapped[str | None] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), default="staff", nullable=False)


MASTER_DATA_MODELS: dict[str, type[MasterDataMixin]] = {
    "manufacturers": Manufacturer,
    "categories": Category,
    "locations": Location,
    "units": Unit,
    "tags": Tag,
    "material-types": MaterialType,
}


__all__ = [
    "ItemType",
    "Manufacturer",
    "Category",
    "Location",
    "Unit",
    "Tag",
    "MaterialType",
    "ItemTag",
    "Item",
    "ItemImage",
    "ItemMaterial",
    "ChangeLog",
    "SystemSetting",
    "User",
    "MASTER_DATA_MODELS",
    "new_id",
    "utcnow",
]
