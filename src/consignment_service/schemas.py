"""Pydantic schemas used by the API."""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from .models import ItemType

BULK_MAX_IDS = 100

QuantityMode = Literal["set", "increment"]


class MasterDataCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    order: int | None = Field(default=None, ge=0, description="Only used by material types.")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class MasterDataUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    order: int | None = Field(default=None, ge=0)


class MasterDataOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class MaterialTypeOut(MasterDataOut):
    order: int


class FiltersOut(BaseModel):
    manufacturers: list[MasterDataOut]
    categories: list[MasterDataOut]
    locations: list[MasterDataOut]
    units: list[MasterDataOut]
    tags: list[MasterDataOut]
    material_types: list[MaterialTypeOut]


class ItemImageIn(BaseModel):
    url: str = Field(..., min_length=1, max_length=1024)
    order: int = Field(0, ge=0)


class ItemImageOut(ItemImageIn):
    model_config = ConfigDict(from_attributes=True)

    id: str


class ItemMaterialIn(BaseModel):
    material_type_id: str
    description: str | None = Field(None, max_length=2000)
    order: int = Field(0, ge=0)


class ItemMaterialOut(ItemMaterialIn):
    model_config = ConfigDict(from_attributes=True)

    id: str
    material_type: MaterialTypeOut


class ItemMaterialsReplace(BaseModel):
    materials: list[ItemMaterialIn] = Field(default_factory=list)


class ItemFields(BaseModel):
    """Fields shared by both item variants."""

    name: str = Field(..., min_length=1, max_length=200)
    manufacturer_id: str | None = None
    category_id: str | None = None
    location_id: str | None = None
    unit_id: str | None = None
    specification: str | None = Field(None, max_length=2000)
    size: str | None = Field(None, max_length=200)
    fabric_color: str | None = Field(None, max_length=2000)
    quantity: int = Field(0, ge=0)
    list_price: Decimal | None = Field(None, ge=0)
    arrival_date: str | None = Field(None, max_length=50)
    designer: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)
    is_sold: bool = False
    sold_at: datetime | None = None
    tag_ids: list[str] = Field(default_factory=list)
    images: list[ItemImageIn] = Field(default_factory=list)


class ProductItemCreate(ItemFields):
    item_type: Literal["PRODUCT"] = "PRODUCT"
    cost_price: Decimal = Field(..., ge=0)


class ConsignmentItemCreate(ItemFields):
    item_type: Literal["CONSIGNMENT"] = "CONSIGNMENT"
    cost_price: Decimal = Decimal("0")

    @field_validator("cost_price", mode="before")
    @classmethod
    def _fixed_cost(cls, value: Any) -> Decimal:
        return Decimal("0")


ItemCreate = Annotated[
    Union[ProductItemCreate, ConsignmentItemCreate],
    Field(discriminator="item_type"),
]

_ITEM_CREATE_ADAPTER: TypeAdapter[ProductItemCreate | ConsignmentItemCreate] = TypeAdapter(
    ItemCreate
)


def validate_item_create(data: Mapping[str, Any]) -> ProductItemCreate | ConsignmentItemCreate:
    """Validate a create payload against the schema of its item type.

    A missing or blank ``item_type`` means PRODUCT. Raises
    :class:`pydantic.ValidationError` on failure.
    """

    payload = dict(data)
    if not payload.get("item_type"):
        payload["item_type"] = ItemType.PRODUCT.value
    return _ITEM_CREATE_ADAPTER.validate_python(payload)


class ItemUpdate(BaseModel):
    """Partial update; ``sku`` and ``item_type`` are not accepted."""

    name: str | None = Field(None, min_length=1, max_length=200)
    manufacturer_id: str | None = None
    category_id: str | None = None
    location_id: str | None = None
    unit_id: str | None = None
    specification: str | None = Field(None, max_length=2000)
    size: str | None = Field(None, max_length=200)
    fabric_color: str | None = Field(None, max_length=2000)
    quantity: int | None = Field(None, ge=0)
    cost_price: Decimal | None = Field(None, ge=0)
    list_price: Decimal | None = Field(None, ge=0)
    arrival_date: str | None = Field(None, max_length=50)
    designer: str | None = Field(None, max_length=200)
    notes: str | None = Field(None, max_length=2000)
    is_sold: bool | None = None
    sold_at: datetime | None = None
    tag_ids: list[str] | None = None
    images: list[ItemImageIn] | None = None

    @field_validator("name", "quantity", "is_sold")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sku: str
    item_type: ItemType
    name: str
    manufacturer_id: str | None
    category_id: str | None
    location_id: str | None
    unit_id: str | None
    manufacturer: MasterDataOut | None
    category: MasterDataOut | None
    location: MasterDataOut | None
    unit: MasterDataOut | None
    specification: str | None
    size: str | None
    fabric_color: str | None
    quantity: int
    cost_price: Decimal | None
    list_price: Decimal | None
    total_cost: Decimal
    arrival_date: str | None
    designer: str | None
    notes: str | None
    is_sold: bool
    sold_at: datetime | None
    tags: list[MasterDataOut]
    images: list[ItemImageOut]
    materials: list[ItemMaterialOut]
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class ItemListResponse(BaseModel):
    items: list[ItemOut]
    pagination: Pagination


class ItemIdsResponse(BaseModel):
    ids: list[str]


class QuantityUpdate(BaseModel):
    mode: QuantityMode
    value: int

    @model_validator(mode="after")
    def _set_is_non_negative(self) -> "QuantityUpdate":
        if self.mode == "set" and self.value < 0:
            raise ValueError("quantity to set must be zero or greater")
        return self


class BulkEditUpdates(BaseModel):
    location_id: str | None = None
    manufacturer_id: str | None = None
    category_id: str | None = None
    tag_ids: list[str] | None = None
    quantity: QuantityUpdate | None = None

    @model_validator(mode="after")
    def _require_update(self) -> "BulkEditUpdates":
        if not self.reference_updates() and self.tag_ids is None and self.quantity is None:
            raise ValueError("at least one field to update is required")
        return self

    def reference_updates(self) -> dict[str, str | None]:
        """Explicitly provided reference fields; ``None`` clears the reference."""

        return {
            field: getattr(self, field)
            for field in ("location_id", "manufacturer_id", "category_id")
            if field in self.model_fields_set
        }


class BulkEditRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=BULK_MAX_IDS)
    updates: BulkEditUpdates


class BulkDeleteRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=BULK_MAX_IDS)


class BulkEditResult(BaseModel):
    updated_count: int
    message: str


class BulkDeleteResult(BaseModel):
    deleted_count: int
    message: str


class ImportRowError(BaseModel):
    row: int
    message: str


class ImportResult(BaseModel):
    imported: int
    errors: list[ImportRowError] = Field(default_factory=list)


class FieldChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field: str
    label: str
    from_value: str = Field(alias="from")
    to_value: str = Field(alias="to")


class ChangeLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_type: str
    entity_id: str
    entity_name: str
    entity_sku: str
    action: Literal["create", "update", "delete"]
    changes: list[FieldChange] | None
    user_id: str
    user_name: str
    item_type: str | None
    created_at: datetime


class ChangeLogListResponse(BaseModel):
    change_logs: list[ChangeLogOut]


class TokenRequest(BaseModel):
    username: str
    password: str
    expires_in: int | None = Field(default=None, gt=0)


class TokenResponse(BaseModel):
    token: str
    issued_at: int
    expires_at: int


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=4)
    role: Literal["admin", "staff"] = "staff"


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    role: str
    created_at: datetime


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "BULK_MAX_IDS",
    "QuantityMode",
    "MasterDataCreate",
    "MasterDataUpdate",
    "MasterDataOut",
    "MaterialTypeOut",
    "FiltersOut",
    "ItemImageIn",
    "ItemImageOut",
    "ItemMaterialIn",
    "ItemMaterialOut",
    "ItemMaterialsReplace",
    "ItemFields",
    "ProductItemCreate",
    "ConsignmentItemCreate",
    "ItemCreate",
    "validate_item_create",
    "ItemUpdate",
    "ItemOut",
    "Pagination",
    "ItemListResponse",
    "ItemIdsResponse",
    "QuantityUpdate",
    "BulkEditUpdates",
    "BulkEditRequest",
    "BulkDeleteRequest",
    "BulkEditResult",
    "BulkDeleteResult",
    "ImportRowError",
    "ImportResult",
    "FieldChange",
    "ChangeLogOut",
    "ChangeLogListResponse",
    "TokenRequest",
    "TokenResponse",
    "UserCreate",
    "UserOut",
    "HealthStatus",
]
