"""Change log recording and field-level before/after diffing."""
from __future__ import annotations

import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChangeLog, Item

logger = logging.getLogger(__name__)

ENTITY_ITEM = "item"

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"

EMPTY_DISPLAY = "(未設定)"

# designer is deliberately absent
ITEM_FIELD_LABELS: dict[str, str] = {
    "name": "商品名",
    "manufacturer_id": "メーカー",
    "category_id": "品目",
    "specification": "仕様",
    "size": "サイズ",
    "fabric_color": "張地/カラー",
    "quantity": "個数",
    "unit_id": "単位",
    "cost_price": "原価単価",
    "list_price": "定価単価",
    "arrival_date": "入荷年月",
    "location_id": "場所",
    "notes": "備考",
    "is_sold": "販売済み",
}


@dataclass(frozen=True)
class Actor:
    """The user a mutation is attributed to."""

    id: str
    name: str


@dataclass(frozen=True)
class FieldChange:
    field: str
    label: str
    from_value: str
    to_value: str

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "label": self.label,
            "from": self.from_value,
            "to": self.to_value,
        }


def _normalize(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        value = value.value
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        try:
            return Decimal(value.replace(",", ""))
        except InvalidOperation:
            return None
    return None


def values_equal(before: Any, after: Any) -> bool:
    """Type-aware equality: numbers by value, datetimes by instant, blanks alike."""

    left = _normalize(before)
    right = _normalize(after)
    if isinstance(left, Decimal) or isinstance(right, Decimal):
        left_number, right_number = _as_decimal(left), _as_decimal(right)
        if left_number is not None and right_number is not None:
            return left_number == right_number
    return left == right


def display_value(value: Any) -> str:
    normalized = _normalize(value)
    if normalized is None:
        return EMPTY_DISPLAY
    if isinstance(normalized, bool):
        return "はい" if normalized else "いいえ"
    if isinstance(normalized, Decimal):
        if normalized == normalized.to_integral_value():
            return str(normalized.quantize(Decimal(1)))
        return format(normalized.normalize(), "f")
    if isinstance(normalized, (datetime, date)):
        return normalized.isoformat()
    return str(normalized)


def diff(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    field_labels: Mapping[str, str] = ITEM_FIELD_LABELS,
) -> list[FieldChange]:
    """Changed fields among ``field_labels``, in label-map order."""

    changes: list[FieldChange] = []
    for field, label in field_labels.items():
        old, new = before.get(field), after.get(field)
        if values_equal(old, new):
            continue
        changes.append(
            FieldChange(
                field=field,
                label=label,
                from_value=display_value(old),
                to_value=display_value(new),
            )
        )
    return changes


def snapshot(entity: Any, fields: Mapping[str, str] | Sequence[str] = ITEM_FIELD_LABELS) -> dict[str, Any]:
    return {field: getattr(entity, field) for field in fields}


async def record_change(
    session: AsyncSession,
    *,
    action: str,
    entity: Item,
    actor: Actor,
    changes: Sequence[FieldChange] | None = None,
    entity_type: str = ENTITY_ITEM,
) -> ChangeLog:
    """Persist one change log row in the caller's transaction."""

    item_type = getattr(entity, "item_type", None)
    entry = ChangeLog(
        entity_type=entity_type,
        entity_id=entity.id,
        entity_name=entity.name,
        entity_sku=entity.sku,
        action=action,
        changes=None if changes is None else [change.to_dict() for change in changes],
        user_id=actor.id,
        user_name=actor.name,
        item_type=item_type.value if isinstance(item_type, enum.Enum) else item_type,
    )
    session.add(entry)
    await session.flush()
    logger.debug("Recorded %s of %s %s by %s", action, entity_type, entity.sku, actor.name)
    return entry


async def record_create(session: AsyncSession, entity: Item, actor: Actor) -> ChangeLog:
    return await record_change(session, action=ACTION_CREATE, entity=entity, actor=actor)


async def record_update(
    session: AsyncSession,
    entity: Item,
    actor: Actor,
    changes: Sequence[FieldChange] | None = None,
) -> ChangeLog:
    return await record_change(
        session, action=ACTION_UPDATE, entity=entity, actor=actor, changes=changes
    )


async def record_delete(session: AsyncSession, entity: Item, actor: Actor) -> ChangeLog:
    return await record_change(session, action=ACTION_DELETE, entity=entity, actor=actor)


async def list_change_logs(
    session: AsyncSession, *, limit: int = 20, entity_id: str | None = None
) -> Sequence[ChangeLog]:
    stmt = select(ChangeLog).order_by(ChangeLog.created_at.desc(), ChangeLog.id.desc())
    if entity_id:
        stmt = stmt.where(ChangeLog.entity_id == entity_id)
    result = await session.execute(stmt.limit(limit))
    return result.scalars().all()


def normalize_log_limit(value: int | None, *, default: int = 20, maximum: int = 100) -> int:
    if value is None or value < 1:
        return default
    return min(value, maximum)


__all__ = [
    "ENTITY_ITEM",
    "ACTION_CREATE",
    "ACTION_UPDATE",
    "ACTION_DELETE",
    "EMPTY_DISPLAY",
    "ITEM_FIELD_LABELS",
    "Actor",
    "FieldChange",
    "values_equal",
    "display_value",
    "diff",
    "snapshot",
    "record_change",
    "record_create",
    "record_update",
    "record_delete",
    "list_change_logs",
    "normalize_log_limit",
]
