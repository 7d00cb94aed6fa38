"""CSV and XLS item import with per-row validation.

Rows are processed strictly in file order: a later row may reference a
manufacturer, category, location, unit or tag that an earlier row of the
same run created, and it must reuse that row instead of creating a
duplicate.
"""
from __future__ import annotations

import csv
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from io import StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import xlrd
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas
from .changelog import Actor
from .errors import ImportFormatError, RowImportError
from .logging_config import log_context
from .models import Category, ItemType, Location, Manufacturer, MasterDataMixin, Tag, Unit

logger = logging.getLogger(__name__)

TAG_SEPARATOR = "|"

# Display header first; the rest are accepted aliases.
IMPORT_COLUMNS: Dict[str, tuple[str, ...]] = {
    "item_type": ("種別", "type", "item_type", "itemtype"),
    "name": ("商品名", "name"),
    "manufacturer": ("メーカー", "manufacturer"),
    "category": ("品目", "category"),
    "specification": ("仕様", "specification"),
    "size": ("サイズ", "size"),
    "fabric_color": ("張地/カラー", "fabric_color", "fabriccolor"),
    "quantity": ("個数", "quantity"),
    "unit": ("単位", "unit"),
    "cost_price": ("原価単価", "cost_price", "costprice"),
    "list_price": ("定価単価", "list_price", "listprice"),
    "arrival_date": ("入荷年月", "arrival_date", "arrivaldate"),
    "location": ("場所", "location"),
    "designer": ("デザイナー", "designer"),
    "tags": ("タグ", "tags"),
    "notes": ("備考", "notes"),
    "is_sold": ("販売済み", "sold", "is_sold", "issold"),
    "sold_at": ("販売日時", "sold_at", "soldat"),
}

REQUIRED_COLUMNS = ("item_type", "name")

_ITEM_TYPE_VALUES = {
    "商品": ItemType.PRODUCT,
    "product": ItemType.PRODUCT,
    "委託品": ItemType.CONSIGNMENT,
    "委託": ItemType.CONSIGNMENT,
    "consignment": ItemType.CONSIGNMENT,
}

_TRUE_VALUES = {"true", "1", "yes", "y", "はい", "済", "販売済み"}
_FALSE_VALUES = {"false", "0", "no", "n", "いいえ", "未", "未販売"}

_INTEGER_RE = re.compile(r"[+-]?\d+")
_EXCEL_EPOCH = date(1899, 12, 30)

_MASTER_COLUMNS: Dict[str, type[MasterDataMixin]] = {
    "manufacturer": Manufacturer,
    "category": Category,
    "location": Location,
    "unit": Unit,
}


def _normalize_csv_key(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip().lower()
    if "\ufeff" in text:
        text = text.replace("\ufeff", "")
    return text.replace(" ", "")


_ALIAS_TO_COLUMN: Dict[str, str] = {
    _normalize_csv_key(alias): column
    for column, aliases in IMPORT_COLUMNS.items()
    for alias in aliases
}


def import_headers() -> List[str]:
    return [aliases[0] for aliases in IMPORT_COLUMNS.values()]


@dataclass
class ImportRow:
    """One non-blank data row keyed by canonical column name."""

    number: int
    values: Dict[str, str]

    def get(self, column: str) -> str:
        return (self.values.get(column) or "").strip()


def _map_header(labels: Sequence[Any]) -> Dict[int, str]:
    columns: Dict[int, str] = {}
    for index, label in enumerate(labels):
        column = _ALIAS_TO_COLUMN.get(_normalize_csv_key(label))
        if column is not None and column not in columns.values():
            columns[index] = column
    missing = [
        IMPORT_COLUMNS[column][0] for column in REQUIRED_COLUMNS if column not in columns.values()
    ]
    if missing:
        raise ImportFormatError(f"Missing required header: {', '.join(missing)}")
    return columns


def _collect_rows(table: Iterable[Sequence[str]]) -> List[ImportRow]:
    """Skip blank rows; the header is row 1 and data rows are numbered from 2."""

    non_blank = [row for row in table if any(str(cell).strip() for cell in row)]
    if not non_blank:
        raise ImportFormatError("Missing header row")
    columns = _map_header(non_blank[0])
    rows: List[ImportRow] = []
    for number, row in enumerate(non_blank[1:], start=2):
        values = {column: row[index] if index < len(row) else "" for index, column in columns.items()}
        rows.append(ImportRow(number=number, values=values))
    if not rows:
        raise ImportFormatError("The file contains no data rows")
    return rows


def parse_csv_rows(text: str) -> List[ImportRow]:
    if text.startswith("\ufeff"):
        text = text[1:]
    return _collect_rows(csv.reader(StringIO(text)))


def parse_xls_rows(data: bytes) -> List[ImportRow]:
    try:
        workbook = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        raise ImportFormatError("Invalid XLS file") from exc
    if workbook.nsheets == 0:
        raise ImportFormatError("Missing worksheet")
    sheet = workbook.sheet_by_index(0)

    table: List[List[str]] = []
    for row_index in range(sheet.nrows):
        cells: List[str] = []
        for col_index in range(sheet.ncols):
            cell = sheet.cell(row_index, col_index)
            value = cell.value
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                processed = ""
            elif cell.ctype in (xlrd.XL_CELL_NUMBER, xlrd.XL_CELL_DATE):
                processed = str(int(value)) if float(value).is_integer() else str(value)
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                processed = "true" if value else "false"
            else:
                processed = str(value).strip()
            cells.append(processed)
        table.append(cells)
    return _collect_rows(table)


def extract_rows(filename: str | None, raw_bytes: bytes) -> List[ImportRow]:
    """Parse an uploaded file by extension, falling back to XLS for non-UTF-8 data."""

    if not raw_bytes:
        raise ImportFormatError("Empty file")
    extension = Path(filename or "").suffix.lower()
    if extension == ".xls":
        return parse_xls_rows(raw_bytes)
    try:
        text = raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        try:
            return parse_xls_rows(raw_bytes)
        except ImportFormatError as exc:
            raise ImportFormatError("File must be UTF-8 encoded CSV or valid XLS") from exc
    return parse_csv_rows(text)


# ----------------------------------------------------------------------
# Cell parsers
# ----------------------------------------------------------------------
def _normalize_number(value: str) -> str:
    return value.replace(",", "").strip()


def parse_item_type(value: str) -> ItemType:
    text = value.strip()
    if not text:
        return ItemType.PRODUCT
    item_type = _ITEM_TYPE_VALUES.get(text) or _ITEM_TYPE_VALUES.get(text.lower())
    if item_type is None:
        raise RowImportError(f"Unrecognized type {text!r}: use 商品 or 委託品")
    return item_type


def parse_quantity(value: str) -> int:
    text = _normalize_number(value)
    if not text:
        return 0
    if not _INTEGER_RE.fullmatch(text) or int(text) < 0:
        raise RowImportError("Quantity must be a whole number of 0 or more")
    return int(text)


def parse_decimal(value: str, label: str) -> Optional[Decimal]:
    text = _normalize_number(value)
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise RowImportError(f"{label} must be a number") from None
    if not number.is_finite():
        raise RowImportError(f"{label} must be a number")
    return number


def parse_bool(value: str) -> Optional[bool]:
    text = value.strip().lower()
    if not text:
        return None
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise RowImportError("Sold must be はい/いいえ or true/false")


def parse_timestamp(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    normalized = text.replace("/", "-")
    if normalized[-1] in "zZ":
        normalized = normalized[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        raise RowImportError(f"Sold at {text!r} is not a valid date/time") from None


def convert_excel_serial_date(value: str) -> Optional[str]:
    """Turn an Excel serial day number into ``YYYY年M月``; other text is kept."""

    text = value.strip()
    if not text:
        return None
    if "年" in text or not text.isdigit() or int(text) < 1:
        return text
    converted = _EXCEL_EPOCH + timedelta(days=int(text))
    return f"{converted.year}年{converted.month}月"


def _describe_validation_error(exc: ValidationError) -> str:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part not in ("PRODUCT", "CONSIGNMENT"))
        details.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "Validation error: " + " / ".join(details)


# ----------------------------------------------------------------------
# Master data resolution
# ----------------------------------------------------------------------
class MasterDataResolver:
    """Name to id lookups seeded from the store, creating missing rows once."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._cache: Dict[type[MasterDataMixin], Dict[str, str]] = {}
        self.created = 0

    async def prime(self) -> None:
        for model in (*_MASTER_COLUMNS.values(), Tag):
            result = await self.session.execute(select(model.name, model.id))
            self._cache[model] = {name: entity_id for name, entity_id in result.all()}

    async def resolve(self, model: type[MasterDataMixin], name: str) -> Optional[str]:
        name = name.strip()
        if not name:
            return None
        names = self._cache.setdefault(model, {})
        if name in names:
            return names[name]
        async with self.session.begin_nested():
            entity = await crud.create_master_data(
                self.session, model, schemas.MasterDataCreate(name=name)
            )
        names[name] = entity.id
        self.created += 1
        logger.info("Created %s %r during import", model.__name__, name)
        return entity.id

    async def resolve_tags(self, value: str) -> List[str]:
        tag_ids: List[str] = []
        for name in value.split(TAG_SEPARATOR):
            tag_id = await self.resolve(Tag, name)
            if tag_id is not None and tag_id not in tag_ids:
                tag_ids.append(tag_id)
        return tag_ids


async def build_item_payload(row: ImportRow, resolver: MasterDataResolver) -> Dict[str, Any]:
    """Parse one row and resolve its master data into a create payload."""

    item_type = parse_item_type(row.get("item_type"))
    name = row.get("name")
    if not name:
        raise RowImportError("Name is required")
    cost_price = None
    if item_type is ItemType.PRODUCT:
        cost_price = parse_decimal(row.get("cost_price"), "Cost price")
        if cost_price is None:
            raise RowImportError("Cost price is required for products")
    quantity = parse_quantity(row.get("quantity"))
    list_price = parse_decimal(row.get("list_price"), "List price")
    is_sold = parse_bool(row.get("is_sold"))
    sold_at = parse_timestamp(row.get("sold_at"))

    payload: Dict[str, Any] = {
        "item_type": item_type.value,
        "name": name,
        "quantity": quantity,
        "list_price": list_price,
        "specification": row.get("specification") or None,
        "size": row.get("size") or None,
        "fabric_color": row.get("fabric_color") or None,
        "arrival_date": convert_excel_serial_date(row.get("arrival_date")),
        "designer": row.get("designer") or None,
        "notes": row.get("notes") or None,
        "is_sold": True if sold_at is not None else bool(is_sold),
        "sold_at": sold_at,
    }
    if cost_price is not None:
        payload["cost_price"] = cost_price
    for column, model in _MASTER_COLUMNS.items():
        payload[f"{column}_id"] = await resolver.resolve(model, row.get(column))
    payload["tag_ids"] = await resolver.resolve_tags(row.get("tags"))
    return payload


async def import_items(
    session: AsyncSession, rows: Sequence[ImportRow], actor: Actor
) -> schemas.ImportResult:
    """Create an item per row, collecting row errors instead of stopping.

    Each item is created in its own savepoint. Master data created while
    resolving a row is kept even when that row fails afterwards.
    """

    with log_context(action="import", actor=actor.name):
        resolver = MasterDataResolver(session)
        await resolver.prime()
        imported = 0
        errors: List[schemas.ImportRowError] = []

        for row in rows:
            try:
                payload = await build_item_payload(row, resolver)
                data = schemas.validate_item_create(payload)
            except RowImportError as exc:
                errors.append(schemas.ImportRowError(row=row.number, message=str(exc)))
                continue
            except ValidationError as exc:
                errors.append(
                    schemas.ImportRowError(row=row.number, message=_describe_validation_error(exc))
                )
                continue
            except SQLAlchemyError:
                logger.exception("Failed to resolve master data for row %d", row.number)
                errors.append(
                    schemas.ImportRowError(row=row.number, message="Failed to save master data")
                )
                continue

            try:
                async with session.begin_nested():
                    await crud.create_item(session, data, actor)
            except SQLAlchemyError:
                logger.exception("Failed to import row %d", row.number)
                errors.append(schemas.ImportRowError(row=row.number, message="Failed to save the row"))
                continue
            imported += 1

        logger.info(
            "Imported %d of %d rows (%d errors, %d master data rows created)",
            imported,
            len(rows),
            len(errors),
            resolver.created,
        )
        return schemas.ImportResult(imported=imported, errors=errors)


__all__ = [
    "IMPORT_COLUMNS",
    "REQUIRED_COLUMNS",
    "TAG_SEPARATOR",
    "ImportRow",
    "import_headers",
    "parse_csv_rows",
    "parse_xls_rows",
    "extract_rows",
    "parse_item_type",
    "parse_quantity",
    "parse_decimal",
    "parse_bool",
    "parse_timestamp",
    "convert_excel_serial_date",
    "MasterDataResolver",
    "build_item_payload",
    "import_items",
]
