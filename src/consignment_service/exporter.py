"""CSV and XLS rendering of item exports and the import template."""
from __future__ import annotations

import csv
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import xlwt

from .importer import TAG_SEPARATOR, import_headers
from .models import Item, ItemType

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLS_MEDIA_TYPE = "application/vnd.ms-excel"

ITEM_TYPE_LABELS = {
    ItemType.PRODUCT: "商品",
    ItemType.CONSIGNMENT: "委託品",
}

EXPORT_HEADERS = [
    "種別",
    "ID",
    "SKU",
    "商品名",
    "メーカー",
    "品目",
    "仕様",
    "サイズ",
    "張地/カラー",
    "個数",
    "単位",
    "原価単価",
    "定価単価",
    "入荷年月",
    "場所",
    "デザイナー",
    "タグ",
    "備考",
    "販売済み",
    "販売日時",
    "作成日時",
    "更新日時",
]

TEMPLATE_SAMPLE_ROWS: List[Dict[str, Any]] = [
    {
        "種別": "商品",
        "商品名": "サンプル商品A",
        "メーカー": "メーカーA",
        "品目": "チェア",
        "仕様": "サンプル仕様",
        "サイズ": "W600xD600xH800",
        "張地/カラー": "ファブリック ブルー",
        "個数": 2,
        "単位": "台",
        "原価単価": 50000,
        "定価単価": 80000,
        "入荷年月": "2024年1月",
        "場所": "倉庫A",
        "デザイナー": "山田太郎",
        "タグ": "新商品|人気",
        "備考": "サンプル備考",
        "販売済み": "いいえ",
    },
    {
        "種別": "委託品",
        "商品名": "サンプル委託品B",
        "メーカー": "メーカーB",
        "品目": "テーブル",
        "単位": "脚",
        "定価単価": 150000,
        "入荷年月": "2024年2月",
        "場所": "店舗",
        "タグ": "委託|展示品",
    },
]


def _format_timestamp(value: Optional[datetime], tz: ZoneInfo) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S")


def _format_price(value: Optional[Decimal]) -> str:
    if not value:
        return ""
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")


def item_to_row(item: Item, tz: ZoneInfo) -> Dict[str, Any]:
    return {
        "種別": ITEM_TYPE_LABELS[item.item_type],
        "ID": item.id,
        "SKU": item.sku,
        "商品名": item.name,
        "メーカー": item.manufacturer.name if item.manufacturer else "",
        "品目": item.category.name if item.category else "",
        "仕様": item.specification or "",
        "サイズ": item.size or "",
        "張地/カラー": item.fabric_color or "",
        "個数": item.quantity,
        "単位": item.unit.name if item.unit else "",
        "原価単価": _format_price(item.cost_price),
        "定価単価": _format_price(item.list_price),
        "入荷年月": item.arrival_date or "",
        "場所": item.location.name if item.location else "",
        "デザイナー": item.designer or "",
        "タグ": TAG_SEPARATOR.join(tag.name for tag in item.tags),
        "備考": item.notes or "",
        "販売済み": "はい" if item.is_sold else "いいえ",
        "販売日時": _format_timestamp(item.sold_at, tz),
        "作成日時": _format_timestamp(item.created_at, tz),
        "更新日時": _format_timestamp(item.updated_at, tz),
    }


def items_to_rows(items: Iterable[Item], timezone_name: str) -> List[Dict[str, Any]]:
    tz = ZoneInfo(timezone_name)
    return [item_to_row(item, tz) for item in items]


def rows_to_csv(fieldnames: Sequence[str], rows: Iterable[Dict[str, Any]]) -> bytes:
    """UTF-8 with BOM so spreadsheet applications detect the encoding."""

    buffer = StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(fieldnames), extrasaction="ignore", lineterminator="\r\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({field: "" if row.get(field) is None else row.get(field) for field in fieldnames})
    return buffer.getvalue().encode("utf-8-sig")


def rows_to_xls(fieldnames: Sequence[str], rows: Iterable[Dict[str, Any]]) -> bytes:
    workbook = xlwt.Workbook(encoding="utf-8")
    sheet = workbook.add_sheet("Sheet1")
    header_style = xlwt.easyxf("font: bold on;")
    for col_index, field in enumerate(fieldnames):
        sheet.write(0, col_index, field, header_style)
    for row_index, row in enumerate(rows, start=1):
        for col_index, field in enumerate(fieldnames):
            value = row.get(field, "")
            if value is None:
                value = ""
            sheet.write(row_index, col_index, value)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render(fmt: str, fieldnames: Sequence[str], rows: Iterable[Dict[str, Any]]) -> tuple[bytes, str]:
    """Return ``(content, media_type)`` for ``csv`` or ``xls``."""

    if fmt == "xls":
        return rows_to_xls(fieldnames, rows), XLS_MEDIA_TYPE
    return rows_to_csv(fieldnames, rows), CSV_MEDIA_TYPE


def template_headers() -> List[str]:
    return import_headers()


def timestamped_filename(prefix: str, extension: str, timezone_name: str = "UTC") -> str:
    timestamp = datetime.now(ZoneInfo(timezone_name)).strftime("%Y%m%d-%H%M%S")
    return f"{prefix}_{timestamp}.{extension}"


__all__ = [
    "CSV_MEDIA_TYPE",
    "XLS_MEDIA_TYPE",
    "EXPORT_HEADERS",
    "TEMPLATE_SAMPLE_ROWS",
    "item_to_row",
    "items_to_rows",
    "rows_to_csv",
    "rows_to_xls",
    "render",
    "template_headers",
    "timestamped_filename",
]
