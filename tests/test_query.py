from __future__ import annotations

import pytest

from consignment_service import crud, schemas
from consignment_service.database import atomic
from consignment_service.errors import InvalidPaginationError
from consignment_service.models import Manufacturer, Tag
from consignment_service.query import (
    ItemFilters,
    build_item_query,
    list_item_ids,
    paginate_items,
    parse_id_list,
    parse_item_type,
)


@pytest.fixture()
async def catalog(session, actor):
    async with atomic(session):
        acme = await crud.create_master_data(session, Manufacturer, schemas.MasterDataCreate(name="Acme"))
        zenith = await crud.create_master_data(session, Manufacturer, schemas.MasterDataCreate(name="Zenith"))
        sale = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="sale"))
        new = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="new"))
        rows = [
            {"name": "Oak Chair", "cost_price": "100", "quantity": 1, "manufacturer_id": zenith.id, "tag_ids": [sale.id]},
            {"name": "Pine Table", "cost_price": "300", "quantity": 2, "manufacturer_id": acme.id, "specification": "oak legs"},
            {"name": "Lamp", "cost_price": "50", "quantity": 5, "tag_ids": [new.id], "arrival_date": "2024年3月"},
            {"name": "Sold Sofa", "cost_price": "900", "quantity": 0, "is_sold": True},
            {"item_type": "CONSIGNMENT", "name": "Guest Oak Desk", "quantity": 1, "manufacturer_id": acme.id},
        ]
        items = {}
        for row in rows:
            item = await crud.create_item(session, schemas.validate_item_create(row), actor)
            items[item.name] = item
    return {"items": items, "acme": acme, "zenith": zenith, "sale": sale, "new": new}


async def _names(session, filters: ItemFilters, sort_by=None, sort_order=None) -> list[str]:
    query = build_item_query(filters, sort_by, sort_order)
    items, _ = await paginate_items(session, query, page=1, limit=100, max_page_size=100)
    return [item.name for item in items]


def test_parse_item_type() -> None:
    assert parse_item_type("product").value == "PRODUCT"
    assert parse_item_type("Consignment").value == "CONSIGNMENT"
    assert parse_item_type("other") is None
    assert parse_item_type(None) is None


def test_parse_id_list() -> None:
    assert parse_id_list("a, b,,c") == ["a", "b", "c"]
    assert parse_id_list(None) == []


async def test_search_matches_name_and_specification(session, catalog) -> None:
    names = await _names(session, ItemFilters(search="OAK"), "name", "asc")
    assert names == ["Guest Oak Desk", "Oak Chair", "Pine Table"]


async def test_sold_items_hidden_by_default(session, catalog) -> None:
    assert "Sold Sofa" not in await _names(session, ItemFilters())
    assert "Sold Sofa" in await _names(session, ItemFilters(include_sold=True))


async def test_tag_filter_matches_any(session, catalog) -> None:
    filters = ItemFilters(tag_ids=[catalog["sale"].id, catalog["new"].id])
    assert sorted(await _names(session, filters)) == ["Lamp", "Oak Chair"]


async def test_item_type_and_reference_filters(session, catalog) -> None:
    consignments = await _names(session, ItemFilters(item_type=parse_item_type("consignment")))
    assert consignments == ["Guest Oak Desk"]
    by_acme = await _names(session, ItemFilters(manufacturer_id=catalog["acme"].id), "name", "asc")
    assert by_acme == ["Guest Oak Desk", "Pine Table"]
    assert await _names(session, ItemFilters(arrival_date="2024年3")) == ["Lamp"]


async def test_sort_by_related_name(session, catalog) -> None:
    names = await _names(
        session, ItemFilters(manufacturer_id=catalog["zenith"].id), "manufacturer", "desc"
    )
    assert names == ["Oak Chair"]
    ordered = await _names(session, ItemFilters(), "manufacturer", "asc")
    # items without a manufacturer sort first in ascending order on SQLite
    assert ordered[-1] == "Oak Chair"


async def test_unknown_sort_falls_back_to_newest_first(session, catalog) -> None:
    names = await _names(session, ItemFilters(), "not_a_field", "asc")
    assert names == ["Guest Oak Desk", "Lamp", "Pine Table", "Oak Chair"]


async def test_pagination_counts(session, catalog) -> None:
    query = build_item_query(ItemFilters(), "name", "asc")
    items, pagination = await paginate_items(session, query, page=2, limit=3, max_page_size=100)

    assert pagination == {"total": 4, "page": 2, "limit": 3, "total_pages": 2}
    assert [item.name for item in items] == ["Pine Table"]


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
async def test_pagination_out_of_range_rejected(session, page, limit) -> None:
    query = build_item_query(ItemFilters())
    with pytest.raises(InvalidPaginationError):
        await paginate_items(session, query, page=page, limit=limit, max_page_size=100)


async def test_list_item_ids_ignores_paging(session, catalog) -> None:
    query = build_item_query(ItemFilters(include_sold=True))
    ids = await list_item_ids(session, query)
    assert set(ids) == {item.id for item in catalog["items"].values()}
    assert len(await list_item_ids(session, query, limit=2)) == 2
