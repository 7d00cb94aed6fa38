from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import NoResultFound

from consignment_service import bulk, crud, schemas
from consignment_service.database import atomic
from consignment_service.errors import NegativeQuantityError
from consignment_service.models import ChangeLog, ItemImage, ItemTag, Location, Tag


async def _create_items(session, actor, quantities):
    async with atomic(session):
        items = []
        for index, quantity in enumerate(quantities):
            payload = {"name": f"Item {index}", "cost_price": "10", "quantity": quantity}
            items.append(await crud.create_item(session, schemas.validate_item_create(payload), actor))
    return items


async def _quantities(session, ids) -> list[int]:
    return [(await crud.get_item(session, item_id)).quantity for item_id in ids]


def _updates(**fields) -> schemas.BulkEditUpdates:
    return schemas.BulkEditUpdates.model_validate(fields)


async def test_increment_applies_per_record(session, actor) -> None:
    items = await _create_items(session, actor, [1, 5, 10])
    ids = [item.id for item in items]

    async with atomic(session):
        result = await bulk.bulk_edit(
            session, ids, _updates(quantity={"mode": "increment", "value": 2}), actor
        )

    assert result.updated_count == 3
    assert await _quantities(session, ids) == [3, 7, 12]


async def test_increment_below_zero_aborts_whole_batch(session, actor) -> None:
    items = await _create_items(session, actor, [10, 1, 10])
    ids = [item.id for item in items]

    with pytest.raises(NegativeQuantityError) as excinfo:
        async with atomic(session):
            await bulk.bulk_edit(
                session, ids, _updates(quantity={"mode": "increment", "value": -3}), actor
            )

    assert excinfo.value.item_id == ids[1]
    assert excinfo.value.current == 1
    assert await _quantities(session, ids) == [10, 1, 10]


async def test_increment_zero_is_noop(session, actor) -> None:
    items = await _create_items(session, actor, [4, 0])
    ids = [item.id for item in items]

    async with atomic(session):
        result = await bulk.bulk_edit(
            session, ids, _updates(quantity={"mode": "increment", "value": 0}), actor
        )

    assert result.updated_count == 2
    assert await _quantities(session, ids) == [4, 0]


async def test_set_mode_assigns_same_value(session, actor) -> None:
    items = await _create_items(session, actor, [4, 9])
    ids = [item.id for item in items]

    async with atomic(session):
        result = await bulk.bulk_edit(
            session, ids, _updates(quantity={"mode": "set", "value": 6}), actor
        )

    assert result.updated_count == 2
    assert await _quantities(session, ids) == [6, 6]


async def test_reference_update_and_missing_ids(session, actor) -> None:
    items = await _create_items(session, actor, [1, 1])
    ids = [item.id for item in items]

    async with atomic(session):
        shelf = await crud.create_master_data(session, Location, schemas.MasterDataCreate(name="Shelf"))

    async with atomic(session):
        result = await bulk.bulk_edit(
            session, [ids[0], "missing"], _updates(location_id=shelf.id), actor
        )

    assert result.updated_count == 1
    assert (await crud.get_item(session, ids[0])).location_id == shelf.id
    assert (await crud.get_item(session, ids[1])).location_id is None


async def test_unknown_reference_rejected(session, actor) -> None:
    items = await _create_items(session, actor, [1])
    ids = [item.id for item in items]

    with pytest.raises(NoResultFound):
        async with atomic(session):
            await bulk.bulk_edit(session, [items[0].id], _updates(category_id="nope"), actor)


async def test_no_existing_ids_rejected(session, actor) -> None:
    with pytest.raises(NoResultFound):
        async with atomic(session):
            await bulk.bulk_edit(session, ["nope"], _updates(location_id=None), actor)


async def test_tags_replaced_with_empty_list(session, actor) -> None:
    async with atomic(session):
        tag = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="sale"))
        items = [
            await crud.create_item(
                session,
                schemas.validate_item_create({"name": f"T{n}", "cost_price": "1", "tag_ids": [tag.id]}),
                actor,
            )
            for n in range(2)
        ]

    async with atomic(session):
        await bulk.bulk_edit(session, [i.id for i in items], _updates(tag_ids=[]), actor)

    remaining = (await session.execute(select(func.count()).select_from(ItemTag))).scalar_one()
    assert remaining == 0


async def test_tags_replaced_for_every_target(session, actor) -> None:
    async with atomic(session):
        old = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="old"))
        a = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="a"))
        b = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="b"))
        items = [
            await crud.create_item(
                session,
                schemas.validate_item_create({"name": f"T{n}", "cost_price": "1", "tag_ids": [old.id]}),
                actor,
            )
            for n in range(2)
        ]

    async with atomic(session):
        result = await bulk.bulk_edit(session, [i.id for i in items], _updates(tag_ids=[a.id, b.id]), actor)

    assert result.updated_count == 2
    for item in items:
        refreshed = await crud.get_item(session, item.id)
        assert [tag.name for tag in refreshed.tags] == ["a", "b"]


async def test_bulk_edit_always_logs_without_changes(session, actor) -> None:
    items = await _create_items(session, actor, [1, 2])
    ids = [item.id for item in items]

    async with atomic(session):
        await bulk.bulk_edit(
            session, ids, _updates(quantity={"mode": "set", "value": 2}), actor
        )

    logs = (
        await session.execute(select(ChangeLog).where(ChangeLog.action == "update"))
    ).scalars().all()
    assert sorted(log.entity_id for log in logs) == sorted(i.id for i in items)
    assert all(log.changes is None for log in logs)


async def test_bulk_delete_logs_each_item_and_cascades(session, actor) -> None:
    async with atomic(session):
        tag = await crud.create_master_data(session, Tag, schemas.MasterDataCreate(name="sale"))
        items = [
            await crud.create_item(
                session,
                schemas.validate_item_create(
                    {
                        "name": f"Chair {n}",
                        "cost_price": "1",
                        "tag_ids": [tag.id],
                        "images": [{"url": f"https://example.test/{n}.jpg"}],
                    }
                ),
                actor,
            )
            for n in range(3)
        ]
    snapshots = {item.id: (item.name, item.sku) for item in items}

    async with atomic(session):
        result = await bulk.bulk_delete(session, [i.id for i in items] + ["missing"], actor)

    assert result.deleted_count == 3
    logs = (
        await session.execute(select(ChangeLog).where(ChangeLog.action == "delete"))
    ).scalars().all()
    assert len(logs) == 3
    assert {log.entity_id: (log.entity_name, log.entity_sku) for log in logs} == snapshots
    assert (await session.execute(select(func.count()).select_from(ItemTag))).scalar_one() == 0
    assert (await session.execute(select(func.count()).select_from(ItemImage))).scalar_one() == 0


async def test_increment_scenario(session, actor) -> None:
    (item,) = await _create_items(session, actor, [5])
    item_id = item.id

    async with atomic(session):
        result = await bulk.bulk_edit(
            session, [item_id], _updates(quantity={"mode": "increment", "value": -3}), actor
        )
    assert result.updated_count == 1
    assert await _quantities(session, [item_id]) == [2]

    with pytest.raises(NegativeQuantityError):
        async with atomic(session):
            await bulk.bulk_edit(
                session, [item_id], _updates(quantity={"mode": "increment", "value": -10}), actor
            )
    assert await _quantities(session, [item_id]) == [2]


async def test_rejected_increment_discards_reference_update(session, actor) -> None:
    items = await _create_items(session, actor, [10, 1, 10])
    ids = [item.id for item in items]
    async with atomic(session):
        shelf = await crud.create_master_data(session, Location, schemas.MasterDataCreate(name="Shelf"))
        shelf_id = shelf.id

    with pytest.raises(NegativeQuantityError) as excinfo:
        async with atomic(session):
            await bulk.bulk_edit(
                session,
                ids,
                _updates(location_id=shelf_id, quantity={"mode": "increment", "value": -3}),
                actor,
            )

    assert excinfo.value.item_id == ids[1]
    assert await _quantities(session, ids) == [10, 1, 10]
    for item_id in ids:
        assert (await crud.get_item(session, item_id)).location_id is None


async def test_increment_reads_stored_quantity(session, session_factory, actor) -> None:
    (item,) = await _create_items(session, actor, [5])
    item_id = item.id

    async with session_factory() as other:
        async with atomic(other):
            await crud.update_item(other, await crud.get_item(other, item_id), schemas.ItemUpdate(quantity=1), actor)

    with pytest.raises(NegativeQuantityError) as excinfo:
        async with atomic(session):
            await bulk.bulk_edit(
                session, [item_id], _updates(quantity={"mode": "increment", "value": -3}), actor
            )

    assert excinfo.value.current == 1
    assert await _quantities(session, [item_id]) == [1]


def test_updates_require_a_field() -> None:
    with pytest.raises(ValueError):
        schemas.BulkEditUpdates.model_validate({})


def test_request_bounds_ids() -> None:
    updates = {"location_id": None}
    with pytest.raises(ValueError):
        schemas.BulkEditRequest.model_validate({"ids": [], "updates": updates})
    with pytest.raises(ValueError):
        schemas.BulkEditRequest.model_validate({"ids": [str(n) for n in range(101)], "updates": updates})
    assert len(schemas.BulkEditRequest.model_validate({"ids": ["a"] * 100, "updates": updates}).ids) == 100
