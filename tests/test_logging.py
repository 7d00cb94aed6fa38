from __future__ import annotations

import json
import logging

import pytest

from consignment_service import bulk, crud, importer, schemas
from consignment_service.config import Settings
from consignment_service.database import atomic
from consignment_service.errors import NegativeQuantityError
from consignment_service.logging_config import (
    ContextFilter,
    ContextFormatter,
    JsonFormatter,
    build_handler,
    log_context,
)


def _record(message: str = "hello") -> logging.LogRecord:
    record = logging.LogRecord("consignment_service.test", logging.INFO, __file__, 1, message, (), None)
    ContextFilter().filter(record)
    return record


def test_context_nests_and_resets() -> None:
    with log_context(action="import"):
        with log_context(actor="admin"):
            assert _record().context == {"action": "import", "actor": "admin"}
        assert _record().context == {"action": "import"}
    assert _record().context == {}


def test_formatters_render_context() -> None:
    with log_context(action="bulk_edit", actor="admin"):
        record = _record("Updated 3 items")

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "Updated 3 items"
    assert (payload["action"], payload["actor"]) == ("bulk_edit", "admin")
    assert ContextFormatter("%(message)s").format(record) == "Updated 3 items [action=bulk_edit actor=admin]"
    assert ContextFormatter("%(message)s").format(_record("plain")) == "plain"


def test_build_handler_picks_formatter() -> None:
    assert isinstance(build_handler(Settings(log_json=True)).formatter, JsonFormatter)
    assert isinstance(build_handler(Settings(log_json=False)).formatter, ContextFormatter)


@pytest.fixture()
def context_caplog(caplog):
    caplog.handler.addFilter(ContextFilter())
    caplog.set_level(logging.INFO, logger="consignment_service")
    return caplog


async def test_rejected_bulk_increment_logs_action(session, actor, context_caplog) -> None:
    async with atomic(session):
        item = await crud.create_item(
            session, schemas.validate_item_create({"name": "Chair", "cost_price": "1", "quantity": 1}), actor
        )
        item_id = item.id

    with pytest.raises(NegativeQuantityError):
        async with atomic(session):
            await bulk.bulk_edit(
                session,
                [item_id],
                schemas.BulkEditUpdates.model_validate({"quantity": {"mode": "increment", "value": -5}}),
                actor,
            )

    warnings = [r for r in context_caplog.records if r.levelno == logging.WARNING]
    assert warnings[0].context == {"action": "bulk_edit", "actor": actor.name}


async def test_import_summary_logs_action(session, actor, context_caplog) -> None:
    rows = importer.parse_csv_rows("種別,商品名,原価単価\n商品,Chair,100\n")
    async with atomic(session):
        await importer.import_items(session, rows, actor)

    summary = [r for r in context_caplog.records if r.getMessage().startswith("Imported 1 of 1 rows")]
    assert summary[0].context == {"action": "import", "actor": actor.name}
