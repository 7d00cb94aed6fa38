"""FastAPI router configuration."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Sequence

from fastapi import (
    APIRouter,
    Body,
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import bulk, changelog, crud, exporter, importer, schemas
from .auth import TokenSigner, hash_password, verify_password
from .changelog import Actor
from .config import Settings, get_settings
from .database import atomic, get_session
from .dependencies import (
    get_current_actor,
    get_current_user,
    provide_settings,
    provide_token_signer,
    require_admin,
)
from .errors import (
    BusinessRuleViolation,
    DuplicateNameError,
    ImportFormatError,
    InvalidPaginationError,
    NegativeQuantityError,
)
from .logging_config import setup_logging
from .models import MASTER_DATA_MODELS, MasterDataMixin, MaterialType
from .query import ItemFilters, build_item_query, list_item_ids, paginate_items, parse_id_list, parse_item_type
from .quantity import resolve_quantity

logger = logging.getLogger(__name__)

router = APIRouter()
protected = APIRouter(dependencies=[Depends(get_current_user)])


@contextmanager
def _http_errors() -> Iterator[None]:
    """Translate domain errors raised inside a route into HTTP errors."""

    try:
        yield
    except NoResultFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except DuplicateNameError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (BusinessRuleViolation, InvalidPaginationError, ImportFormatError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def item_filters(
    search: Optional[str] = None,
    category_id: Optional[str] = None,
    manufacturer_id: Optional[str] = None,
    location_id: Optional[str] = None,
    arrival_date: Optional[str] = None,
    tag_ids: Optional[str] = Query(None, description="Comma separated tag ids; matches any."),
    include_sold: bool = False,
    item_type: Optional[str] = Query(None, alias="type"),
) -> ItemFilters:
    return ItemFilters(
        search=search,
        category_id=category_id,
        manufacturer_id=manufacturer_id,
        location_id=location_id,
        arrival_date=arrival_date,
        tag_ids=parse_id_list(tag_ids),
        include_sold=include_sold,
        item_type=parse_item_type(item_type),
    )


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----------------------------------------------------------------------
# System and authentication
# ----------------------------------------------------------------------
@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


@router.post("/auth/token", response_model=schemas.TokenResponse, tags=["auth"])
async def issue_token(
    payload: schemas.TokenRequest,
    session: AsyncSession = Depends(get_session),
    signer: TokenSigner = Depends(provide_token_signer),
) -> schemas.TokenResponse:
    user = await crud.get_user_by_username(session, payload.username)
    if user is None or not verify_password(user.password_hash, payload.password):
        logger.warning("Rejected token request for %r", payload.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    token, issued_at, expires_at = signer.issue(user.username, payload.expires_in)
    return schemas.TokenResponse(token=token, issued_at=issued_at, expires_at=expires_at)


@protected.get(
    "/users",
    response_model=list[schemas.UserOut],
    dependencies=[Depends(require_admin)],
    tags=["users"],
)
async def list_users(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.UserOut]:
    users = await crud.list_users(session)
    return [schemas.UserOut.model_validate(user) for user in users]


@protected.post(
    "/users",
    response_model=schemas.UserOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
    tags=["users"],
)
async def create_user(
    payload: schemas.UserCreate, session: AsyncSession = Depends(get_session)
) -> schemas.UserOut:
    with _http_errors():
        async with atomic(session):
            user = await crud.create_user(
                session,
                username=payload.username,
                password_hash=hash_password(payload.password),
                role=payload.role,
            )
    return schemas.UserOut.model_validate(user)


# ----------------------------------------------------------------------
# Master data
# ----------------------------------------------------------------------
def _register_master_data_routes(path: str, model: type[MasterDataMixin]) -> None:
    out_schema = schemas.MaterialTypeOut if model is MaterialType else schemas.MasterDataOut
    tags = ["master-data"]

    async def list_entities(session: AsyncSession = Depends(get_session)) -> Any:
        entities = await crud.list_master_data(session, model)
        return [out_schema.model_validate(entity) for entity in entities]

    async def create_entity(
        payload: schemas.MasterDataCreate, session: AsyncSession = Depends(get_session)
    ) -> Any:
        with _http_errors():
            async with atomic(session):
                entity = await crud.create_master_data(session, model, payload)
        return out_schema.model_validate(entity)

    async def get_entity(entity_id: str, session: AsyncSession = Depends(get_session)) -> Any:
        with _http_errors():
            entity = await crud.get_master_data(session, model, entity_id)
        return out_schema.model_validate(entity)

    async def update_entity(
        entity_id: str,
        payload: schemas.MasterDataUpdate,
        session: AsyncSession = Depends(get_session),
    ) -> Any:
        with _http_errors():
            async with atomic(session):
                entity = await crud.get_master_data(session, model, entity_id)
                entity = await crud.update_master_data(session, entity, payload)
        return out_schema.model_validate(entity)

    async def delete_entity(entity_id: str, session: AsyncSession = Depends(get_session)) -> None:
        with _http_errors():
            async with atomic(session):
                entity = await crud.get_master_data(session, model, entity_id)
                await crud.delete_master_data(session, entity)

    name = path.replace("-", "_")
    protected.add_api_route(
        f"/{path}", list_entities, methods=["GET"], response_model=list[out_schema],
        name=f"list_{name}", tags=tags,
    )
    protected.add_api_route(
        f"/{path}", create_entity, methods=["POST"], response_model=out_schema,
        status_code=status.HTTP_201_CREATED, name=f"create_{name}", tags=tags,
    )
    protected.add_api_route(
        f"/{path}/{{entity_id}}", get_entity, methods=["GET"], response_model=out_schema,
        name=f"get_{name}", tags=tags,
    )
    protected.add_api_route(
        f"/{path}/{{entity_id}}", update_entity, methods=["PUT"], response_model=out_schema,
        name=f"update_{name}", tags=tags,
    )
    protected.add_api_route(
        f"/{path}/{{entity_id}}", delete_entity, methods=["DELETE"],
        status_code=status.HTTP_204_NO_CONTENT, name=f"delete_{name}", tags=tags,
    )


for _path, _model in MASTER_DATA_MODELS.items():
    _register_master_data_routes(_path, _model)


@protected.get("/filters", response_model=schemas.FiltersOut, tags=["master-data"])
async def list_filters(session: AsyncSession = Depends(get_session)) -> schemas.FiltersOut:
    lists: Dict[str, Any] = {}
    for path, model in MASTER_DATA_MODELS.items():
        lists[path.replace("-", "_")] = await crud.list_master_data(session, model)
    return schemas.FiltersOut.model_validate(lists, from_attributes=True)


# ----------------------------------------------------------------------
# Items: collection level routes (declared before /items/{item_id})
# ----------------------------------------------------------------------
@protected.get("/items", response_model=schemas.ItemListResponse, tags=["items"])
async def list_items(
    filters: ItemFilters = Depends(item_filters),
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.ItemListResponse:
    query = build_item_query(filters, sort_by, sort_order)
    with _http_errors():
        items, pagination = await paginate_items(
            session,
            query,
            page=page,
            limit=settings.default_page_size if limit is None else limit,
            max_page_size=settings.max_page_size,
        )
    return schemas.ItemListResponse(
        items=[schemas.ItemOut.model_validate(item) for item in items],
        pagination=schemas.Pagination(**pagination),
    )


@protected.get("/items/ids", response_model=schemas.ItemIdsResponse, tags=["items"])
async def list_matching_item_ids(
    filters: ItemFilters = Depends(item_filters),
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    limit: Optional[int] = Query(None, ge=1),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.ItemIdsResponse:
    query = build_item_query(filters, sort_by, sort_order)
    cap = settings.select_all_limit if limit is None else min(limit, settings.select_all_limit)
    return schemas.ItemIdsResponse(ids=await list_item_ids(session, query, limit=cap))


@protected.get("/items/export", tags=["items"])
async def export_items(
    filters: ItemFilters = Depends(item_filters),
    fmt: str = Query("csv", alias="format", pattern="^(csv|xls)$"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Response:
    query = build_item_query(filters, "sku", "asc")
    items = (await session.execute(query.select_items())).scalars().all()
    rows = exporter.items_to_rows(items, settings.default_timezone)
    content, media_type = exporter.render(fmt, exporter.EXPORT_HEADERS, rows)
    filename = exporter.timestamped_filename("items_export", fmt, settings.default_timezone)
    logger.info("Exported %d items as %s", len(rows), fmt)
    return _attachment(content, media_type, filename)


@protected.get("/items/import/template", tags=["items"])
async def import_template(
    fmt: str = Query("csv", alias="format", pattern="^(csv|xls)$"),
) -> Response:
    content, media_type = exporter.render(
        fmt, exporter.template_headers(), exporter.TEMPLATE_SAMPLE_ROWS
    )
    return _attachment(content, media_type, f"items_template.{fmt}")


@protected.post("/items/import", response_model=schemas.ImportResult, tags=["items"])
async def import_items(
    file: Optional[UploadFile] = File(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.ImportResult:
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file was uploaded")
    try:
        raw_bytes = await file.read()
    finally:
        await file.close()
    with _http_errors():
        rows = importer.extract_rows(file.filename, raw_bytes)
        async with atomic(session):
            return await importer.import_items(session, rows, actor)


@protected.post("/items/bulk/edit", response_model=schemas.BulkEditResult, tags=["items"])
async def bulk_edit_items(
    payload: schemas.BulkEditRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BulkEditResult:
    with _http_errors():
        try:
            async with atomic(session):
                return await bulk.bulk_edit(session, payload.ids, payload.updates, actor)
        except NegativeQuantityError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
            ) from exc


@protected.post("/items/bulk/delete", response_model=schemas.BulkDeleteResult, tags=["items"])
async def bulk_delete_items(
    payload: schemas.BulkDeleteRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BulkDeleteResult:
    with _http_errors():
        async with atomic(session):
            return await bulk.bulk_delete(session, payload.ids, actor)


@protected.post(
    "/items",
    response_model=schemas.ItemOut,
    status_code=status.HTTP_201_CREATED,
    tags=["items"],
)
async def create_item(
    payload: Dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.ItemOut:
    try:
        data = schemas.validate_item_create(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc
    with _http_errors():
        async with atomic(session):
            item = await crud.create_item(session, data, actor)
        item = await crud.get_item(session, item.id)
    return schemas.ItemOut.model_validate(item)


# ----------------------------------------------------------------------
# Items: single record routes
# ----------------------------------------------------------------------
@protected.get("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def get_item(item_id: str, session: AsyncSession = Depends(get_session)) -> schemas.ItemOut:
    with _http_errors():
        item = await crud.get_item(session, item_id)
    return schemas.ItemOut.model_validate(item)


@protected.put("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def update_item(
    item_id: str,
    payload: schemas.ItemUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.ItemOut:
    with _http_errors():
        async with atomic(session):
            item = await crud.get_item(session, item_id)
            await crud.update_item(session, item, payload, actor)
        item = await crud.get_item(session, item_id)
    return schemas.ItemOut.model_validate(item)


@protected.post("/items/{item_id}/quantity", response_model=schemas.ItemOut, tags=["items"])
async def adjust_item_quantity(
    item_id: str,
    payload: schemas.QuantityUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.ItemOut:
    with _http_errors():
        async with atomic(session):
            item = await crud.get_item(session, item_id)
            quantity = resolve_quantity(
                item.quantity, payload.mode, payload.value, item_id=item.id, sku=item.sku
            )
            await crud.update_item(session, item, schemas.ItemUpdate(quantity=quantity), actor)
        item = await crud.get_item(session, item_id)
    return schemas.ItemOut.model_validate(item)


@protected.put("/items/{item_id}/materials", response_model=schemas.ItemOut, tags=["items"])
async def replace_item_materials(
    item_id: str,
    payload: schemas.ItemMaterialsReplace,
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemOut:
    with _http_errors():
        async with atomic(session):
            item = await crud.get_item(session, item_id)
            await crud.replace_item_materials(session, item, payload.materials)
        item = await crud.get_item(session, item_id)
    return schemas.ItemOut.model_validate(item)


@protected.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["items"])
async def delete_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> None:
    with _http_errors():
        async with atomic(session):
            item = await crud.get_item(session, item_id)
            await crud.delete_item(session, item, actor)


# ----------------------------------------------------------------------
# Change logs
# ----------------------------------------------------------------------
@protected.get("/change-logs", response_model=schemas.ChangeLogListResponse, tags=["change-logs"])
async def list_change_logs(
    limit: Optional[int] = None,
    entity_id: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> schemas.ChangeLogListResponse:
    entries = await changelog.list_change_logs(
        session, limit=changelog.normalize_log_limit(limit), entity_id=entity_id
    )
    return schemas.ChangeLogListResponse(
        change_logs=[schemas.ChangeLogOut.model_validate(entry) for entry in entries]
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation error", "details": jsonable_encoder(exc.errors())},
    )


async def _storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Unhandled storage error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    app = FastAPI(title=settings.app_name)
    app.dependency_overrides[provide_settings] = lambda: settings
    origins = [origin.strip() for origin in settings.access_control_allow_origin.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, _storage_error_handler)
    app.include_router(router)
    app.include_router(protected)
    return app


app = create_app()


__all__ = ["app", "create_app", "router", "protected", "item_filters"]
