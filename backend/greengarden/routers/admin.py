import csv
import io
from typing import Any, Callable, Type

from fastapi import APIRouter, Depends, Request, Response
from pydantic import ValidationError as PydanticValidationError

from greengarden.auth import SESSION_COOKIE, AdminSession, SessionGuard, get_session_guard, require_admin
from greengarden.models import (
    AdminLoginRequest,
    AdminLoginResponse,
    AdminSessionResponse,
    AppointmentStatusUpdate,
    BlogPublishUpdate,
    ContentFields,
    DashboardSummary,
)
from greengarden.routers.common import filter_params, item_envelope, list_envelope, set_revision
from greengarden.services.content_store import (
    ContentStore,
    ContentStoreValidationError,
    get_content_store,
    validation_error,
)
from greengarden.services.entity_kinds import APPOINTMENTS, BLOG, ENTITY_KINDS, EntityKind

router = APIRouter(prefix="/api/admin", tags=["admin"])
content_router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

EXPORT_COLUMNS = ["id", "name", "email", "phone", "serviceId", "requestedAt", "status", "notes"]


def json_body(kind: EntityKind, model: Type[ContentFields]) -> Callable[..., Any]:
    """Request body as ``model``, read only after ``require_admin`` has passed."""

    async def parse(request: Request) -> ContentFields:
        try:
            raw = await request.json()
        except ValueError:
            raise ContentStoreValidationError(kind.name, "request body is not valid JSON", field="body") from None
        try:
            return model.model_validate(raw)
        except PydanticValidationError as exc:
            raise validation_error(kind, exc) from None

    return parse


@router.post("/login", response_model=AdminLoginResponse)
def login(
    payload: AdminLoginRequest,
    response: Response,
    guard: SessionGuard = Depends(get_session_guard),
):
    session = guard.authenticate(payload.username, payload.password)
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=guard.ttl_seconds,
        httponly=True,
        samesite="lax",
    )
    return AdminLoginResponse(token=session.token, expires_at=session.expires_at_iso)


@content_router.post("/logout")
def logout(
    response: Response,
    session: AdminSession = Depends(require_admin),
    guard: SessionGuard = Depends(get_session_guard),
):
    guard.revoke(session.token)
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "ok"}


@content_router.get("/session", response_model=AdminSessionResponse)
def current_session(session: AdminSession = Depends(require_admin)):
    return AdminSessionResponse(username=session.username, expires_at=session.expires_at_iso)


@content_router.get("/dashboard", response_model=DashboardSummary)
def dashboard(store: ContentStore = Depends(get_content_store)):
    return store.dashboard_summary()


@content_router.get("/appointments/export")
def export_appointments(request: Request, store: ContentStore = Depends(get_content_store)):
    appointments = store.list(APPOINTMENTS, filter_params(APPOINTMENTS, request))
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for appointment in appointments:
        writer.writerow(appointment.model_dump(mode="json", by_alias=True))
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="appointments.csv"'},
    )


@content_router.patch("/appointments/{entity_id}")
def set_appointment_status(
    entity_id: int,
    response: Response,
    payload: AppointmentStatusUpdate = Depends(json_body(APPOINTMENTS, AppointmentStatusUpdate)),
    store: ContentStore = Depends(get_content_store),
):
    appointment = store.set_status(APPOINTMENTS, entity_id, payload.status)
    set_revision(response, APPOINTMENTS, store.revision(APPOINTMENTS))
    return item_envelope(APPOINTMENTS, appointment)


@content_router.patch("/blog/{entity_id}")
def set_post_published(
    entity_id: int,
    response: Response,
    payload: BlogPublishUpdate = Depends(json_body(BLOG, BlogPublishUpdate)),
    store: ContentStore = Depends(get_content_store),
):
    post = store.set_status(BLOG, entity_id, payload.published)
    set_revision(response, BLOG, store.revision(BLOG))
    return item_envelope(BLOG, post)


def build_kind_router(kind: EntityKind) -> APIRouter:
    """CRUD routes for one entity kind under ``/<kind.name>``."""
    kind_router = APIRouter(prefix=f"/{kind.name}")
    fields_model = kind.fields_model

    @kind_router.get("")
    def list_entities(request: Request, response: Response, store: ContentStore = Depends(get_content_store)):
        snapshot = store.snapshot(kind, filter_params(kind, request))
        set_revision(response, kind, snapshot.revision)
        return list_envelope(kind, snapshot.records)

    @kind_router.get("/{entity_id}")
    def get_entity(entity_id: int, store: ContentStore = Depends(get_content_store)):
        return item_envelope(kind, store.get(kind, entity_id))

    @kind_router.post("")
    def create_entity(
        response: Response,
        payload: ContentFields = Depends(json_body(kind, fields_model)),
        store: ContentStore = Depends(get_content_store),
    ):
        record = store.create(kind, payload.model_dump())
        set_revision(response, kind, store.revision(kind))
        return item_envelope(kind, record)

    @kind_router.put("/{entity_id}")
    def update_entity(
        entity_id: int,
        response: Response,
        payload: ContentFields = Depends(json_body(kind, fields_model)),
        store: ContentStore = Depends(get_content_store),
    ):
        record = store.update(kind, entity_id, payload.model_dump(exclude_unset=True))
        set_revision(response, kind, store.revision(kind))
        return item_envelope(kind, record)

    @kind_router.delete("/{entity_id}")
    def delete_entity(entity_id: int, response: Response, store: ContentStore = Depends(get_content_store)):
        store.delete(kind, entity_id)
        set_revision(response, kind, store.revision(kind))
        return {"status": "ok", "id": entity_id}

    return kind_router


for _kind in ENTITY_KINDS.values():
    content_router.include_router(build_kind_router(_kind))
