from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from greengarden.models import AppointmentRequest, ContactRequest, RevisionsResponse
from greengarden.routers.common import dump, item_envelope, list_envelope, set_revision
from greengarden.services.content_store import ContentStore, ContentStoreNotFoundError, get_content_store
from greengarden.services.entity_kinds import APPOINTMENTS, BLOG, INQUIRIES, PORTFOLIO, SERVICES, TESTIMONIALS

router = APIRouter(prefix="/api", tags=["content"])


@router.get("/services")
def list_services(
    response: Response,
    featured: Optional[bool] = Query(default=None),
    store: ContentStore = Depends(get_content_store),
):
    snapshot = store.snapshot(SERVICES, {"featured": featured})
    set_revision(response, SERVICES, snapshot.revision)
    return list_envelope(SERVICES, snapshot.records)


@router.get("/services/{entity_id}")
def get_service(entity_id: int, store: ContentStore = Depends(get_content_store)):
    return item_envelope(SERVICES, store.get(SERVICES, entity_id))


@router.get("/portfolio")
def list_portfolio(
    response: Response,
    service_id: Optional[int] = Query(default=None, alias="serviceId"),
    store: ContentStore = Depends(get_content_store),
):
    snapshot = store.snapshot(PORTFOLIO, {"serviceId": service_id})
    set_revision(response, PORTFOLIO, snapshot.revision)
    return list_envelope(PORTFOLIO, snapshot.records)


@router.get("/portfolio/{entity_id}")
def get_portfolio_item(entity_id: int, store: ContentStore = Depends(get_content_store)):
    return item_envelope(PORTFOLIO, store.get(PORTFOLIO, entity_id))


@router.get("/blog")
def list_published_posts(response: Response, store: ContentStore = Depends(get_content_store)):
    snapshot = store.snapshot(BLOG, {"published": True})
    set_revision(response, BLOG, snapshot.revision)
    return list_envelope(BLOG, snapshot.records)


@router.get("/blog/{entity_id}")
def get_published_post(entity_id: int, store: ContentStore = Depends(get_content_store)):
    post = store.get(BLOG, entity_id)
    if not post.published:
        raise ContentStoreNotFoundError(BLOG.name, entity_id)
    return item_envelope(BLOG, post)


@router.get("/testimonials")
def list_testimonials(response: Response, store: ContentStore = Depends(get_content_store)):
    snapshot = store.snapshot(TESTIMONIALS)
    set_revision(response, TESTIMONIALS, snapshot.revision)
    return list_envelope(TESTIMONIALS, snapshot.records)


@router.get("/revisions", response_model=RevisionsResponse)
def get_revisions(store: ContentStore = Depends(get_content_store)):
    return RevisionsResponse(revisions=store.revisions())


@router.post("/appointments")
def request_appointment(
    payload: AppointmentRequest,
    response: Response,
    store: ContentStore = Depends(get_content_store),
):
    appointment = store.create(APPOINTMENTS, {**payload.model_dump(), "status": "pending"})
    set_revision(response, APPOINTMENTS, store.revision(APPOINTMENTS))
    return {APPOINTMENTS.singular: dump(appointment)}


@router.post("/contact")
def send_inquiry(
    payload: ContactRequest,
    response: Response,
    store: ContentStore = Depends(get_content_store),
):
    inquiry = store.create(INQUIRIES, {**payload.model_dump(), "read": False})
    set_revision(response, INQUIRIES, store.revision(INQUIRIES))
    return {INQUIRIES.singular: dump(inquiry), "message": "Thank you for your message! We'll get back to you soon."}
