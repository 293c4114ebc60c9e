from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Type

from greengarden.models import (
    Appointment,
    AppointmentFields,
    AppointmentStatus,
    BlogPost,
    BlogPostFields,
    ContentFields,
    Inquiry,
    InquiryFields,
    PortfolioItem,
    PortfolioItemFields,
    Service,
    ServiceFields,
    Testimonial,
    TestimonialFields,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class KindFilter:
    """A list filter exposed as a query parameter."""

    param: str
    attribute: str
    value_type: Any


@dataclass(frozen=True)
class EntityKind:
    name: str
    singular: str
    envelope: str
    fields_model: Type[ContentFields]
    record_model: Type[ContentFields]
    sort_key: Callable[[Any], Tuple]
    newest_first: bool = False
    public: bool = True
    filters: Tuple[KindFilter, ...] = ()
    status_field: Optional[str] = None
    status_type: Any = None
    defaults: Callable[[Dict[str, Any]], Dict[str, Any]] = field(default=lambda values: values)

    def filter_for(self, param: str) -> Optional[KindFilter]:
        for item in self.filters:
            if item.param == param:
                return item
        return None


def _stamp_received(values: Dict[str, Any]) -> Dict[str, Any]:
    if values.get("received_at") is None:
        values["received_at"] = datetime.now(timezone.utc)
    return values


def _stamp_published(values: Dict[str, Any]) -> Dict[str, Any]:
    if values.get("published") and values.get("published_at") is None:
        values["published_at"] = datetime.now(timezone.utc)
    return values


SERVICES = EntityKind(
    name="services",
    singular="service",
    envelope="services",
    fields_model=ServiceFields,
    record_model=Service,
    sort_key=lambda row: (row.rank, row.id),
    filters=(KindFilter("featured", "featured", bool),),
)

PORTFOLIO = EntityKind(
    name="portfolio",
    singular="portfolioItem",
    envelope="portfolioItems",
    fields_model=PortfolioItemFields,
    record_model=PortfolioItem,
    sort_key=lambda row: (row.completed_on, row.id),
    newest_first=True,
    filters=(KindFilter("serviceId", "service_id", int),),
)

APPOINTMENTS = EntityKind(
    name="appointments",
    singular="appointment",
    envelope="appointments",
    fields_model=AppointmentFields,
    record_model=Appointment,
    sort_key=lambda row: (row.requested_at, row.id),
    newest_first=True,
    public=False,
    filters=(
        KindFilter("status", "status", AppointmentStatus),
        KindFilter("serviceId", "service_id", int),
    ),
    status_field="status",
    status_type=AppointmentStatus,
)

INQUIRIES = EntityKind(
    name="inquiries",
    singular="inquiry",
    envelope="inquiries",
    fields_model=InquiryFields,
    record_model=Inquiry,
    sort_key=lambda row: (row.received_at, row.id),
    newest_first=True,
    public=False,
    filters=(KindFilter("read", "read", bool),),
    defaults=_stamp_received,
)

# Drafts without a publish date sort after every dated post.
BLOG = EntityKind(
    name="blog",
    singular="blogPost",
    envelope="blogPosts",
    fields_model=BlogPostFields,
    record_model=BlogPost,
    sort_key=lambda row: (row.published_at is not None, row.published_at or _EPOCH, row.id),
    newest_first=True,
    filters=(KindFilter("published", "published", bool),),
    status_field="published",
    status_type=bool,
    defaults=_stamp_published,
)

TESTIMONIALS = EntityKind(
    name="testimonials",
    singular="testimonial",
    envelope="testimonials",
    fields_model=TestimonialFields,
    record_model=Testimonial,
    sort_key=lambda row: (row.display_order, row.id),
)

ENTITY_KINDS: Dict[str, EntityKind] = {
    kind.name: kind for kind in (SERVICES, PORTFOLIO, APPOINTMENTS, INQUIRIES, BLOG, TESTIMONIALS)
}


def resolve_kind(kind: Any) -> EntityKind:
    if isinstance(kind, EntityKind):
        return kind
    try:
        return ENTITY_KINDS[str(kind)]
    except KeyError:
        raise KeyError(f"Unknown entity kind: {kind}") from None
