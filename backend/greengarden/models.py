from datetime import date, datetime, timezone
from typing import Annotated, Dict, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
AppointmentStatus = Literal["pending", "confirmed", "cancelled"]
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


class ApiModel(BaseModel):
    """Wire models use camelCase names; python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContentFields(ApiModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


class ServiceFields(ContentFields):
    name: str = Field(min_length=1)
    description: str = ""
    price: str = Field(min_length=1)
    image_url: Optional[str] = None
    rank: int = 0
    featured: bool = False


class Service(ServiceFields):
    id: int


class PortfolioItemFields(ContentFields):
    title: str = Field(min_length=1)
    description: str = ""
    image_url: str = Field(min_length=1)
    completed_on: date
    service_id: Optional[int] = None


class PortfolioItem(PortfolioItemFields):
    id: int


class AppointmentFields(ContentFields):
    service_id: Optional[int] = None
    name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: str = ""
    requested_at: UtcDatetime
    notes: Optional[str] = None
    status: AppointmentStatus = "pending"


class Appointment(AppointmentFields):
    id: int


class InquiryFields(ContentFields):
    name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: Optional[str] = None
    message: str = Field(min_length=1)
    service_id: Optional[int] = None
    read: bool = False
    received_at: Optional[UtcDatetime] = None


class Inquiry(InquiryFields):
    id: int
    received_at: UtcDatetime


class BlogPostFields(ContentFields):
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    excerpt: str = ""
    author: str = Field(min_length=1)
    image_url: Optional[str] = None
    published_at: Optional[UtcDatetime] = None
    published: bool = False


class BlogPost(BlogPostFields):
    id: int


class TestimonialFields(ContentFields):
    author_name: str = Field(min_length=1)
    role: Optional[str] = None
    quote: str = Field(min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    image_url: Optional[str] = None
    display_order: int = 0


class Testimonial(TestimonialFields):
    id: int


class AppointmentRequest(ContentFields):
    """Public booking form; new appointments always start as pending."""

    service_id: Optional[int] = None
    name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: str = ""
    requested_at: UtcDatetime
    notes: Optional[str] = None


class ContactRequest(ContentFields):
    name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: Optional[str] = None
    message: str = Field(min_length=1)
    service_id: Optional[int] = None


class AppointmentStatusUpdate(ContentFields):
    status: AppointmentStatus


class BlogPublishUpdate(ContentFields):
    published: bool


class AdminLoginRequest(ApiModel):
    username: str
    password: str


class AdminLoginResponse(ApiModel):
    token: str
    token_type: Literal["bearer"] = "bearer"
    expires_at: str


class AdminSessionResponse(ApiModel):
    username: str
    expires_at: str


class DashboardSummary(ApiModel):
    pending_appointments: int
    unread_inquiries: int
    draft_blog_posts: int
    services: int
    revisions: Dict[str, int] = Field(default_factory=dict)


class RevisionsResponse(ApiModel):
    revisions: Dict[str, int]
