import sqlite3

import pytest

from greengarden.services.content_store import (
    ContentStore,
    ContentStoreFailure,
    ContentStoreNotFoundError,
    ContentStoreValidationError,
)
from greengarden.services.entity_kinds import APPOINTMENTS, BLOG, PORTFOLIO, SERVICES

from factories import appointment_payload


def test_create_then_get_returns_payload_with_assigned_id(store):
    created = store.create("services", {"name": "Lawn Mowing", "price": "$40"})
    fetched = store.get("services", created.id)
    assert fetched == created
    assert fetched.id == 1
    assert fetched.name == "Lawn Mowing"
    assert fetched.price == "$40"
    assert fetched.image_url is None


def test_testimonial_keeps_optional_image_url(store):
    with_image = store.create(
        "testimonials", {"authorName": "Sarah", "quote": "Lovely work", "rating": 5, "imageUrl": "/images/sarah.jpg"}
    )
    without_image = store.create("testimonials", {"authorName": "Tom", "quote": "Tidy hedges", "rating": 4})
    assert store.get("testimonials", with_image.id).image_url == "/images/sarah.jpg"
    assert without_image.image_url is None


def test_deleted_ids_are_never_reused(store):
    first = store.create(SERVICES, {"name": "Hedge Trimming", "price": "$45"})
    store.delete(SERVICES, first.id)
    second = store.create(SERVICES, {"name": "Garden Clearance", "price": "$200"})

    assert second.id == first.id + 1
    with pytest.raises(ContentStoreNotFoundError):
        store.get(SERVICES, first.id)
    assert [service.id for service in store.list(SERVICES)] == [second.id]


def test_ids_survive_store_reopen(tmp_path):
    path = str(tmp_path / "content.sqlite3")
    first_store = ContentStore(db_path=path)
    created = first_store.create(SERVICES, {"name": "Lawn Care", "price": "$80"})
    first_store.delete(SERVICES, created.id)

    reopened = ContentStore(db_path=path)
    assert reopened.create(SERVICES, {"name": "Lawn Care", "price": "$80"}).id == created.id + 1


def test_validation_failure_writes_nothing(store):
    before = store.revision(SERVICES)
    with pytest.raises(ContentStoreValidationError) as excinfo:
        store.create(SERVICES, {"name": "", "price": "$10"})
    assert excinfo.value.field == "name"
    with pytest.raises(ContentStoreValidationError) as excinfo:
        store.create(SERVICES, {"name": "Pruning"})
    assert excinfo.value.field == "price"
    assert store.list(SERVICES) == []
    assert store.revision(SERVICES) == before


def test_update_merges_patch_and_revalidates(store):
    created = store.create(SERVICES, {"name": "Lawn Mowing", "price": "$40", "description": "Weekly cut"})
    updated = store.update(SERVICES, created.id, {"price": "$45"})
    assert updated.price == "$45"
    assert updated.description == "Weekly cut"

    with pytest.raises(ContentStoreValidationError):
        store.update(SERVICES, created.id, {"price": ""})
    with pytest.raises(ContentStoreValidationError) as excinfo:
        store.update(SERVICES, created.id, {"id": 99})
    assert excinfo.value.field == "id"
    assert store.get(SERVICES, created.id).price == "$45"


def test_update_missing_record_is_not_found(store):
    with pytest.raises(ContentStoreNotFoundError) as excinfo:
        store.update(SERVICES, 42, {"price": "$1"})
    assert excinfo.value.entity_id == 42


def test_delete_missing_record_leaves_store_unchanged(store):
    store.create(PORTFOLIO, {"title": "Patio", "imageUrl": "https://img/1", "completedOn": "2023-04-15"})
    before = (store.list(PORTFOLIO), store.revision(PORTFOLIO))
    with pytest.raises(ContentStoreNotFoundError):
        store.delete(PORTFOLIO, 999)
    assert (store.list(PORTFOLIO), store.revision(PORTFOLIO)) == before


def test_list_order_per_kind(store):
    store.create(SERVICES, {"name": "Third", "price": "$3", "rank": 3})
    store.create(SERVICES, {"name": "First", "price": "$1", "rank": 1})
    store.create(SERVICES, {"name": "Second", "price": "$2", "rank": 2})
    assert [service.name for service in store.list(SERVICES)] == ["First", "Second", "Third"]

    store.create(PORTFOLIO, {"title": "Older", "imageUrl": "https://img/a", "completedOn": "2022-01-01"})
    store.create(PORTFOLIO, {"title": "Newer", "imageUrl": "https://img/b", "completedOn": "2023-06-01"})
    assert [item.title for item in store.list(PORTFOLIO)] == ["Newer", "Older"]

    store.create(BLOG, {"title": "Draft", "body": "...", "author": "Admin"})
    store.create(BLOG, {"title": "Old", "body": "...", "author": "Admin", "published": True, "publishedAt": "2023-01-01T00:00:00Z"})
    store.create(BLOG, {"title": "New", "body": "...", "author": "Admin", "published": True, "publishedAt": "2023-06-01T00:00:00Z"})
    assert [post.title for post in store.list(BLOG)] == ["New", "Old", "Draft"]


def test_list_filters(store):
    first = store.create(APPOINTMENTS, appointment_payload())
    store.create(APPOINTMENTS, appointment_payload(status="confirmed"))

    pending = store.list(APPOINTMENTS, {"status": "pending"})
    assert [row.id for row in pending] == [first.id]
    assert len(store.list(APPOINTMENTS, {"status": None})) == 2

    with pytest.raises(ContentStoreValidationError) as excinfo:
        store.list(APPOINTMENTS, {"status": "finished"})
    assert excinfo.value.field == "status"
    with pytest.raises(ContentStoreValidationError):
        store.list(SERVICES, {"status": "pending"})


def test_appointment_status_is_independently_mutable(store):
    appointment = store.create(APPOINTMENTS, appointment_payload(notes="Side gate"))
    confirmed = store.set_status(APPOINTMENTS, appointment.id, "confirmed")
    assert confirmed.status == "confirmed"
    assert confirmed.notes == "Side gate"

    with pytest.raises(ContentStoreValidationError) as excinfo:
        store.set_status(APPOINTMENTS, appointment.id, "done")
    assert excinfo.value.field == "status"
    with pytest.raises(ContentStoreValidationError):
        store.set_status(SERVICES, 1, True)


def test_publishing_a_post_stamps_publish_time(store):
    post = store.create(BLOG, {"title": "Spring bulbs", "body": "Plant early.", "author": "Admin"})
    assert post.published is False
    assert post.published_at is None

    published = store.set_status(BLOG, post.id, True)
    assert published.published is True
    assert published.published_at is not None


def test_inquiry_received_time_assigned_on_create(store):
    inquiry = store.create("inquiries", {"name": "Sam", "email": "sam@example.com", "message": "Quote please"})
    assert inquiry.received_at is not None
    assert inquiry.read is False


def test_every_successful_write_bumps_revision(store):
    assert store.revision(SERVICES) == 0
    created = store.create(SERVICES, {"name": "Lawn", "price": "$1"})
    store.update(SERVICES, created.id, {"price": "$2"})
    store.list(SERVICES)
    store.delete(SERVICES, created.id)
    assert store.revision(SERVICES) == 3
    assert store.revisions()["portfolio"] == 0


def test_snapshot_pairs_records_with_revision(store):
    store.create(SERVICES, {"name": "Lawn", "price": "$1"})
    snapshot = store.snapshot(SERVICES)
    assert snapshot.revision == 1
    assert len(snapshot.records) == 1


def test_dangling_service_reference_is_kept(store):
    service = store.create(SERVICES, {"name": "Lawn", "price": "$1"})
    appointment = store.create(APPOINTMENTS, appointment_payload(serviceId=service.id))
    store.delete(SERVICES, service.id)
    assert store.get(APPOINTMENTS, appointment.id).service_id == service.id


def test_dashboard_summary_counts_current_state(store):
    first = store.create(APPOINTMENTS, appointment_payload())
    store.create(APPOINTMENTS, appointment_payload())
    store.create("inquiries", {"name": "Sam", "email": "sam@example.com", "message": "Hi"})
    store.create(BLOG, {"title": "Draft", "body": "...", "author": "Admin"})
    store.set_status(APPOINTMENTS, first.id, "cancelled")

    summary = store.dashboard_summary()
    assert summary.pending_appointments == 1
    assert summary.unread_inquiries == 1
    assert summary.draft_blog_posts == 1
    assert summary.services == 0
    assert summary.revisions["appointments"] == 3


def test_demo_seed_runs_once(tmp_path):
    path = str(tmp_path / "seeded.sqlite3")
    seeded = ContentStore(db_path=path, seed_demo=True)
    services = seeded.list(SERVICES)
    assert [service.name for service in services][:2] == ["Garden Maintenance", "Landscape Design"]
    assert len(seeded.list(BLOG, {"published": True})) == 2

    again = ContentStore(db_path=path, seed_demo=True)
    assert len(again.list(SERVICES)) == len(services)


def test_sqlite_errors_become_store_failures(store, monkeypatch):
    def broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_connect", broken_connect)
    with pytest.raises(ContentStoreFailure):
        store.list(SERVICES)
