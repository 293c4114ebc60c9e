import asyncio

import httpx
import pytest

from greengarden.client.api_client import (
    ApiNotFound,
    ApiSessionExpired,
    ApiStoreFailure,
    ApiUnauthorized,
    ApiValidationError,
    ContentApiClient,
    parse_revision,
)
from greengarden.client.cache import CacheKey

from factories import ADMIN_PASSWORD, ADMIN_USERNAME, appointment_payload, service_payload

BASE_URL = "http://testserver"
SERVICES_KEY = CacheKey.build("services", "/api/services", {"featured": None})


def _client(app):
    return ContentApiClient(BASE_URL, transport=httpx.ASGITransport(app=app))


def test_lawn_mowing_through_cached_client(content_app):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            created = await api.create("services", service_payload())
            assert [item["price"] for item in await api.list_services()] == ["$40"]

            await api.update("services", created["id"], service_payload(price="$45"))
            assert api.cache.is_stale(SERVICES_KEY)
            # The invalidated list is served once while it is refetched.
            assert [item["price"] for item in await api.list_services()] == ["$40"]
            await api.cache.drain()
            assert [item["price"] for item in await api.list_services()] == ["$45"]

            await api.delete("services", created["id"])
            await api.list_services()
            await api.cache.drain()
            assert await api.list_services() == []
            with pytest.raises(ApiNotFound):
                await api.get_service(created["id"])

    asyncio.run(scenario())


def test_concurrent_list_reads_issue_one_request(content_app, store):
    store.create("services", service_payload())

    async def scenario():
        async with _client(content_app) as api:
            results = await asyncio.gather(*(api.list_services() for _ in range(3)))
            assert all(result == results[0] for result in results)
            assert api.cache.stats.fetches == 1
            assert api.cache.stats.coalesced == 2

    asyncio.run(scenario())


def test_admin_read_without_login_is_unauthorized(content_app, store):
    store.create("appointments", appointment_payload())

    async def scenario():
        async with _client(content_app) as api:
            with pytest.raises(ApiUnauthorized) as excinfo:
                await api.admin_list("appointments")
            assert excinfo.value.status_code == 401
            assert api.cache.peek(CacheKey.build("appointments", "/api/admin/appointments")) is None

    asyncio.run(scenario())


def test_expired_session_maps_to_its_own_error(content_app, guard):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            guard.clock = lambda: 4_000_000_000.0
            with pytest.raises(ApiSessionExpired):
                await api.dashboard_summary()

    asyncio.run(scenario())


def test_validation_error_carries_field(content_app, store):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            with pytest.raises(ApiValidationError) as excinfo:
                await api.create("services", {"name": "Lawn Mowing"})
            assert excinfo.value.field == "price"

    asyncio.run(scenario())
    assert store.list("services") == []


def test_dashboard_is_never_cached(content_app):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            assert (await api.dashboard_summary())["pendingAppointments"] == 0
            booked = await api.request_appointment(appointment_payload())
            assert booked["status"] == "pending"
            assert (await api.dashboard_summary())["pendingAppointments"] == 1

            confirmed = await api.set_appointment_status(booked["id"], "confirmed")
            assert confirmed["status"] == "confirmed"
            assert (await api.dashboard_summary())["pendingAppointments"] == 0
            assert api.cache.stats.fetches == 0

    asyncio.run(scenario())


def test_revision_sync_detects_writes_from_elsewhere(content_app, store):
    store.create("services", service_payload())

    async def scenario():
        async with _client(content_app) as api:
            assert len(await api.list_services()) == 1
            assert not api.cache.is_stale(SERVICES_KEY)

            store.create("services", service_payload(name="Hedge Trimming", price="$45"))
            revisions = await api.sync_revisions()
            assert revisions["services"] == 2
            assert api.cache.is_stale(SERVICES_KEY)

            assert len(await api.list_services()) == 1
            await api.cache.drain()
            assert len(await api.list_services()) == 2

    asyncio.run(scenario())


def test_blog_publishing_through_client(content_app):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            draft = await api.create("blog", {"title": "Mulching", "body": "Mulch in spring.", "author": "Admin"})
            assert await api.list_blog_posts() == []
            await api.set_blog_published(draft["id"], True)
            assert await api.refresh_list("blog", "/api/blog") != []
            assert (await api.get_blog_post(draft["id"]))["title"] == "Mulching"

    asyncio.run(scenario())


def test_logout_clears_cache(content_app, store):
    store.create("services", service_payload())

    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            await api.list_services()
            assert api.cache.peek(SERVICES_KEY) is not None
            await api.logout()
            assert not api.authenticated
            assert api.cache.peek(SERVICES_KEY) is None
            with pytest.raises(ApiUnauthorized):
                await api.admin_list("services")

    asyncio.run(scenario())


def test_inquiry_reaches_admin_list(content_app):
    async def scenario():
        async with _client(content_app) as api:
            sent = await api.send_inquiry({"name": "Sam", "email": "sam@example.com", "message": "Quote please"})
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            unread = await api.admin_list("inquiries", read=False)
            assert [row["id"] for row in unread] == [sent["id"]]

    asyncio.run(scenario())


def test_reads_retry_once_after_server_error():
    calls = []

    def handler(request):
        calls.append(request.method)
        if len(calls) == 1:
            return httpx.Response(503, json={"kind": "StoreFailure", "reason": "busy"})
        return httpx.Response(200, json={"services": []}, headers={"X-Content-Revision": "services=4"})

    async def scenario():
        async with ContentApiClient(BASE_URL, transport=httpx.MockTransport(handler)) as api:
            assert await api.list_services() == []

    asyncio.run(scenario())
    assert calls == ["GET", "GET"]


def test_writes_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request.method)
        return httpx.Response(500, json={"kind": "StoreFailure", "reason": "The content store failed."})

    async def scenario():
        async with ContentApiClient(BASE_URL, transport=httpx.MockTransport(handler)) as api:
            with pytest.raises(ApiStoreFailure):
                await api.create("services", service_payload())

    asyncio.run(scenario())
    assert calls == ["POST"]


def test_parse_revision_header():
    assert parse_revision(httpx.Response(200, headers={"X-Content-Revision": "blog=7"})) == 7
    assert parse_revision(httpx.Response(200, headers={"X-Content-Revision": "blog=x"})) is None
    assert parse_revision(httpx.Response(200)) is None


def test_cached_service_is_dropped_after_delete(content_app):
    async def scenario():
        async with _client(content_app) as api:
            await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            created = await api.create("services", service_payload())
            assert (await api.get_service(created["id"]))["name"] == "Lawn Mowing"

            await api.delete("services", created["id"])
            # One stale read while the refetch runs, then the deletion shows.
            assert (await api.get_service(created["id"]))["name"] == "Lawn Mowing"
            await api.cache.drain()
            for _ in range(2):
                with pytest.raises(ApiNotFound):
                    await api.get_service(created["id"])
                await api.cache.drain()
            assert api.cache.stats.refresh_failures == 0

    asyncio.run(scenario())


def test_unpublished_post_disappears_for_visitors(content_app):
    async def scenario():
        async with _client(content_app) as admin, _client(content_app) as visitor:
            await admin.login(ADMIN_USERNAME, ADMIN_PASSWORD)
            post = await admin.create(
                "blog", {"title": "Mulching", "body": "Mulch in spring.", "author": "Admin", "published": True}
            )
            assert len(await visitor.list_blog_posts()) == 1
            assert (await visitor.get_blog_post(post["id"]))["title"] == "Mulching"

            await admin.set_blog_published(post["id"], False)
            await visitor.sync_revisions()
            await visitor.get_blog_post(post["id"])
            await visitor.list_blog_posts()
            await visitor.cache.drain()

            with pytest.raises(ApiNotFound):
                await visitor.get_blog_post(post["id"])
            assert await visitor.list_blog_posts() == []

    asyncio.run(scenario())


def test_aclose_after_logout_leaves_no_fetch_running(content_app, store):
    store.create("services", service_payload())

    async def scenario():
        api = _client(content_app)
        await api.login(ADMIN_USERNAME, ADMIN_PASSWORD)
        await api.list_services()
        api.cache.invalidate("services")
        await api.list_services()
        await api.logout()
        await api.aclose()
        pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task() and not task.done()]
        assert pending == []

    asyncio.run(scenario())
