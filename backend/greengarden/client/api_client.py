import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from greengarden.client.cache import CacheFetch, CacheKey, ContentCache
from greengarden.services.entity_kinds import ENTITY_KINDS

logger = logging.getLogger(__name__)

REVISION_HEADER = "X-Content-Revision"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


DEFAULT_STALE_SECONDS = _env_float("CONTENT_CACHE_STALE_SECONDS", 30.0)


class ContentApiError(Exception):
    """Error object returned by the content API."""

    def __init__(self, status_code: int, kind: str, reason: str, field: Optional[str] = None) -> None:
        super().__init__(f"{kind}: {reason}" + (f" ({field})" if field else ""))
        self.status_code = status_code
        self.kind = kind
        self.reason = reason
        self.field = field


class ApiValidationError(ContentApiError):
    pass


class ApiNotFound(ContentApiError):
    pass


class ApiUnauthorized(ContentApiError):
    pass


class ApiSessionExpired(ApiUnauthorized):
    pass


class ApiStoreFailure(ContentApiError):
    pass


_ERRORS_BY_KIND = {
    "ValidationError": ApiValidationError,
    "NotFound": ApiNotFound,
    "Unauthorized": ApiUnauthorized,
    "SessionExpired": ApiSessionExpired,
    "StoreFailure": ApiStoreFailure,
}


def _raise_for_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    kind = str(body.get("kind") or ("StoreFailure" if response.status_code >= 500 else "Error"))
    error_type = _ERRORS_BY_KIND.get(kind, ContentApiError)
    raise error_type(response.status_code, kind, str(body.get("reason", response.reason_phrase)), body.get("field"))


def parse_revision(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get(REVISION_HEADER)
    if not raw or "=" not in raw:
        return None
    try:
        return int(raw.split("=", 1)[1])
    except ValueError:
        return None


class ContentApiClient:
    """Async client for the content API with a read cache in front of it.

    The cache is created with the client and lives as long as the admin or
    visitor session does: ``logout`` clears it and ``aclose`` shuts it down.
    """

    def __init__(
        self,
        base_url: str,
        *,
        stale_after: float = DEFAULT_STALE_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self._token: Optional[str] = None
        # A 404 or 401 on refetch means the cached copy must not be served again.
        self.cache = ContentCache(
            fetcher=self._fetch,
            stale_after=stale_after,
            evict_on=(ApiNotFound, ApiUnauthorized),
        )

    async def __aenter__(self) -> "ContentApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.cache.aclose()
        await self._http.aclose()

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def _headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        response = await self._http.get(path, params=params, headers=self._headers())
        # Reads are idempotent, so a server-side failure gets exactly one retry.
        if response.status_code >= 500:
            logger.warning("Retrying GET %s after status %s", path, response.status_code)
            response = await self._http.get(path, params=params, headers=self._headers())
        _raise_for_error(response)
        return response

    async def _fetch(self, key: CacheKey) -> CacheFetch:
        response = await self._get(key.path, params=dict(key.params))
        return CacheFetch(value=response.json(), revision=parse_revision(response))

    async def _write(self, kind: str, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._http.request(method, path, json=json, headers=self._headers())
        _raise_for_error(response)
        self.cache.invalidate(kind)
        revision = parse_revision(response)
        if revision is not None:
            self.cache.observe_revision(kind, revision)
        return response.json()

    async def _read_list(self, kind: str, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        payload = await self.cache.read(CacheKey.build(kind, path, params))
        return payload[ENTITY_KINDS[kind].envelope]

    async def _read_item(self, kind: str, path: str) -> Dict[str, Any]:
        payload = await self.cache.read(CacheKey.build(kind, path))
        return payload[ENTITY_KINDS[kind].singular]

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        response = await self._http.post("/api/admin/login", json={"username": username, "password": password})
        _raise_for_error(response)
        payload = response.json()
        self._token = payload["token"]
        return payload

    async def logout(self) -> None:
        try:
            if self._token:
                response = await self._http.post("/api/admin/logout", headers=self._headers())
                _raise_for_error(response)
        finally:
            self._token = None
            self.cache.clear()

    async def list_services(self, featured: Optional[bool] = None) -> List[Dict[str, Any]]:
        return await self._read_list("services", "/api/services", {"featured": featured})

    async def get_service(self, entity_id: int) -> Dict[str, Any]:
        return await self._read_item("services", f"/api/services/{entity_id}")

    async def list_portfolio(self, service_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self._read_list("portfolio", "/api/portfolio", {"serviceId": service_id})

    async def get_portfolio_item(self, entity_id: int) -> Dict[str, Any]:
        return await self._read_item("portfolio", f"/api/portfolio/{entity_id}")

    async def list_blog_posts(self) -> List[Dict[str, Any]]:
        return await self._read_list("blog", "/api/blog")

    async def get_blog_post(self, entity_id: int) -> Dict[str, Any]:
        return await self._read_item("blog", f"/api/blog/{entity_id}")

    async def list_testimonials(self) -> List[Dict[str, Any]]:
        return await self._read_list("testimonials", "/api/testimonials")

    async def admin_list(self, kind: str, **filters: Any) -> List[Dict[str, Any]]:
        return await self._read_list(kind, f"/api/admin/{kind}", filters)

    async def admin_get(self, kind: str, entity_id: int) -> Dict[str, Any]:
        return await self._read_item(kind, f"/api/admin/{kind}/{entity_id}")

    async def refresh_list(self, kind: str, path: str, **params: Any) -> List[Dict[str, Any]]:
        """Explicit reload; unlike a cached read, a failure is raised to the caller."""
        payload = await self.cache.refresh(CacheKey.build(kind, path, params))
        return payload[ENTITY_KINDS[kind].envelope]

    async def dashboard_summary(self) -> Dict[str, Any]:
        # Counts must reflect the latest writes, so this never goes through the cache.
        response = await self._get("/api/admin/dashboard")
        summary = response.json()
        for kind, revision in summary.get("revisions", {}).items():
            self.cache.observe_revision(kind, int(revision))
        return summary

    async def sync_revisions(self) -> Dict[str, int]:
        response = await self._get("/api/revisions")
        revisions = {kind: int(value) for kind, value in response.json()["revisions"].items()}
        for kind, revision in revisions.items():
            self.cache.observe_revision(kind, revision)
        return revisions

    async def create(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._write(kind, "POST", f"/api/admin/{kind}", json=payload)
        return body[ENTITY_KINDS[kind].singular]

    async def update(self, kind: str, entity_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._write(kind, "PUT", f"/api/admin/{kind}/{entity_id}", json=payload)
        return body[ENTITY_KINDS[kind].singular]

    async def delete(self, kind: str, entity_id: int) -> None:
        await self._write(kind, "DELETE", f"/api/admin/{kind}/{entity_id}")

    async def set_appointment_status(self, entity_id: int, status: str) -> Dict[str, Any]:
        body = await self._write("appointments", "PATCH", f"/api/admin/appointments/{entity_id}", json={"status": status})
        return body["appointment"]

    async def set_blog_published(self, entity_id: int, published: bool) -> Dict[str, Any]:
        body = await self._write("blog", "PATCH", f"/api/admin/blog/{entity_id}", json={"published": published})
        return body["blogPost"]

    async def request_appointment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._write("appointments", "POST", "/api/appointments", json=payload)
        return body["appointment"]

    async def send_inquiry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._write("inquiries", "POST", "/api/contact", json=payload)
        return body["inquiry"]
