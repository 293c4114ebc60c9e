import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Mapping, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from greengarden.models import ContentFields, DashboardSummary
from greengarden.services.entity_kinds import (
    APPOINTMENTS,
    BLOG,
    ENTITY_KINDS,
    INQUIRIES,
    PORTFOLIO,
    SERVICES,
    TESTIMONIALS,
    EntityKind,
    resolve_kind,
)

logger = logging.getLogger(__name__)


class ContentStoreError(ValueError):
    """Base class for user-visible content-store errors."""

    error_kind = "StoreError"

    def __init__(self, entity: str, reason: str, field: Optional[str] = None) -> None:
        super().__init__(reason)
        self.entity = entity
        self.reason = reason
        self.field = field


class ContentStoreValidationError(ContentStoreError):
    error_kind = "ValidationError"


class ContentStoreNotFoundError(ContentStoreError):
    error_kind = "NotFound"

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(entity, f"{entity} {entity_id} not found")
        self.entity_id = entity_id


class ContentStoreFailure(ContentStoreError):
    error_kind = "StoreFailure"


@dataclass(frozen=True)
class ContentSnapshot:
    """Records read together with the kind revision they reflect."""

    records: List[ContentFields]
    revision: int


def validation_error(kind: EntityKind, exc: PydanticValidationError) -> ContentStoreValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ContentStoreValidationError(kind.name, first.get("msg", "invalid value"), field=field)


def _field_names(model: type) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for name, info in model.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class ContentStore:
    """SQLite-backed store for the six site content kinds.

    Each kind keeps its own id counter and revision. Ids are handed out from
    the counter rather than from the rows, so a deleted id is never reused.
    Every committed write bumps the revision of its kind inside the same
    transaction.
    """

    def __init__(self, db_path: str, seed_demo: bool = False) -> None:
        self._lock = Lock()
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()
        if seed_demo:
            self._seed_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, entity: str = "content") -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn: Optional[sqlite3.Connection] = None
            try:
                conn = self._connect()
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                logger.exception("Content store failure on %s", entity)
                raise ContentStoreFailure(entity, "storage failure") from exc
            finally:
                if conn is not None:
                    conn.close()

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS content_records (
                    kind TEXT NOT NULL,
                    id INTEGER NOT NULL,
                    body_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (kind, id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS content_kinds (
                    kind TEXT PRIMARY KEY,
                    next_id INTEGER NOT NULL DEFAULT 1,
                    revision INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            for name in ENTITY_KINDS:
                conn.execute("INSERT OR IGNORE INTO content_kinds (kind) VALUES (?)", (name,))

    def _row_to_record(self, kind: EntityKind, row: sqlite3.Row) -> ContentFields:
        try:
            body = json.loads(row["body_json"])
            body["id"] = row["id"]
            return kind.record_model.model_validate(body)
        except (TypeError, ValueError) as exc:
            logger.error("Unreadable %s row %s: %s", kind.name, row["id"], exc)
            raise ContentStoreFailure(kind.name, "stored record is unreadable") from exc

    def _build_record(self, kind: EntityKind, values: Mapping[str, Any], entity_id: int) -> ContentFields:
        try:
            fields = kind.fields_model.model_validate(dict(values))
            data = kind.defaults(fields.model_dump())
            return kind.record_model.model_validate({**data, "id": entity_id})
        except PydanticValidationError as exc:
            raise validation_error(kind, exc) from None

    def _normalize_patch(self, kind: EntityKind, patch: Mapping[str, Any]) -> Dict[str, Any]:
        names = _field_names(kind.fields_model)
        return {names.get(key, key): value for key, value in patch.items()}

    def _load(self, conn: sqlite3.Connection, kind: EntityKind, entity_id: int) -> ContentFields:
        row = conn.execute(
            "SELECT id, body_json FROM content_records WHERE kind = ? AND id = ?",
            (kind.name, entity_id),
        ).fetchone()
        if not row:
            raise ContentStoreNotFoundError(kind.name, entity_id)
        return self._row_to_record(kind, row)

    def _revision(self, conn: sqlite3.Connection, kind: EntityKind) -> int:
        row = conn.execute("SELECT revision FROM content_kinds WHERE kind = ?", (kind.name,)).fetchone()
        return int(row["revision"]) if row else 0

    def _bump_revision(self, conn: sqlite3.Connection, kind: EntityKind) -> None:
        conn.execute("UPDATE content_kinds SET revision = revision + 1 WHERE kind = ?", (kind.name,))

    def _save(self, conn: sqlite3.Connection, kind: EntityKind, record: ContentFields) -> None:
        now = datetime.now(timezone.utc).isoformat()
        body = record.model_dump(mode="json", exclude={"id"})
        conn.execute(
            """
            UPDATE content_records SET body_json = ?, updated_at = ?
            WHERE kind = ? AND id = ?
            """,
            (json.dumps(body, sort_keys=True), now, kind.name, record.id),
        )
        self._bump_revision(conn, kind)

    def _parse_filters(self, kind: EntityKind, filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        parsed: Dict[str, Any] = {}
        for param, raw in (filters or {}).items():
            if raw is None:
                continue
            kind_filter = kind.filter_for(param)
            if kind_filter is None:
                raise ContentStoreValidationError(kind.name, "unsupported filter", field=param)
            try:
                parsed[kind_filter.attribute] = TypeAdapter(kind_filter.value_type).validate_python(raw)
            except PydanticValidationError:
                raise ContentStoreValidationError(kind.name, "invalid filter value", field=param) from None
        return parsed

    def _select(self, conn: sqlite3.Connection, kind: EntityKind, criteria: Dict[str, Any]) -> List[ContentFields]:
        rows = conn.execute(
            "SELECT id, body_json FROM content_records WHERE kind = ?",
            (kind.name,),
        ).fetchall()
        records = [self._row_to_record(kind, row) for row in rows]
        records = [
            record
            for record in records
            if all(getattr(record, attribute) == value for attribute, value in criteria.items())
        ]
        records.sort(key=kind.sort_key, reverse=kind.newest_first)
        return records

    def get(self, kind: Any, entity_id: int) -> ContentFields:
        kind = resolve_kind(kind)
        with self._transaction(kind.name) as conn:
            return self._load(conn, kind, entity_id)

    def list(self, kind: Any, filters: Optional[Mapping[str, Any]] = None) -> List[ContentFields]:
        return self.snapshot(kind, filters).records

    def snapshot(self, kind: Any, filters: Optional[Mapping[str, Any]] = None) -> ContentSnapshot:
        kind = resolve_kind(kind)
        criteria = self._parse_filters(kind, filters)
        with self._transaction(kind.name) as conn:
            records = self._select(conn, kind, criteria)
            return ContentSnapshot(records=records, revision=self._revision(conn, kind))

    def create(self, kind: Any, payload: Mapping[str, Any]) -> ContentFields:
        kind = resolve_kind(kind)
        # Validate against a placeholder id so nothing is written on failure.
        self._build_record(kind, payload, 0)
        with self._transaction(kind.name) as conn:
            row = conn.execute("SELECT next_id FROM content_kinds WHERE kind = ?", (kind.name,)).fetchone()
            entity_id = int(row["next_id"])
            record = self._build_record(kind, payload, entity_id)
            now = datetime.now(timezone.utc).isoformat()
            conn.execute(
                """
                INSERT INTO content_records (kind, id, body_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    kind.name,
                    entity_id,
                    json.dumps(record.model_dump(mode="json", exclude={"id"}), sort_keys=True),
                    now,
                    now,
                ),
            )
            conn.execute(
                "UPDATE content_kinds SET next_id = next_id + 1, revision = revision + 1 WHERE kind = ?",
                (kind.name,),
            )
        logger.info("Created %s %s", kind.singular, entity_id)
        return record

    def update(self, kind: Any, entity_id: int, patch: Mapping[str, Any]) -> ContentFields:
        kind = resolve_kind(kind)
        with self._transaction(kind.name) as conn:
            current = self._load(conn, kind, entity_id)
            merged = current.model_dump(exclude={"id"})
            merged.update(self._normalize_patch(kind, patch))
            record = self._build_record(kind, merged, entity_id)
            self._save(conn, kind, record)
        logger.info("Updated %s %s", kind.singular, entity_id)
        return record

    def set_status(self, kind: Any, entity_id: int, value: Any) -> ContentFields:
        kind = resolve_kind(kind)
        if not kind.status_field:
            raise ContentStoreValidationError(kind.name, "kind has no independent status", field="status")
        try:
            value = TypeAdapter(kind.status_type).validate_python(value)
        except PydanticValidationError as exc:
            raise ContentStoreValidationError(
                kind.name, exc.errors()[0].get("msg", "invalid value"), field=kind.status_field
            ) from None
        return self.update(kind, entity_id, {kind.status_field: value})

    def delete(self, kind: Any, entity_id: int) -> None:
        kind = resolve_kind(kind)
        with self._transaction(kind.name) as conn:
            deleted = conn.execute(
                "DELETE FROM content_records WHERE kind = ? AND id = ?",
                (kind.name, entity_id),
            ).rowcount
            if not deleted:
                raise ContentStoreNotFoundError(kind.name, entity_id)
            self._bump_revision(conn, kind)
        logger.info("Deleted %s %s", kind.singular, entity_id)

    def revision(self, kind: Any) -> int:
        kind = resolve_kind(kind)
        with self._transaction(kind.name) as conn:
            return self._revision(conn, kind)

    def revisions(self) -> Dict[str, int]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT kind, revision FROM content_kinds").fetchall()
        return {row["kind"]: int(row["revision"]) for row in rows}

    def dashboard_summary(self) -> DashboardSummary:
        with self._transaction() as conn:
            appointments = self._select(conn, APPOINTMENTS, {"status": "pending"})
            inquiries = self._select(conn, INQUIRIES, {"read": False})
            drafts = self._select(conn, BLOG, {"published": False})
            services = self._select(conn, SERVICES, {})
            rows = conn.execute("SELECT kind, revision FROM content_kinds").fetchall()
        return DashboardSummary(
            pending_appointments=len(appointments),
            unread_inquiries=len(inquiries),
            draft_blog_posts=len(drafts),
            services=len(services),
            revisions={row["kind"]: int(row["revision"]) for row in rows},
        )

    def _seed_if_needed(self) -> None:
        with self._transaction() as conn:
            existing = conn.execute("SELECT COUNT(*) AS total FROM content_records").fetchone()["total"]
        if existing:
            return
        seed_services = [
            {
                "name": "Garden Maintenance",
                "description": "Regular maintenance to keep your garden looking its best year-round. "
                "Includes weeding, pruning, mulching, and seasonal clean-up.",
                "price": "From $120/month",
                "rank": 1,
                "featured": True,
            },
            {
                "name": "Landscape Design",
                "description": "Beautiful, sustainable landscapes tailored to your preferences and local climate.",
                "price": "From $500",
                "rank": 2,
                "featured": True,
            },
            {
                "name": "Tree & Shrub Care",
                "description": "Pruning, fertilization, pest management, and disease treatment for healthy growth.",
                "price": "From $150",
                "rank": 3,
                "featured": True,
            },
            {
                "name": "Lawn Care",
                "description": "Mowing, fertilization, aeration, overseeding, and pest control for a lush lawn.",
                "price": "From $80/visit",
                "rank": 4,
            },
            {
                "name": "Irrigation Systems",
                "description": "Design, installation, and maintenance of water-efficient irrigation.",
                "price": "From $350",
                "rank": 5,
            },
        ]
        created = [self.create(SERVICES, payload) for payload in seed_services]
        garden_maintenance_id = created[0].id
        seed_portfolio = [
            {
                "title": "Residential Garden Renovation",
                "description": "A neglected backyard turned into a vibrant garden with native plants, "
                "a water feature, and sustainable irrigation.",
                "imageUrl": "https://images.unsplash.com/photo-1585320806297-9794b3e4eeae?w=1000",
                "completedOn": "2023-04-15",
                "serviceId": garden_maintenance_id,
            },
            {
                "title": "Commercial Landscape Project",
                "description": "Landscaping for a corporate campus with drought-resistant plants "
                "and efficient irrigation.",
                "imageUrl": "https://images.unsplash.com/photo-1626807236036-8c9584a9f8a2?w=1000",
                "completedOn": "2023-05-22",
                "serviceId": garden_maintenance_id,
            },
        ]
        seed_posts = [
            {
                "title": "10 Tips for a Thriving Summer Garden",
                "excerpt": "Essential tips to help your garden flourish during the hot summer months.",
                "body": "From watering techniques to pest management, a summer garden needs steady care.",
                "author": "Admin User",
                "publishedAt": "2023-06-01T00:00:00+00:00",
                "published": True,
            },
            {
                "title": "Sustainable Gardening Practices",
                "excerpt": "Create an eco-friendly garden that conserves water and supports local wildlife.",
                "body": "Sustainable gardens conserve water, support wildlife, and reduce environmental impact.",
                "author": "Admin User",
                "publishedAt": "2023-05-15T00:00:00+00:00",
                "published": True,
            },
        ]
        seed_testimonials = [
            {
                "authorName": "Sarah Johnson",
                "role": "Homeowner",
                "quote": "Green Garden transformed my backyard into a beautiful oasis!",
                "rating": 5,
                "displayOrder": 1,
            },
            {
                "authorName": "Michael Chen",
                "role": "Business Owner",
                "quote": "Their attention to detail has made our property look exceptional year-round.",
                "rating": 5,
                "displayOrder": 2,
            },
            {
                "authorName": "Emily Rodriguez",
                "role": "Homeowner",
                "quote": "They listened to our needs and created a sustainable garden we love.",
                "rating": 4,
                "displayOrder": 3,
            },
        ]
        for payload in seed_portfolio:
            self.create(PORTFOLIO, payload)
        for payload in seed_posts:
            self.create(BLOG, payload)
        for payload in seed_testimonials:
            self.create(TESTIMONIALS, payload)
        logger.info("Seeded demo content into %s", self.db_path)


default_db = str(Path(__file__).resolve().parents[2] / "data" / "content.sqlite3")
content_store = ContentStore(
    db_path=os.getenv("CONTENT_DB_PATH", default_db),
    seed_demo=_env_flag("CONTENT_SEED_DEMO", "true"),
)


def get_content_store() -> ContentStore:
    return content_store
