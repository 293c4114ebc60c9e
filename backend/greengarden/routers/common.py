from typing import Any, Dict, Iterable, Mapping

from fastapi import Request, Response

from greengarden.models import ContentFields
from greengarden.services.entity_kinds import EntityKind

REVISION_HEADER = "X-Content-Revision"


def dump(record: ContentFields) -> Dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True)


def list_envelope(kind: EntityKind, records: Iterable[ContentFields]) -> Dict[str, Any]:
    return {kind.envelope: [dump(record) for record in records]}


def item_envelope(kind: EntityKind, record: ContentFields) -> Dict[str, Any]:
    return {kind.singular: dump(record)}


def set_revision(response: Response, kind: EntityKind, revision: int) -> None:
    response.headers[REVISION_HEADER] = f"{kind.name}={revision}"


def filter_params(kind: EntityKind, request: Request) -> Mapping[str, str]:
    """Query parameters that name one of the kind's list filters."""
    return {
        kind_filter.param: request.query_params[kind_filter.param]
        for kind_filter in kind.filters
        if kind_filter.param in request.query_params
    }
