from __future__ import annotations

from fastapi import APIRouter, Query, Request

from arc_backend.repositories.components import TagOptions
from arc_backend.routes._deps import require_found, trace_id_from_request
from arc_backend.schemas import ComponentPropertiesRequest, VersionCreateRequest, success_envelope
from arc_backend.store import store

router = APIRouter(prefix="/api/v1", tags=["components"])


@router.get("/groups")
def list_groups(request: Request, limit: int | None = None, pageToken: str | None = None):
    data = store.components.list_groups(limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/groups/{group_id}")
def get_group(group_id: str, request: Request):
    data = require_found(
        store.components.get_group(group_id),
        code="GROUP_NOT_FOUND",
        message="group not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/groups/{group_id}/components")
def list_group_components(
    group_id: str,
    request: Request,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.components.list_components(group=group_id, limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/groups/{group_id}/components/{component_id}")
def get_component(group_id: str, component_id: str, request: Request):
    data = require_found(
        store.components.get_component(group_id, component_id),
        code="COMPONENT_NOT_FOUND",
        message="component not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/groups/{group_id}/components/{component_id}")
def update_component(group_id: str, component_id: str, payload: ComponentPropertiesRequest, request: Request):
    data = store.components.update_component_properties(group_id, component_id, payload.props)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/groups/{group_id}/components/{component_id}/versions")
def list_component_versions(
    group_id: str,
    component_id: str,
    request: Request,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.components.list_versions(group_id, component_id, limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/groups/{group_id}/components/{component_id}/versions/{version_id}")
def get_version(group_id: str, component_id: str, version_id: str, request: Request):
    data = require_found(
        store.components.get_version(group_id, component_id, version_id),
        code="VERSION_NOT_FOUND",
        message="version not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/components")
def query_components(
    request: Request,
    group: str | None = None,
    tags: list[str] | None = Query(default=None),
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.components.query_components(group=group, tags=tags, limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/components/versions")
def query_versions(
    request: Request,
    group: str | None = None,
    component: str | None = None,
    tags: list[str] | None = Query(default=None),
    since: int | None = None,
    until: int | None = None,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.components.query_versions(
        group=group,
        component=component,
        tags=tags,
        since=since,
        until=until,
        limit=limit,
        page_token=pageToken,
    )
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.post("/components/versions", status_code=201)
def add_version(payload: VersionCreateRequest, request: Request):
    data = store.components.add_version(
        group=payload.group,
        component=payload.component,
        version=payload.version,
        pkg=payload.pkg,
        org=payload.org,
        docs=payload.docs,
        changelog=payload.changelog,
        tag_options=TagOptions.build(payload.tags, payload.keepTags),
    )
    return success_envelope(data, trace_id_from_request(request))
