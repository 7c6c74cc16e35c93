from __future__ import annotations

from fastapi import APIRouter, Request

from arc_backend.routes._deps import require_found, trace_id_from_request
from arc_backend.schemas import ComponentTestCreateRequest, success_envelope
from arc_backend.store import store

router = APIRouter(prefix="/api/v1", tags=["tests"])


@router.post("/tests", status_code=201)
def create_test(payload: ComponentTestCreateRequest, request: Request):
    test_id = store.tests.create(payload)
    return success_envelope(store.tests.get(test_id), trace_id_from_request(request))


@router.get("/tests")
def list_tests(request: Request, limit: int | None = None, pageToken: str | None = None):
    data = store.tests.list(limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/tests/{test_id}")
def get_test(test_id: str, request: Request):
    data = require_found(store.tests.get(test_id), code="TEST_NOT_FOUND", message="test not found")
    return success_envelope(data, trace_id_from_request(request))


@router.delete("/tests/{test_id}", status_code=204)
def delete_test(test_id: str) -> None:
    store.tests.delete(test_id)


@router.put("/tests/{test_id}/restart")
def restart_test(test_id: str, request: Request):
    store.tests.reset_test(test_id)
    return success_envelope(store.tests.get(test_id), trace_id_from_request(request))


@router.get("/tests/{test_id}/components")
def list_test_components(
    test_id: str,
    request: Request,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.test_components.list(test_id, limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/tests/{test_id}/components/{component}")
def get_test_component(test_id: str, component: str, request: Request):
    data = require_found(
        store.test_components.get(test_id, component),
        code="TEST_COMPONENT_NOT_FOUND",
        message="test component not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/tests/{test_id}/components/{component}/logs")
def list_test_logs(
    test_id: str,
    component: str,
    request: Request,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = store.test_logs.list(test_id, component, limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/tests/{test_id}/components/{component}/logs/{log_id}")
def get_test_log(test_id: str, component: str, log_id: str, request: Request):
    data = require_found(
        store.test_logs.get(test_id, component, log_id),
        code="TEST_LOG_NOT_FOUND",
        message="test log not found",
    )
    return success_envelope(data, trace_id_from_request(request))
