from __future__ import annotations

from fastapi import APIRouter, Request

from arc_backend.routes._deps import require_found, trace_id_from_request
from arc_backend.schemas import CoverageResult, CoverageRunCreateRequest, CoverageRunErrorRequest, success_envelope
from arc_backend.store import store

router = APIRouter(prefix="/api/v1", tags=["coverage"])


@router.get("/coverage")
def list_coverage_runs(request: Request, limit: int | None = None, pageToken: str | None = None):
    data = store.coverage.list(limit=limit, page_token=pageToken)
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.post("/coverage", status_code=201)
def schedule_coverage(payload: CoverageRunCreateRequest, request: Request):
    data = store.coverage.insert(payload)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/coverage/{run_id}")
def get_coverage_run(run_id: str, request: Request):
    data = require_found(
        store.coverage.get(run_id),
        code="COVERAGE_RUN_NOT_FOUND",
        message="coverage run not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.delete("/coverage/{run_id}", status_code=204)
def delete_coverage_run(run_id: str) -> None:
    store.coverage.delete(run_id)


@router.post("/coverage/{run_id}/start")
def start_coverage_run(run_id: str, request: Request):
    store.coverage.start(run_id)
    return success_envelope({"id": run_id, "status": "running"}, trace_id_from_request(request))


@router.post("/coverage/{run_id}/error")
def fail_coverage_run(run_id: str, payload: CoverageRunErrorRequest, request: Request):
    store.coverage.run_error(run_id, payload.message)
    return success_envelope({"id": run_id, "status": "finished"}, trace_id_from_request(request))


@router.post("/coverage/{run_id}/finish")
def finish_coverage_run(run_id: str, payload: CoverageResult, request: Request):
    store.coverage.finish_run(run_id, payload)
    return success_envelope({"id": run_id, "status": "finished"}, trace_id_from_request(request))


@router.get("/coverage/{run_id}/files")
def list_coverage_files(
    run_id: str,
    request: Request,
    limit: int | None = None,
    pageToken: str | None = None,
):
    data = require_found(
        store.coverage.query_run_files(run_id, limit=limit, page_token=pageToken),
        code="COVERAGE_RUN_NOT_FOUND",
        message="coverage run not found",
    )
    return success_envelope(data.to_dict(), trace_id_from_request(request))


@router.get("/coverage/orgs/{org}/components/{component}")
def get_component_coverage(org: str, component: str, request: Request):
    data = require_found(
        store.coverage.get_component_coverage(org, component),
        code="COVERAGE_NOT_FOUND",
        message="component coverage not found",
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/coverage/orgs/{org}/components/{component}/versions/{version}")
def get_version_coverage(org: str, component: str, version: str, request: Request):
    data = require_found(
        store.coverage.get_version_coverage(org, component, version),
        code="COVERAGE_NOT_FOUND",
        message="version coverage not found",
    )
    return success_envelope(data, trace_id_from_request(request))
