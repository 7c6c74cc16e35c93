from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from arc_backend.errors import ApiError
from arc_backend.routes import components, coverage, tests
from arc_backend.routes._deps import error_response, trace_id_from_request
from arc_backend.schemas import success_envelope
from arc_backend.store import store

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="ARC Components API", version="0.1.0")
    allow_origins = list(store.config.cors_allow_origins)
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        request.state.trace_id = request.headers.get("x-trace-id", "").strip() or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["x-trace-id"] = trace_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="not_found",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("unhandled_error path=%s", request.url.path)
        return error_response(
            request,
            code="INTERNAL_ERROR",
            message="internal server error",
            error_class="transient",
            retryable=True,
            status_code=500,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(components.router)
    app.include_router(coverage.router)
    app.include_router(tests.router)
    return app


app = create_app()
