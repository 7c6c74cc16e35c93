from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Creator(BaseModel):
    id: str
    displayName: str | None = None


class CoverageHits(BaseModel):
    hit: int = Field(ge=0)
    found: int = Field(ge=0)


class CoverageSummary(BaseModel):
    functions: float | None = None
    lines: float | None = None
    branches: float | None = None
    coverage: float


class CoverageFileReport(BaseModel):
    file: str | None = None
    title: str | None = None
    functions: CoverageHits
    lines: CoverageHits
    branches: CoverageHits
    coverage: float


class CoverageResult(BaseModel):
    summary: CoverageSummary
    details: list[CoverageFileReport] = Field(default_factory=list)


class CoverageRunCreateRequest(BaseModel):
    component: str = Field(min_length=1)
    org: str = Field(min_length=1)
    tag: str = Field(min_length=1)
    branch: str = "master"
    creator: Creator | None = None


class CoverageRunErrorRequest(BaseModel):
    message: str


class VersionCreateRequest(BaseModel):
    group: str = Field(min_length=1)
    component: str = Field(min_length=1)
    version: str = Field(min_length=1)
    pkg: str
    org: str
    docs: Any = None
    changelog: str | None = None
    tags: list[str] | None = None
    keepTags: bool = False


class ComponentPropertiesRequest(BaseModel):
    props: dict[str, Any] = Field(min_length=1)


class ComponentTestCreateRequest(BaseModel):
    type: str
    repository: str | None = None
    includeDev: bool | None = None
    amfBranch: str | None = None
    creator: Creator | None = None


class ComponentTestReport(BaseModel):
    error: bool = False
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    message: str | None = None
    results: list[dict[str, Any]] = Field(default_factory=list)


class BrowserResult(BaseModel):
    browser: str = Field(min_length=1)
    startTime: int | None = None
    endTime: int | None = None
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    error: bool = False
    message: str | None = None
    logs: list[Any] | None = None


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": True,
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        body["details"] = details
    body["meta"] = {"trace_id": trace_id}
    return body
