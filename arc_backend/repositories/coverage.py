"""Coverage runs and their roll-up into file, version and component aggregates.

A run moves ``queued -> running -> finished``. Finishing a run writes, in one
transaction, the run summary, one record per covered file, the version
aggregate, and (for stable tags that are not older than the stored one) the
component aggregate.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from arc_backend.config import BackendConfig
from arc_backend.datastore import Datastore, Entity, Order, Query, Transaction
from arc_backend.entities import to_record, to_store_write
from arc_backend.errors import not_found, state_conflict, validation_error
from arc_backend.keys import KeyBuilder
from arc_backend.pagination import QueryResult, run_paged_query
from arc_backend.schemas import CoverageResult, CoverageRunCreateRequest
from arc_backend.versions import is_greater, is_prerelease, is_valid

logger = logging.getLogger(__name__)

RUN_EXCLUDED_INDEXES = (
    "branch",
    "component",
    "org",
    "tag",
    "status",
    "coverage",
    "startTime",
    "endTime",
    "error",
    "message",
    "creator",
)
FILE_EXCLUDED_INDEXES = ("file", "title", "functions", "lines", "branches", "coverage", "coverageId")
AGGREGATE_EXCLUDED_INDEXES = ("coverage", "version", "coverageId")

# queued -> finished is only reachable through run_error; finish_run needs a running run.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "queued": {"running", "finished"},
    "running": {"finished"},
    "finished": set(),
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_result(coverage: CoverageResult | dict[str, Any]) -> CoverageResult:
    if isinstance(coverage, CoverageResult):
        return coverage
    try:
        return CoverageResult.model_validate(coverage)
    except ValidationError as exc:
        raise validation_error("COVERAGE_RESULT_INVALID", "coverage result is malformed") from exc


class CoverageRepository:
    def __init__(
        self,
        *,
        datastore: Datastore,
        config: BackendConfig,
        keys: KeyBuilder | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._datastore = datastore
        self._config = config
        self._keys = keys or KeyBuilder(config)
        self._clock = clock or _now_ms

    def list(self, *, limit: int | None = None, page_token: str | None = None) -> QueryResult:
        query = Query(
            namespace=self._config.coverage_namespace,
            kind=self._keys.kinds.coverage_run,
            orders=(Order("created", descending=True),),
        )
        return run_paged_query(
            self._datastore,
            query,
            config=self._config,
            mapper=to_record,
            limit=limit,
            page_token=page_token,
        )

    def insert(self, info: CoverageRunCreateRequest | dict[str, Any]) -> dict[str, Any]:
        try:
            payload = (
                info if isinstance(info, CoverageRunCreateRequest) else CoverageRunCreateRequest.model_validate(info)
            )
        except ValidationError as exc:
            raise validation_error("COVERAGE_RUN_INVALID", "coverage run definition is malformed") from exc
        if not is_valid(payload.tag):
            raise validation_error("COVERAGE_TAG_INVALID", f"tag is not a semantic version: {payload.tag}")
        # org and component must form a key for the aggregates written at finish time
        self._keys.version_coverage(payload.component, payload.org, payload.tag)

        run_id = str(uuid.uuid4())
        record: dict[str, Any] = {
            "branch": payload.branch,
            "created": self._clock(),
            "status": "queued",
            "component": payload.component,
            "org": payload.org,
            "tag": payload.tag,
        }
        if payload.creator is not None:
            record["creator"] = payload.creator.model_dump(exclude_none=True)
        key = self._keys.coverage_run(run_id)
        self._datastore.put(to_store_write(key, record, RUN_EXCLUDED_INDEXES))
        logger.info("coverage_run_queued run_id=%s component=%s tag=%s", run_id, payload.component, payload.tag)
        return {**record, "id": run_id}

    def get(self, run_id: str) -> dict[str, Any] | None:
        entity = self._datastore.get(self._keys.coverage_run(run_id))
        return to_record(entity) if entity is not None else None

    def _transition(
        self,
        tx: Transaction,
        run_id: str,
        new_status: str,
        *,
        from_statuses: set[str] | None = None,
    ) -> dict[str, Any]:
        entity = tx.get(self._keys.coverage_run(run_id))
        if entity is None:
            raise not_found("COVERAGE_RUN_NOT_FOUND", f"coverage run not found: {run_id}")
        item = dict(entity.properties)
        current = str(item.get("status", "queued"))
        allowed = new_status in ALLOWED_TRANSITIONS.get(current, set())
        if not allowed or (from_statuses is not None and current not in from_statuses):
            raise state_conflict(
                "COVERAGE_STATE_TRANSITION_INVALID",
                f"cannot move coverage run from {current} to {new_status}",
            )
        item["status"] = new_status
        return item

    def _save_run(self, tx: Transaction, run_id: str, item: dict[str, Any]) -> None:
        tx.save(to_store_write(self._keys.coverage_run(run_id), item, RUN_EXCLUDED_INDEXES))

    def start(self, run_id: str) -> None:
        def _op(tx: Transaction) -> None:
            item = self._transition(tx, run_id, "running")
            item["startTime"] = self._clock()
            self._save_run(tx, run_id, item)

        self._datastore.run_in_tx(_op)
        logger.info("coverage_run_started run_id=%s", run_id)

    def run_error(self, run_id: str, message: str) -> None:
        def _op(tx: Transaction) -> None:
            item = self._transition(tx, run_id, "finished")
            item["endTime"] = self._clock()
            item["error"] = True
            item["message"] = message
            self._save_run(tx, run_id, item)

        self._datastore.run_in_tx(_op)
        logger.info("coverage_run_failed run_id=%s", run_id)

    def finish_run(self, run_id: str, coverage: CoverageResult | dict[str, Any]) -> None:
        result = _parse_result(coverage)
        summary = result.summary.model_dump(exclude_none=True)

        def _op(tx: Transaction) -> None:
            item = self._transition(tx, run_id, "finished", from_statuses={"running"})
            item["endTime"] = self._clock()
            item["coverage"] = summary
            self._save_run(tx, run_id, item)
            self._add_file_coverage(tx, item, result, run_id)
            self._add_version_coverage(tx, item, summary, run_id)
            self._add_component_coverage(tx, item, summary, run_id)

        self._datastore.run_in_tx(_op)
        logger.info("coverage_run_finished run_id=%s files=%d", run_id, len(result.details))

    def _add_file_coverage(
        self,
        tx: Transaction,
        item: dict[str, Any],
        result: CoverageResult,
        coverage_id: str,
    ) -> None:
        component, org, tag = item["component"], item["org"], item["tag"]
        for detail in result.details:
            # Karma may omit the file name for some reports.
            file = detail.file or str(uuid.uuid4())
            data = detail.model_dump(exclude={"file"}, exclude_none=True)
            data["file"] = file
            data["coverageId"] = coverage_id
            key = self._keys.file_coverage(component, org, tag, file)
            tx.save(to_store_write(key, data, FILE_EXCLUDED_INDEXES))

    def _add_version_coverage(
        self,
        tx: Transaction,
        item: dict[str, Any],
        summary: dict[str, Any],
        coverage_id: str,
    ) -> None:
        key = self._keys.version_coverage(item["component"], item["org"], item["tag"])
        data = {"coverage": summary, "version": item["tag"], "coverageId": coverage_id}
        tx.save(to_store_write(key, data, AGGREGATE_EXCLUDED_INDEXES))

    def _add_component_coverage(
        self,
        tx: Transaction,
        item: dict[str, Any],
        summary: dict[str, Any],
        coverage_id: str,
    ) -> None:
        tag = item["tag"]
        if is_prerelease(tag):
            logger.info("component_coverage_skipped reason=prerelease tag=%s", tag)
            return
        key = self._keys.component_coverage(item["component"], item["org"])
        existing = tx.get(key)
        if existing is not None:
            stored = existing.properties.get("version")
            if stored and is_greater(str(stored), tag):
                logger.info("component_coverage_skipped reason=older_tag tag=%s stored=%s", tag, stored)
                return
        data = {"coverage": summary, "version": tag, "coverageId": coverage_id}
        tx.save(to_store_write(key, data, AGGREGATE_EXCLUDED_INDEXES))

    def query_run_files(
        self,
        run_id: str,
        *,
        limit: int | None = None,
        page_token: str | None = None,
    ) -> QueryResult | None:
        run = self.get(run_id)
        if run is None:
            return None
        query = Query(
            namespace=self._config.coverage_namespace,
            kind=self._keys.kinds.coverage_file,
            ancestor=self._keys.version_coverage(run["component"], run["org"], run["tag"]),
        )
        return run_paged_query(
            self._datastore,
            query,
            config=self._config,
            mapper=to_record,
            limit=limit,
            page_token=page_token,
        )

    @staticmethod
    def _aggregate_record(entity: Entity | None) -> dict[str, Any] | None:
        return to_record(entity) if entity is not None else None

    def get_version_coverage(self, org: str, component: str, version: str) -> dict[str, Any] | None:
        return self._aggregate_record(self._datastore.get(self._keys.version_coverage(component, org, version)))

    def get_component_coverage(self, org: str, component: str) -> dict[str, Any] | None:
        return self._aggregate_record(self._datastore.get(self._keys.component_coverage(component, org)))

    def delete(self, run_id: str) -> None:
        self._datastore.delete(self._keys.coverage_run(run_id))
        logger.info("coverage_run_deleted run_id=%s", run_id)
