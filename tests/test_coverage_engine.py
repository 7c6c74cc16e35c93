from __future__ import annotations

import pytest

from arc_backend.datastore import InMemoryTransaction, as_write_list
from arc_backend.errors import ApiError
from arc_backend.repositories.coverage import CoverageRepository

ORG = "advanced-rest-client"
COMPONENT = "api-console"


@pytest.fixture
def coverage(datastore, config, clock) -> CoverageRepository:
    return CoverageRepository(datastore=datastore, config=config, clock=clock)


def _hits(hit: int, found: int) -> dict:
    return {"hit": hit, "found": found}


def _result(total: float, files: list[str | None] | None = None) -> dict:
    details = []
    for name in files if files is not None else ["src/ApiConsole.js", "src/Navigation.js"]:
        item = {
            "title": "Chrome",
            "functions": _hits(8, 10),
            "lines": _hits(90, 100),
            "branches": _hits(3, 4),
            "coverage": total,
        }
        if name is not None:
            item["file"] = name
        details.append(item)
    return {
        "summary": {"functions": 80.0, "lines": 90.0, "branches": 75.0, "coverage": total},
        "details": details,
    }


def _run(coverage: CoverageRepository, tag: str, total: float = 80.0, **kwargs) -> str:
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": tag})
    coverage.start(run["id"])
    coverage.finish_run(run["id"], _result(total, **kwargs))
    return run["id"]


def test_insert_queues_a_run_with_defaults(coverage: CoverageRepository):
    run = coverage.insert(
        {
            "component": COMPONENT,
            "org": ORG,
            "tag": "1.0.0",
            "creator": {"id": "user-1", "displayName": "Pawel"},
        }
    )

    stored = coverage.get(run["id"])
    assert stored == run
    assert stored["status"] == "queued"
    assert stored["branch"] == "master"
    assert stored["created"] == 1_000
    assert stored["creator"] == {"id": "user-1", "displayName": "Pawel"}


def test_insert_rejects_a_non_semver_tag_before_writing(coverage: CoverageRepository):
    with pytest.raises(ApiError) as exc_info:
        coverage.insert({"component": COMPONENT, "org": ORG, "tag": "latest"})

    assert exc_info.value.code == "COVERAGE_TAG_INVALID"
    assert exc_info.value.http_status == 400
    assert coverage.list().entities == []


def test_insert_rejects_a_malformed_definition(coverage: CoverageRepository):
    with pytest.raises(ApiError) as exc_info:
        coverage.insert({"component": COMPONENT, "tag": "1.0.0"})
    assert exc_info.value.code == "COVERAGE_RUN_INVALID"


def test_run_lifecycle(coverage: CoverageRepository):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})

    coverage.start(run["id"])
    running = coverage.get(run["id"])
    assert running["status"] == "running"
    assert running["startTime"] == 2_000

    coverage.finish_run(run["id"], _result(81.5))
    finished = coverage.get(run["id"])
    assert finished["status"] == "finished"
    assert finished["endTime"] == 3_000
    assert finished["coverage"] == {"functions": 80.0, "lines": 90.0, "branches": 75.0, "coverage": 81.5}


def test_invalid_transitions_are_conflicts(coverage: CoverageRepository):
    run_id = _run(coverage, "1.0.0")

    for action in (
        lambda: coverage.start(run_id),
        lambda: coverage.run_error(run_id, "late"),
        lambda: coverage.finish_run(run_id, _result(1.0)),
    ):
        with pytest.raises(ApiError) as exc_info:
            action()
        assert exc_info.value.http_status == 409


def test_mutating_a_missing_run_is_not_found(coverage: CoverageRepository):
    with pytest.raises(ApiError) as exc_info:
        coverage.start("missing")
    assert exc_info.value.http_status == 404


def test_run_error_finishes_a_queued_run(coverage: CoverageRepository):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})

    coverage.run_error(run["id"], "karma crashed")

    failed = coverage.get(run["id"])
    assert failed["status"] == "finished"
    assert failed["error"] is True
    assert failed["message"] == "karma crashed"
    assert "endTime" in failed


def test_finish_writes_file_version_and_component_aggregates(coverage: CoverageRepository):
    run_id = _run(coverage, "2.0.0", total=82.0)

    version_coverage = coverage.get_version_coverage(ORG, COMPONENT, "2.0.0")
    component_coverage = coverage.get_component_coverage(ORG, COMPONENT)
    files = coverage.query_run_files(run_id)

    assert version_coverage["coverage"]["coverage"] == 82.0
    assert version_coverage["version"] == "2.0.0"
    assert version_coverage["coverageId"] == run_id
    assert component_coverage["version"] == "2.0.0"
    assert component_coverage["coverageId"] == run_id
    assert sorted(item["file"] for item in files.entities) == ["src/ApiConsole.js", "src/Navigation.js"]
    assert all(item["coverageId"] == run_id for item in files.entities)
    assert files.entities[0]["lines"] == {"hit": 90, "found": 100}


def test_summary_nulls_are_dropped(coverage: CoverageRepository):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})
    coverage.start(run["id"])
    coverage.finish_run(run["id"], {"summary": {"lines": 50.0, "functions": None, "coverage": 50.0}})

    assert coverage.get(run["id"])["coverage"] == {"lines": 50.0, "coverage": 50.0}
    assert coverage.get_version_coverage(ORG, COMPONENT, "1.0.0")["coverage"] == {"lines": 50.0, "coverage": 50.0}


def test_component_coverage_tracks_the_highest_stable_tag(coverage: CoverageRepository):
    _run(coverage, "2.0.0", total=70.0)
    _run(coverage, "1.5.0", total=10.0)
    assert coverage.get_component_coverage(ORG, COMPONENT)["version"] == "2.0.0"
    assert coverage.get_component_coverage(ORG, COMPONENT)["coverage"]["coverage"] == 70.0

    _run(coverage, "3.0.0", total=90.0)
    assert coverage.get_component_coverage(ORG, COMPONENT)["version"] == "3.0.0"

    _run(coverage, "3.0.0", total=91.0)
    assert coverage.get_component_coverage(ORG, COMPONENT)["coverage"]["coverage"] == 91.0

    # older tags still get their own version aggregate
    assert coverage.get_version_coverage(ORG, COMPONENT, "1.5.0")["coverage"]["coverage"] == 10.0


def test_prerelease_tags_never_touch_component_coverage(coverage: CoverageRepository):
    _run(coverage, "3.0.0-beta.1")
    assert coverage.get_component_coverage(ORG, COMPONENT) is None
    assert coverage.get_version_coverage(ORG, COMPONENT, "3.0.0-beta.1") is not None

    _run(coverage, "1.0.0")
    _run(coverage, "4.0.0-rc.1")
    assert coverage.get_component_coverage(ORG, COMPONENT)["version"] == "1.0.0"


def test_finish_is_atomic(coverage: CoverageRepository, monkeypatch: pytest.MonkeyPatch):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "2.0.0"})
    coverage.start(run["id"])
    original_save = InMemoryTransaction.save

    def failing_save(self, writes):
        for write in as_write_list(writes):
            if write.key.kind == "ComponentVersionCoverageResult":
                raise RuntimeError("store unavailable")
        original_save(self, writes)

    monkeypatch.setattr(InMemoryTransaction, "save", failing_save)

    with pytest.raises(RuntimeError, match="store unavailable"):
        coverage.finish_run(run["id"], _result(80.0))

    assert coverage.get(run["id"])["status"] == "running"
    assert coverage.get_version_coverage(ORG, COMPONENT, "2.0.0") is None
    assert coverage.get_component_coverage(ORG, COMPONENT) is None


def test_malformed_result_is_rejected_before_any_write(coverage: CoverageRepository):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})

    with pytest.raises(ApiError) as exc_info:
        coverage.finish_run(run["id"], {"details": []})

    assert exc_info.value.code == "COVERAGE_RESULT_INVALID"
    assert coverage.get(run["id"])["status"] == "queued"


def test_unnamed_files_get_generated_names(coverage: CoverageRepository):
    run_id = _run(coverage, "1.0.0", files=[None, None])

    files = coverage.query_run_files(run_id).entities

    assert len(files) == 2
    assert files[0]["file"] != files[1]["file"]
    assert all(item["id"] == item["file"] for item in files)


def test_query_run_files_pages(coverage: CoverageRepository):
    run_id = _run(coverage, "1.0.0", files=["a.js", "b.js", "c.js"])

    first = coverage.query_run_files(run_id, limit=2)
    second = coverage.query_run_files(run_id, limit=2, page_token=first.page_token)

    assert [item["file"] for item in first.entities] == ["a.js", "b.js"]
    assert [item["file"] for item in second.entities] == ["c.js"]
    assert second.page_token is None


def test_query_run_files_for_missing_run(coverage: CoverageRepository):
    assert coverage.query_run_files("missing") is None


def test_list_orders_runs_newest_first(coverage: CoverageRepository):
    first = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})
    second = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.1.0"})

    assert [item["id"] for item in coverage.list().entities] == [second["id"], first["id"]]


def test_delete_removes_only_the_run(coverage: CoverageRepository):
    run_id = _run(coverage, "1.0.0")

    coverage.delete(run_id)

    assert coverage.get(run_id) is None
    assert coverage.get_version_coverage(ORG, COMPONENT, "1.0.0") is not None
    assert coverage.get_component_coverage(ORG, COMPONENT) is not None


def test_finishing_a_queued_run_is_a_conflict(coverage: CoverageRepository):
    run = coverage.insert({"component": COMPONENT, "org": ORG, "tag": "1.0.0"})

    with pytest.raises(ApiError) as exc_info:
        coverage.finish_run(run["id"], _result(50.0))

    assert exc_info.value.http_status == 409
    assert exc_info.value.code == "COVERAGE_STATE_TRANSITION_INVALID"
    assert coverage.get(run["id"])["status"] == "queued"
    assert coverage.get_version_coverage(ORG, COMPONENT, "1.0.0") is None


@pytest.mark.parametrize("field", ["org", "component"])
def test_insert_rejects_names_without_key_characters(coverage: CoverageRepository, field: str):
    info = {"component": COMPONENT, "org": ORG, "tag": "1.0.0", field: "???"}

    with pytest.raises(ApiError) as exc_info:
        coverage.insert(info)

    assert exc_info.value.http_status == 400
    assert exc_info.value.code == "INVALID_KEY_NAME"
    assert coverage.list().entities == []
