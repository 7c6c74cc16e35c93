from __future__ import annotations

import json

import pytest

from arc_backend.errors import ApiError
from arc_backend.keys import KeyBuilder
from arc_backend.repositories.components import ComponentRegistry, TagOptions, merge_component_version


@pytest.fixture
def registry(datastore, config, clock) -> ComponentRegistry:
    return ComponentRegistry(datastore=datastore, config=config, clock=clock)


def _add(registry: ComponentRegistry, version: str, component: str = "ApiConsole", **kwargs):
    return registry.add_version(
        group="Api Components",
        component=component,
        version=version,
        pkg=f"@advanced-rest-client/{component}",
        org="advanced-rest-client",
        docs={"version": version},
        **kwargs,
    )


def test_ensure_group_is_idempotent(registry: ComponentRegistry):
    first = registry.ensure_group("Api Components")
    second = registry.ensure_group("api-components")

    assert first == second == {"name": "Api Components", "id": "api-components"}
    assert len(registry.list_groups().entities) == 1


def test_ensure_component_creates_once(registry: ComponentRegistry):
    registry.ensure_group("Api Components")
    created = registry.ensure_component("1.0.0", "ApiConsole", "Api Components", "pkg", "org")
    again = registry.ensure_component("1.0.0", "ApiConsole", "Api Components", "pkg", "org")

    assert created == again
    assert created["id"] == "api-console"
    assert created["groupId"] == "api-components"
    assert created["versions"] == ["1.0.0"]
    assert created["version"] == "1.0.0"
    assert len(registry.list_components().entities) == 1


def test_prerelease_first_version_leaves_version_unset(registry: ComponentRegistry):
    created = registry.ensure_component("1.0.0-beta.1", "ApiConsole", "Api Components", "pkg", "org")

    assert created["versions"] == ["1.0.0-beta.1"]
    assert "version" not in created


def test_added_versions_are_merged_and_latest_stable_is_reported(registry: ComponentRegistry):
    _add(registry, "1.0.0")
    _add(registry, "1.1.0")
    _add(registry, "2.0.0-beta")

    component = registry.get_component("Api Components", "ApiConsole")

    assert component["versions"] == ["1.0.0", "1.1.0", "2.0.0-beta"]
    assert component["version"] == "1.1.0"


def test_out_of_order_versions_read_back_the_semver_latest(registry: ComponentRegistry, datastore, config):
    _add(registry, "2.0.0")
    _add(registry, "1.5.0")

    stored = datastore.get(KeyBuilder(config).component("Api Components", "ApiConsole"))
    component = registry.get_component("Api Components", "ApiConsole")

    assert stored.properties["version"] == "1.5.0"
    assert component["version"] == "2.0.0"


def test_merge_reports_no_change_for_known_version():
    record = {"versions": ["1.0.0"], "version": "1.0.0"}
    assert merge_component_version(record, "1.0.0", TagOptions(keep_tags=True)) is False
    assert record == {"versions": ["1.0.0"], "version": "1.0.0"}


def test_tags_are_replaced_kept_or_removed(registry: ComponentRegistry):
    _add(registry, "1.0.0", tag_options=TagOptions.build(["apic"]))
    assert registry.get_component("Api Components", "ApiConsole")["tags"] == ["apic"]

    _add(registry, "1.1.0", tag_options=TagOptions.build(keep_tags=True))
    assert registry.get_component("Api Components", "ApiConsole")["tags"] == ["apic"]

    _add(registry, "1.2.0", tag_options=TagOptions.build(["amf", "apic"]))
    assert registry.get_component("Api Components", "ApiConsole")["tags"] == ["amf", "apic"]

    _add(registry, "1.3.0")
    assert "tags" not in registry.get_component("Api Components", "ApiConsole")


def test_tag_listings(registry: ComponentRegistry):
    _add(registry, "1.0.0", component="ApiConsole", tag_options=TagOptions.build(["apic"]))
    _add(registry, "1.0.0", component="AmfHelperMixin", tag_options=TagOptions.build(["amf", "apic"]))
    _add(registry, "1.0.0", component="ArcIcons")

    assert [item["name"] for item in registry.list_api_components()] == ["AmfHelperMixin", "ApiConsole"]
    assert [item["name"] for item in registry.list_amf_components()] == ["AmfHelperMixin"]
    assert len(registry.query_components(tags=["amf", "apic"]).entities) == 1
    assert len(registry.list_components(group="Api Components").entities) == 3
    assert registry.list_components(group="other").entities == []


def test_version_records_carry_parent_names_and_serialized_docs(registry: ComponentRegistry):
    _add(registry, "1.0.0", changelog="initial release", tag_options=TagOptions.build(["apic"]))

    version = registry.get_version("api-components", "api-console", "1.0.0")

    assert version["id"] == "1.0.0"
    assert version["version"] == "1.0.0"
    assert version["name"] == "ApiConsole"
    assert version["group"] == "api-components"
    assert version["component"] == "api-console"
    assert json.loads(version["docs"]) == {"version": "1.0.0"}
    assert version["changelog"] == "initial release"
    assert version["tags"] == ["apic"]
    assert version["created"] == 1_000


def test_re_adding_a_version_clears_a_dropped_changelog(registry: ComponentRegistry):
    _add(registry, "1.0.0", changelog="initial release")
    _add(registry, "1.0.0")

    version = registry.get_version("Api Components", "ApiConsole", "1.0.0")
    assert "changelog" not in version


def test_query_versions_orders_by_creation_time(registry: ComponentRegistry):
    _add(registry, "1.0.0")
    _add(registry, "1.1.0")
    _add(registry, "1.2.0")
    _add(registry, "0.1.0", component="ArcIcons")

    mine = registry.list_versions("Api Components", "ApiConsole")
    assert [item["id"] for item in mine.entities] == ["1.2.0", "1.1.0", "1.0.0"]

    window = registry.query_versions(since=2_000, until=3_000)
    assert [item["id"] for item in window.entities] == ["1.2.0", "1.1.0"]

    everything = registry.query_versions()
    assert [item["id"] for item in everything.entities][0] == "0.1.0"


def test_query_versions_pages_through_results(registry: ComponentRegistry):
    for minor in range(5):
        _add(registry, f"1.{minor}.0")

    first = registry.query_versions(group="Api Components", component="ApiConsole", limit=2)
    second = registry.query_versions(
        group="Api Components",
        component="ApiConsole",
        limit=2,
        page_token=first.page_token,
    )

    assert [item["id"] for item in first.entities] == ["1.4.0", "1.3.0"]
    assert [item["id"] for item in second.entities] == ["1.2.0", "1.1.0"]
    assert second.page_token is not None


def test_update_component_properties(registry: ComponentRegistry):
    _add(registry, "1.0.0")

    updated = registry.update_component_properties("Api Components", "ApiConsole", {"scope": "@arc", "org": "mulesoft"})

    assert updated["scope"] == "@arc"
    assert updated["org"] == "mulesoft"
    assert updated["versions"] == ["1.0.0"]
    assert registry.get_component("Api Components", "ApiConsole")["scope"] == "@arc"


def test_updates_to_missing_components_are_not_found(registry: ComponentRegistry):
    with pytest.raises(ApiError) as exc_info:
        registry.update_component_properties("Api Components", "Missing", {"scope": "@arc"})
    assert exc_info.value.http_status == 404

    with pytest.raises(ApiError):
        registry.add_component_version({"group": "Api Components", "name": "Missing"}, "1.0.0")


def test_add_component_version_re_reads_the_stored_record(registry: ComponentRegistry):
    _add(registry, "1.0.0")
    component = registry.get_component("Api Components", "ApiConsole")
    stale = dict(component, versions=[])

    updated = registry.add_component_version(stale, "1.1.0", TagOptions(keep_tags=True))

    assert updated["versions"] == ["1.0.0", "1.1.0"]


def test_missing_lookups_return_none(registry: ComponentRegistry):
    assert registry.get_group("nope") is None
    assert registry.get_component("nope", "nope") is None
    assert registry.get_version("nope", "nope", "1.0.0") is None


@pytest.mark.parametrize("field", ["versions", "version", "name", "group"])
def test_merge_managed_properties_cannot_be_updated(registry: ComponentRegistry, field: str):
    _add(registry, "1.0.0")

    with pytest.raises(ApiError) as exc_info:
        registry.update_component_properties("Api Components", "ApiConsole", {field: ["1.0.0", "1.0.0"]})

    assert exc_info.value.http_status == 400
    assert exc_info.value.code == "COMPONENT_PROPERTY_PROTECTED"
    assert registry.get_component("Api Components", "ApiConsole")["versions"] == ["1.0.0"]


def test_versions_stay_unique_after_rejected_update(registry: ComponentRegistry):
    _add(registry, "1.0.0")
    with pytest.raises(ApiError):
        registry.update_component_properties("Api Components", "ApiConsole", {"versions": "abc"})
    with pytest.raises(ApiError) as exc_info:
        registry.update_component_properties("Api Components", "ApiConsole", {"tags": "apic"})
    assert exc_info.value.code == "COMPONENT_TAGS_INVALID"

    _add(registry, "2.0.0")

    assert registry.get_component("Api Components", "ApiConsole")["versions"] == ["1.0.0", "2.0.0"]


@pytest.mark.parametrize(
    ("group", "component"),
    [("!!!", "ApiConsole"), ("Api Components", "???")],
)
def test_add_version_rejects_names_without_key_characters(registry: ComponentRegistry, group: str, component: str):
    with pytest.raises(ApiError) as exc_info:
        registry.add_version(
            group=group,
            component=component,
            version="1.0.0",
            pkg="pkg",
            org="org",
            docs={},
        )

    assert exc_info.value.http_status == 400
    assert exc_info.value.code == "INVALID_KEY_NAME"
    assert registry.list_groups().entities == []
