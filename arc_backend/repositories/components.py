"""Group → component → version registry.

The component record keeps the list of every version it has seen and a
``version`` field holding the latest stable release. Records read back through
this module always derive ``version`` from ``versions`` so listings agree with
semver ordering even when versions were added out of order.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from arc_backend.config import BackendConfig
from arc_backend.datastore import Datastore, Entity, EntityWrite, Filter, Order, Query, Transaction
from arc_backend.entities import to_record, to_store_write
from arc_backend.errors import not_found, validation_error
from arc_backend.keys import Key, KeyBuilder
from arc_backend.pagination import QueryResult, run_paged_query
from arc_backend.versions import find_latest_version, is_prerelease

logger = logging.getLogger(__name__)

GROUP_EXCLUDED_INDEXES = ("name",)
COMPONENT_EXCLUDED_INDEXES = ("version", "versions", "group", "org", "pkg", "ref", "scope")
VERSION_EXCLUDED_INDEXES = ("name", "version", "docs", "changelog")

_COMPONENT_DERIVED = ("groupId",)
_VERSION_DERIVED = ("group", "component")
# Maintained by the version merge; never set through property updates.
PROTECTED_COMPONENT_PROPERTIES = frozenset({"id", "name", "group", "groupId", "version", "versions"})


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TagOptions:
    tags: tuple[str, ...] | None = None
    keep_tags: bool = False

    @classmethod
    def build(cls, tags: list[str] | None = None, keep_tags: bool = False) -> "TagOptions":
        return cls(tags=tuple(tags) if tags is not None else None, keep_tags=keep_tags)


def merge_component_version(
    record: dict[str, Any],
    version: str,
    tag_options: TagOptions | None = None,
) -> bool:
    """Merge ``version`` and tags into ``record`` in place; True when anything changed.

    The latest stable version is promoted without a semver comparison: versions
    are expected to arrive in release order.
    """
    changed = False
    versions = list(record.get("versions") or [])
    if version not in versions:
        versions.append(version)
        record["versions"] = versions
        if not is_prerelease(version):
            record["version"] = version
        changed = True

    opts = tag_options or TagOptions()
    if opts.tags:
        tags = list(opts.tags)
        if record.get("tags") != tags:
            record["tags"] = tags
            changed = True
    elif not opts.keep_tags and "tags" in record:
        del record["tags"]
        changed = True
    return changed


class ComponentRegistry:
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

    @staticmethod
    def find_latest_version(versions: list[str] | None) -> str | None:
        return find_latest_version(versions)

    def _component_record(self, entity: Entity) -> dict[str, Any]:
        record = to_record(entity)
        record["groupId"] = entity.key.ancestor_name(1)
        latest = find_latest_version(record.get("versions"))
        if latest is None:
            record.pop("version", None)
        else:
            record["version"] = latest
        return record

    @staticmethod
    def _version_record(entity: Entity) -> dict[str, Any]:
        record = to_record(entity)
        record["group"] = entity.key.ancestor_name(2)
        record["component"] = entity.key.ancestor_name(1)
        return record

    def _component_write(self, key: Key, record: dict[str, Any]) -> EntityWrite:
        return to_store_write(key, record, COMPONENT_EXCLUDED_INDEXES, derived_fields=_COMPONENT_DERIVED)

    def _version_write(self, key: Key, record: dict[str, Any]) -> EntityWrite:
        return to_store_write(key, record, VERSION_EXCLUDED_INDEXES, derived_fields=_VERSION_DERIVED)

    # groups

    def get_group(self, name: str) -> dict[str, Any] | None:
        entity = self._datastore.get(self._keys.group(name))
        return to_record(entity) if entity is not None else None

    def ensure_group(self, name: str) -> dict[str, Any]:
        key = self._keys.group(name)

        def _op(tx: Transaction) -> dict[str, Any]:
            existing = tx.get(key)
            if existing is not None:
                return to_record(existing)
            write = to_store_write(key, {"name": name}, GROUP_EXCLUDED_INDEXES)
            tx.save(write)
            logger.info("group_created group=%s", key.name)
            return to_record(write.to_entity())

        return self._datastore.run_in_tx(_op)

    def list_groups(self, *, limit: int | None = None, page_token: str | None = None) -> QueryResult:
        query = Query(namespace=self._config.components_namespace, kind=self._keys.kinds.group)
        return run_paged_query(
            self._datastore,
            query,
            config=self._config,
            mapper=to_record,
            limit=limit,
            page_token=page_token,
        )

    # components

    def get_component(self, group: str, component: str) -> dict[str, Any] | None:
        entity = self._datastore.get(self._keys.component(group, component))
        return self._component_record(entity) if entity is not None else None

    def ensure_component(
        self,
        version: str,
        name: str,
        group: str,
        pkg: str,
        org: str,
        tag_options: TagOptions | None = None,
    ) -> dict[str, Any]:
        key = self._keys.component(group, name)

        def _op(tx: Transaction) -> dict[str, Any]:
            existing = tx.get(key)
            if existing is not None:
                merged = dict(existing.properties)
                if merge_component_version(merged, version, tag_options):
                    write = self._component_write(key, merged)
                    tx.save(write)
                    return self._component_record(write.to_entity())
                return self._component_record(existing)

            record: dict[str, Any] = {
                "name": name,
                "versions": [version],
                "group": group,
                "pkg": pkg,
                "org": org,
            }
            if not is_prerelease(version):
                record["version"] = version
            if tag_options is not None and tag_options.tags:
                record["tags"] = list(tag_options.tags)
            write = self._component_write(key, record)
            tx.save(write)
            logger.info("component_created group=%s component=%s", key.ancestor_name(1), key.name)
            return self._component_record(write.to_entity())

        return self._datastore.run_in_tx(_op)

    def add_component_version(
        self,
        record: dict[str, Any],
        version: str,
        tag_options: TagOptions | None = None,
    ) -> dict[str, Any]:
        group = record.get("group") or record.get("groupId")
        key = self._keys.component(str(group), str(record["name"]))

        def _op(tx: Transaction) -> dict[str, Any]:
            current = tx.get(key)
            if current is None:
                raise not_found("COMPONENT_NOT_FOUND", f"component not found: {key.name}")
            merged = dict(current.properties)
            if not merge_component_version(merged, version, tag_options):
                return self._component_record(current)
            write = self._component_write(key, merged)
            tx.save(write)
            return self._component_record(write.to_entity())

        return self._datastore.run_in_tx(_op)

    def update_component_properties(self, group: str, component: str, props: dict[str, Any]) -> dict[str, Any]:
        protected = sorted(PROTECTED_COMPONENT_PROPERTIES.intersection(props))
        if protected:
            raise validation_error(
                "COMPONENT_PROPERTY_PROTECTED",
                f"component properties cannot be updated directly: {', '.join(protected)}",
            )
        tags = props.get("tags")
        if "tags" in props and not (isinstance(tags, list) and all(isinstance(tag, str) for tag in tags)):
            raise validation_error("COMPONENT_TAGS_INVALID", "tags must be a list of strings")
        key = self._keys.component(group, component)

        def _op(tx: Transaction) -> dict[str, Any]:
            current = tx.get(key)
            if current is None:
                raise not_found("COMPONENT_NOT_FOUND", f"component not found: {key.name}")
            merged = {**current.properties, **props}
            write = self._component_write(key, merged)
            tx.save(write)
            return self._component_record(write.to_entity())

        return self._datastore.run_in_tx(_op)

    def _component_query(self, group: str | None, tags: list[str] | None) -> Query:
        filters = tuple(Filter("tags", "=", str(tag)) for tag in tags or ())
        return Query(
            namespace=self._config.components_namespace,
            kind=self._keys.kinds.component,
            ancestor=self._keys.group(group) if group else None,
            filters=filters,
            orders=(Order("name"),),
        )

    def list_components(
        self,
        *,
        group: str | None = None,
        limit: int | None = None,
        page_token: str | None = None,
    ) -> QueryResult:
        return self.query_components(group=group, limit=limit, page_token=page_token)

    def query_components(
        self,
        *,
        group: str | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
        page_token: str | None = None,
    ) -> QueryResult:
        return run_paged_query(
            self._datastore,
            self._component_query(group, tags),
            config=self._config,
            mapper=self._component_record,
            limit=limit,
            page_token=page_token,
        )

    def list_tag_components(self, tag: str) -> list[dict[str, Any]]:
        page = self._datastore.run_query(self._component_query(None, [tag]))
        return [self._component_record(item) for item in page.entities]

    def list_api_components(self) -> list[dict[str, Any]]:
        return self.list_tag_components("apic")

    def list_amf_components(self) -> list[dict[str, Any]]:
        return self.list_tag_components("amf")

    # versions

    def get_version(self, group: str, component: str, version: str) -> dict[str, Any] | None:
        entity = self._datastore.get(self._keys.version(group, component, version))
        return self._version_record(entity) if entity is not None else None

    def ensure_version(
        self,
        parent: dict[str, Any],
        version: str,
        docs: Any,
        changelog: str | None = None,
    ) -> dict[str, Any]:
        group = parent.get("group") or parent.get("groupId")
        key = self._keys.version(str(group), str(parent["name"]), version)

        def _op(tx: Transaction) -> dict[str, Any]:
            existing = tx.get(key)
            record = dict(existing.properties) if existing is not None else {"name": parent["name"]}
            record["version"] = version
            record["created"] = self._clock()
            record["docs"] = json.dumps(docs)
            if isinstance(parent.get("tags"), list):
                record["tags"] = list(parent["tags"])
            else:
                record.pop("tags", None)
            if changelog:
                record["changelog"] = changelog
            else:
                record.pop("changelog", None)
            write = self._version_write(key, record)
            tx.save(write)
            if existing is None:
                logger.info("version_created component=%s version=%s", key.ancestor_name(1), version)
            return self._version_record(write.to_entity())

        return self._datastore.run_in_tx(_op)

    def add_version(
        self,
        *,
        group: str,
        component: str,
        version: str,
        pkg: str,
        org: str,
        docs: Any,
        changelog: str | None = None,
        tag_options: TagOptions | None = None,
    ) -> dict[str, Any]:
        self._keys.version(group, component, version)
        self.ensure_group(group)
        parent = self.ensure_component(version, component, group, pkg, org, tag_options)
        return self.ensure_version(parent, version, docs, changelog)

    def list_versions(
        self,
        group: str,
        component: str,
        *,
        limit: int | None = None,
        page_token: str | None = None,
    ) -> QueryResult:
        return self.query_versions(group=group, component=component, limit=limit, page_token=page_token)

    def query_versions(
        self,
        *,
        group: str | None = None,
        component: str | None = None,
        tags: list[str] | None = None,
        since: int | None = None,
        until: int | None = None,
        limit: int | None = None,
        page_token: str | None = None,
    ) -> QueryResult:
        filters: list[Filter] = [Filter("tags", "=", str(tag)) for tag in tags or ()]
        if since is not None:
            filters.append(Filter("created", ">=", int(since)))
        if until is not None:
            filters.append(Filter("created", "<=", int(until)))
        query = Query(
            namespace=self._config.components_namespace,
            kind=self._keys.kinds.version,
            ancestor=self._keys.component(group, component) if group and component else None,
            filters=tuple(filters),
            orders=(Order("created", descending=True),),
        )
        return run_paged_query(
            self._datastore,
            query,
            config=self._config,
            mapper=self._version_record,
            limit=limit,
            page_token=page_token,
        )
