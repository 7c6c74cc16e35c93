from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any

from arc_backend.datastore import Entity, EntityWrite
from arc_backend.keys import Key

# Written by older clients as an indexing hint; never part of a record.
INTERNAL_FIELDS = frozenset({"ref"})


def to_record(entity: Entity) -> dict[str, Any]:
    """Flat application record: stored properties plus ``id`` from the key's last segment."""
    record = {
        name: copy.deepcopy(value)
        for name, value in entity.properties.items()
        if name not in INTERNAL_FIELDS
    }
    record["id"] = entity.key.name
    return record


def to_store_write(
    key: Key,
    record: dict[str, Any],
    excluded_index_properties: Iterable[str] = (),
    *,
    derived_fields: Iterable[str] = (),
) -> EntityWrite:
    skip = {"id", *INTERNAL_FIELDS, *derived_fields}
    properties = {name: copy.deepcopy(value) for name, value in record.items() if name not in skip}
    return EntityWrite(
        key=key,
        properties=properties,
        exclude_from_indexes=frozenset(excluded_index_properties),
    )
