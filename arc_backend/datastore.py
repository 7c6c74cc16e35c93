"""Document store abstraction and the in-memory backend.

Entities are addressed by :class:`~arc_backend.keys.Key`. Each entity carries
the set of its properties that are excluded from indexes; filters and sort
orders only see indexed values, so an entity without an indexed value for a
filtered or ordered property is not part of that query's result.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from arc_backend.keys import Key

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FILTER_OPS = {"=", "<", "<=", ">", ">="}


@dataclass
class Entity:
    key: Key
    properties: dict[str, Any]
    unindexed: frozenset[str] = frozenset()

    def indexed_value(self, name: str) -> tuple[bool, Any]:
        if name in self.unindexed or name not in self.properties:
            return False, None
        return True, self.properties[name]


@dataclass
class EntityWrite:
    key: Key
    properties: dict[str, Any]
    exclude_from_indexes: frozenset[str] = frozenset()

    def to_entity(self) -> Entity:
        return Entity(
            key=self.key,
            properties=copy.deepcopy(self.properties),
            unindexed=frozenset(self.exclude_from_indexes),
        )


@dataclass(frozen=True)
class Filter:
    name: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _FILTER_OPS:
            raise ValueError(f"unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class Order:
    name: str
    descending: bool = False


@dataclass(frozen=True)
class Query:
    namespace: str
    kind: str
    ancestor: Key | None = None
    filters: tuple[Filter, ...] = ()
    orders: tuple[Order, ...] = ()
    offset: int = 0
    limit: int | None = None


@dataclass
class QueryPage:
    entities: list[Entity] = field(default_factory=list)
    more_results: bool = False


class Transaction(Protocol):
    def get(self, key: Key) -> Entity | None: ...

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]: ...

    def query(self, query: Query) -> QueryPage: ...

    def save(self, writes: EntityWrite | Iterable[EntityWrite]) -> None: ...

    def delete(self, keys: Key | Iterable[Key]) -> None: ...


class Datastore(Protocol):
    def get(self, key: Key) -> Entity | None: ...

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]: ...

    def put(self, write: EntityWrite) -> None: ...

    def put_many(self, writes: Iterable[EntityWrite]) -> None: ...

    def delete(self, keys: Key | Iterable[Key]) -> None: ...

    def run_query(self, query: Query) -> QueryPage: ...

    def run_in_tx(self, fn: Callable[[Transaction], T]) -> T: ...


def as_key_list(keys: Key | Iterable[Key]) -> list[Key]:
    if isinstance(keys, Key):
        return [keys]
    return list(keys)


def as_write_list(writes: EntityWrite | Iterable[EntityWrite]) -> list[EntityWrite]:
    if isinstance(writes, EntityWrite):
        return [writes]
    return list(writes)


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    return 4


def _sort_token(value: Any) -> tuple[int, Any]:
    rank = _type_rank(value)
    if rank == 4:
        return rank, repr(value)
    if rank == 0:
        return rank, 0
    return rank, value


def _compare(left: Any, op: str, right: Any) -> bool:
    if _type_rank(left) != _type_rank(right):
        return False
    if op == "=":
        return left == right
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def entity_matches(entity: Entity, query: Query) -> bool:
    if entity.key.namespace != query.namespace or entity.key.kind != query.kind:
        return False
    if query.ancestor is not None and not query.ancestor.is_ancestor_of(entity.key):
        return False
    for flt in query.filters:
        present, value = entity.indexed_value(flt.name)
        if not present:
            return False
        values = value if isinstance(value, list) else [value]
        if not any(_compare(item, flt.op, flt.value) for item in values):
            return False
    for order in query.orders:
        present, _ = entity.indexed_value(order.name)
        if not present:
            return False
    return True


def sort_entities(entities: list[Entity], orders: tuple[Order, ...]) -> list[Entity]:
    out = sorted(entities, key=lambda e: e.key.encoded())
    for order in reversed(orders):
        out.sort(key=lambda e: _sort_token(e.properties[order.name]), reverse=order.descending)
    return out


class InMemoryTransaction:
    """Stages writes; reads see the state committed before the unit began."""

    def __init__(self, store: InMemoryDatastore) -> None:
        self._store = store
        self._mutations: list[tuple[Key, EntityWrite | None]] = []

    @property
    def mutations(self) -> list[tuple[Key, EntityWrite | None]]:
        return list(self._mutations)

    def get(self, key: Key) -> Entity | None:
        return self._store.get(key)

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]:
        return self._store.get_many(keys)

    def query(self, query: Query) -> QueryPage:
        if query.ancestor is None:
            raise ValueError("only ancestor queries are allowed inside a transaction")
        return self._store.run_query(query)

    def save(self, writes: EntityWrite | Iterable[EntityWrite]) -> None:
        for write in as_write_list(writes):
            self._mutations.append((write.key, write))

    def delete(self, keys: Key | Iterable[Key]) -> None:
        for key in as_key_list(keys):
            self._mutations.append((key, None))


class InMemoryDatastore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entities: dict[tuple[str, str], Entity] = {}

    @staticmethod
    def _slot(key: Key) -> tuple[str, str]:
        return key.namespace, key.encoded()

    def reset(self) -> None:
        with self._lock:
            self._entities = {}

    def get(self, key: Key) -> Entity | None:
        with self._lock:
            entity = self._entities.get(self._slot(key))
            return copy.deepcopy(entity) if entity is not None else None

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]:
        with self._lock:
            return [self.get(key) for key in keys]

    def put(self, write: EntityWrite) -> None:
        with self._lock:
            self._entities[self._slot(write.key)] = write.to_entity()

    def put_many(self, writes: Iterable[EntityWrite]) -> None:
        with self._lock:
            for write in writes:
                self.put(write)

    def delete(self, keys: Key | Iterable[Key]) -> None:
        with self._lock:
            for key in as_key_list(keys):
                self._entities.pop(self._slot(key), None)

    def run_query(self, query: Query) -> QueryPage:
        with self._lock:
            matched = [e for e in self._entities.values() if entity_matches(e, query)]
        ordered = sort_entities(matched, query.orders)
        start = max(0, query.offset)
        if query.limit is None:
            window = ordered[start:]
            more = False
        else:
            window = ordered[start : start + query.limit]
            more = start + query.limit < len(ordered)
        return QueryPage(entities=[copy.deepcopy(e) for e in window], more_results=more)

    def run_in_tx(self, fn: Callable[[Transaction], T]) -> T:
        with self._lock:
            tx = InMemoryTransaction(self)
            try:
                result = fn(tx)
            except Exception as exc:
                logger.warning("transaction_rolled_back error=%s", type(exc).__name__)
                raise
            for key, write in tx.mutations:
                if write is None:
                    self._entities.pop(self._slot(key), None)
                else:
                    self._entities[self._slot(key)] = write.to_entity()
            return result
