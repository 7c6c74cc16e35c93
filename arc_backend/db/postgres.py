from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from arc_backend.datastore import (
    Entity,
    EntityWrite,
    Query,
    QueryPage,
    Transaction,
    as_key_list,
    as_write_list,
)
from arc_backend.keys import Key

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _like_prefix(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "/%"


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, sort_keys=True)


def _as_json(value: Any, default: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    if value is None:
        return default
    return value


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(self, *, fn: Callable[[Any], T]) -> T:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            result = fn(conn)
            conn.commit()
            return result


class PostgresTransaction:
    def __init__(self, datastore: PostgresDatastore, conn: Any) -> None:
        self._datastore = datastore
        self._conn = conn
        self._writes: list[EntityWrite] = []
        self._deletes: list[Key] = []

    def get(self, key: Key) -> Entity | None:
        # FOR UPDATE only locks existing rows; the advisory lock also covers keys not yet written.
        self._datastore._lock_key(self._conn, key)
        return self._datastore._select(self._conn, key, for_update=True)

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]:
        return [self.get(key) for key in keys]

    def query(self, query: Query) -> QueryPage:
        if query.ancestor is None:
            raise ValueError("only ancestor queries are allowed inside a transaction")
        return self._datastore._query(self._conn, query)

    def save(self, writes: EntityWrite | Iterable[EntityWrite]) -> None:
        self._writes.extend(as_write_list(writes))

    def delete(self, keys: Key | Iterable[Key]) -> None:
        self._deletes.extend(as_key_list(keys))

    def flush(self) -> None:
        if self._deletes:
            self._datastore._delete(self._conn, self._deletes)
        for write in self._writes:
            self._datastore._upsert(self._conn, write)


class PostgresDatastore:
    """Document store on a single PostgreSQL table with jsonb properties."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "arc_entities") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def schema_sql(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
                namespace TEXT NOT NULL,
                kind TEXT NOT NULL,
                key_path TEXT NOT NULL,
                parent_path TEXT,
                properties JSONB NOT NULL,
                indexed JSONB NOT NULL,
                unindexed JSONB NOT NULL,
                PRIMARY KEY (namespace, key_path)
            );
            CREATE INDEX IF NOT EXISTS {self._table_name}_kind_idx ON {self._table_name} (namespace, kind);
            CREATE INDEX IF NOT EXISTS {self._table_name}_indexed_idx ON {self._table_name} USING GIN (indexed);
        """

    def ensure_schema(self) -> None:
        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(self.schema_sql())

        self._tx_runner.run_in_tx(fn=_op)

    def reset(self) -> None:
        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(f"TRUNCATE TABLE {self._table_name}")

        self._tx_runner.run_in_tx(fn=_op)

    def _row_to_entity(self, row: tuple) -> Entity:
        namespace, key_path, properties, unindexed = row
        return Entity(
            key=Key.decode(namespace, key_path),
            properties=_as_json(properties, {}),
            unindexed=frozenset(_as_json(unindexed, [])),
        )

    def _lock_key(self, conn: Any, key: Key) -> None:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
                (f"{self._table_name}/{key.namespace}/{key.encoded()}",),
            )

    def _select(self, conn: Any, key: Key, *, for_update: bool = False) -> Entity | None:
        sql = f"""
            SELECT namespace, key_path, properties, unindexed
            FROM {self._table_name}
            WHERE namespace = %s AND key_path = %s
        """
        if for_update:
            sql += " FOR UPDATE"
        with conn.cursor() as cur:
            cur.execute(sql, (key.namespace, key.encoded()))
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_entity(row)

    def _upsert(self, conn: Any, write: EntityWrite) -> None:
        key = write.key
        parent = key.parent
        indexed = {
            name: value
            for name, value in write.properties.items()
            if name not in write.exclude_from_indexes
        }
        sql = f"""
            INSERT INTO {self._table_name} (
                namespace, kind, key_path, parent_path, properties, indexed, unindexed
            ) VALUES (%s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::jsonb)
            ON CONFLICT(namespace, key_path) DO UPDATE
            SET properties = EXCLUDED.properties,
                indexed = EXCLUDED.indexed,
                unindexed = EXCLUDED.unindexed
        """
        with conn.cursor() as cur:
            cur.execute(
                sql,
                (
                    key.namespace,
                    key.kind,
                    key.encoded(),
                    parent.encoded() if parent is not None else None,
                    _json(write.properties),
                    _json(indexed),
                    _json(sorted(write.exclude_from_indexes)),
                ),
            )

    def _delete(self, conn: Any, keys: list[Key]) -> None:
        sql = f"DELETE FROM {self._table_name} WHERE namespace = %s AND key_path = %s"
        with conn.cursor() as cur:
            for key in keys:
                cur.execute(sql, (key.namespace, key.encoded()))

    def _query_sql(self, query: Query) -> tuple[str, list[Any]]:
        clauses = ["namespace = %s", "kind = %s"]
        params: list[Any] = [query.namespace, query.kind]
        if query.ancestor is not None:
            clauses.append("key_path LIKE %s ESCAPE '\\'")
            params.append(_like_prefix(query.ancestor.encoded()))
        for flt in query.filters:
            if flt.op == "=":
                clauses.append("indexed -> %s @> %s::jsonb")
                params.extend([flt.name, _json(flt.value)])
            elif isinstance(flt.value, (int, float)) and not isinstance(flt.value, bool):
                clauses.append(f"jsonb_typeof(indexed -> %s) = 'number' AND (indexed ->> %s)::numeric {flt.op} %s")
                params.extend([flt.name, flt.name, flt.value])
            else:
                clauses.append(f"jsonb_typeof(indexed -> %s) = 'string' AND (indexed ->> %s) {flt.op} %s")
                params.extend([flt.name, flt.name, str(flt.value)])
        order_parts: list[str] = []
        for order in query.orders:
            clauses.append("indexed ? %s")
            params.append(order.name)
            order_parts.append(f"indexed -> %s {'DESC' if order.descending else 'ASC'}")
        order_params = [order.name for order in query.orders]
        order_parts.append("key_path ASC")
        sql = (
            f"SELECT namespace, key_path, properties, unindexed FROM {self._table_name} "
            f"WHERE {' AND '.join(clauses)} ORDER BY {', '.join(order_parts)}"
        )
        params.extend(order_params)
        if query.limit is not None:
            sql += " LIMIT %s"
            params.append(query.limit + 1)
        if query.offset:
            sql += " OFFSET %s"
            params.append(query.offset)
        return sql, params

    def _query(self, conn: Any, query: Query) -> QueryPage:
        sql, params = self._query_sql(query)
        with conn.cursor() as cur:
            cur.execute(sql, tuple(params))
            rows = cur.fetchall() or []
        entities = [self._row_to_entity(row) for row in rows]
        more = query.limit is not None and len(entities) > query.limit
        if more:
            entities = entities[: query.limit]
        return QueryPage(entities=entities, more_results=more)

    def get(self, key: Key) -> Entity | None:
        return self._tx_runner.run_in_tx(fn=lambda conn: self._select(conn, key))

    def get_many(self, keys: Iterable[Key]) -> list[Entity | None]:
        items = list(keys)
        return self._tx_runner.run_in_tx(fn=lambda conn: [self._select(conn, key) for key in items])

    def put(self, write: EntityWrite) -> None:
        self._tx_runner.run_in_tx(fn=lambda conn: self._upsert(conn, write))

    def put_many(self, writes: Iterable[EntityWrite]) -> None:
        items = list(writes)

        def _op(conn: Any) -> None:
            for write in items:
                self._upsert(conn, write)

        self._tx_runner.run_in_tx(fn=_op)

    def delete(self, keys: Key | Iterable[Key]) -> None:
        items = as_key_list(keys)
        self._tx_runner.run_in_tx(fn=lambda conn: self._delete(conn, items))

    def run_query(self, query: Query) -> QueryPage:
        return self._tx_runner.run_in_tx(fn=lambda conn: self._query(conn, query))

    def run_in_tx(self, fn: Callable[[Transaction], T]) -> T:
        def _op(conn: Any) -> T:
            tx = PostgresTransaction(self, conn)
            result = fn(tx)
            tx.flush()
            return result

        try:
            return self._tx_runner.run_in_tx(fn=_op)
        except Exception as exc:
            logger.warning("transaction_rolled_back error=%s", type(exc).__name__)
            raise
