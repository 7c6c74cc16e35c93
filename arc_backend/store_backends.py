from __future__ import annotations

import logging

from arc_backend.config import BackendConfig
from arc_backend.datastore import Datastore, InMemoryDatastore
from arc_backend.db.postgres import PostgresDatastore, PostgresTxRunner

logger = logging.getLogger(__name__)


def create_datastore_from_env(config: BackendConfig) -> Datastore:
    backend = config.store_backend
    if backend == "memory":
        return InMemoryDatastore()
    if backend == "postgres":
        if not config.postgres_dsn:
            raise RuntimeError("POSTGRES_DSN must be set when ARC_STORE_BACKEND=postgres")
        logger.info("using_postgres_datastore table=%s", config.entities_table)
        return PostgresDatastore(
            tx_runner=PostgresTxRunner(config.postgres_dsn),
            table_name=config.entities_table,
        )
    raise RuntimeError(f"unsupported ARC_STORE_BACKEND: {backend}")
