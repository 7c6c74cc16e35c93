from __future__ import annotations

import os
from collections.abc import Mapping

from arc_backend.config import BackendConfig
from arc_backend.datastore import Datastore
from arc_backend.keys import KeyBuilder
from arc_backend.repositories.component_tests import (
    ComponentTestLogsRepository,
    ComponentTestResultsRepository,
    ComponentTestsRepository,
)
from arc_backend.repositories.components import ComponentRegistry
from arc_backend.repositories.coverage import CoverageRepository
from arc_backend.store_backends import create_datastore_from_env


class ArcStore:
    """Wires one datastore and one key builder into every repository."""

    def __init__(self, datastore: Datastore, config: BackendConfig) -> None:
        self.config = config
        self.datastore = datastore
        self.keys = KeyBuilder(config)
        shared = {"datastore": datastore, "config": config, "keys": self.keys}
        self.components = ComponentRegistry(**shared)
        self.coverage = CoverageRepository(**shared)
        self.tests = ComponentTestsRepository(**shared)
        self.test_components = ComponentTestResultsRepository(**shared)
        self.test_logs = ComponentTestLogsRepository(**shared)

    def reset(self) -> None:
        reset_fn = getattr(self.datastore, "reset", None)
        if callable(reset_fn):
            reset_fn()


def create_store_from_env(environ: Mapping[str, str] | None = None) -> ArcStore:
    env = os.environ if environ is None else environ
    config = BackendConfig.from_env(env)
    return ArcStore(create_datastore_from_env(config), config)


store = create_store_from_env()
