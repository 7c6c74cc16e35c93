from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    return env.get(name, "").strip() or default


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Kinds:
    group: str = "Group"
    component: str = "Component"
    version: str = "Version"
    organization: str = "Organization"
    test: str = "Test"
    test_logs: str = "TestComponentLogs"
    coverage_run: str = "CoverageTest"
    coverage_file: str = "ComponentVersionCoverageResult"


@dataclass(frozen=True)
class BackendConfig:
    store_backend: str = "memory"
    postgres_dsn: str = ""
    entities_table: str = "arc_entities"
    list_limit: int = 25
    max_list_limit: int = 100
    components_namespace: str = "api-components"
    tests_namespace: str = "api-components-tests"
    coverage_namespace: str = "api-components-coverage"
    cors_allow_origins: tuple[str, ...] = ()
    kinds: Kinds = field(default_factory=Kinds)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BackendConfig":
        env = os.environ if environ is None else environ
        list_limit = _env_int(env, "ARC_LIST_LIMIT", default=25, minimum=1)
        max_list_limit = _env_int(env, "ARC_MAX_LIST_LIMIT", default=100, minimum=1)
        return cls(
            store_backend=_env_str(env, "ARC_STORE_BACKEND", "memory").lower(),
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            entities_table=_env_str(env, "ARC_ENTITIES_TABLE", "arc_entities"),
            list_limit=min(list_limit, max_list_limit),
            max_list_limit=max_list_limit,
            components_namespace=_env_str(env, "ARC_COMPONENTS_NAMESPACE", "api-components"),
            tests_namespace=_env_str(env, "ARC_TESTS_NAMESPACE", "api-components-tests"),
            coverage_namespace=_env_str(env, "ARC_COVERAGE_NAMESPACE", "api-components-coverage"),
            cors_allow_origins=tuple(_split_csv(env.get("CORS_ALLOW_ORIGINS", ""))),
        )

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.list_limit
        return min(max(int(limit), 1), self.max_list_limit)
