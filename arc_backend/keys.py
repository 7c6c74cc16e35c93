"""Hierarchical entity keys and the slugging used to build them.

A key is a namespace plus a path of ``(kind, name)`` pairs. Every prefix of
the path addresses an ancestor; records sharing the root pair live in the
same entity group.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from urllib.parse import quote, unquote

from arc_backend.config import BackendConfig, Kinds
from arc_backend.errors import validation_error

_CAMEL_LOWER_UPPER = re.compile(r"([a-z\d])([A-Z])")
_CAMEL_UPPER_RUN = re.compile(r"([A-Z]+)([A-Z][a-z\d]+)")
_SLUG_INVALID = re.compile(r"[^a-z0-9._~]+")


def decamelize(value: str, separator: str = "-") -> str:
    out = _CAMEL_LOWER_UPPER.sub(rf"\1{separator}\2", value)
    out = _CAMEL_UPPER_RUN.sub(rf"\1{separator}\2", out)
    return out.lower()


def slug(name: str) -> str:
    """Lowercase, hyphen separated, de-camelized form of ``name``.

    ``slug("ApiConsole") == slug("api console") == "api-console"``
    """
    folded = unicodedata.normalize("NFKD", decamelize(str(name)))
    ascii_only = folded.encode("ascii", "ignore").decode("ascii")
    return _SLUG_INVALID.sub("-", ascii_only).strip("-")


@dataclass(frozen=True)
class Key:
    namespace: str
    path: tuple[tuple[str, str], ...]

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("key path must not be empty")
        for kind, name in self.path:
            if not kind or not str(name):
                raise ValueError(f"invalid key segment: {kind!r}/{name!r}")

    @property
    def kind(self) -> str:
        return self.path[-1][0]

    @property
    def name(self) -> str:
        return self.path[-1][1]

    @property
    def parent(self) -> Key | None:
        if len(self.path) == 1:
            return None
        return Key(self.namespace, self.path[:-1])

    def child(self, kind: str, name: str) -> Key:
        return Key(self.namespace, (*self.path, (kind, str(name))))

    def ancestor_name(self, depth: int) -> str | None:
        """Name of the ancestor ``depth`` levels above this key (1 = parent)."""
        if depth >= len(self.path) or depth < 0:
            return None
        return self.path[-1 - depth][1]

    def is_ancestor_of(self, other: Key) -> bool:
        if self.namespace != other.namespace:
            return False
        size = len(self.path)
        return len(other.path) > size and other.path[:size] == self.path

    def encoded(self) -> str:
        return "/".join(f"{quote(kind, safe='')}:{quote(str(name), safe='')}" for kind, name in self.path)

    @classmethod
    def decode(cls, namespace: str, encoded: str) -> Key:
        path: list[tuple[str, str]] = []
        for segment in encoded.split("/"):
            kind, _, name = segment.partition(":")
            path.append((unquote(kind), unquote(name)))
        return cls(namespace, tuple(path))


class KeyBuilder:
    """Builds every key the registry and the coverage engine use."""

    def __init__(self, config: BackendConfig) -> None:
        self._config = config

    @property
    def kinds(self) -> Kinds:
        return self._config.kinds

    @staticmethod
    def _slug(value: str, field: str) -> str:
        out = slug(value)
        if not out:
            raise validation_error("INVALID_KEY_NAME", f"{field} has no usable characters: {value!r}")
        return out

    @staticmethod
    def _name(value: str, field: str) -> str:
        out = str(value)
        if not out:
            raise validation_error("INVALID_KEY_NAME", f"{field} must not be empty")
        return out

    # components namespace

    def group(self, group: str) -> Key:
        return Key(self._config.components_namespace, ((self.kinds.group, self._slug(group, "group")),))

    def component(self, group: str, component: str) -> Key:
        return self.group(group).child(self.kinds.component, self._slug(component, "component"))

    def version(self, group: str, component: str, version: str) -> Key:
        return self.component(group, component).child(self.kinds.version, self._name(version, "version"))

    # tests namespace

    def test(self, test_id: str) -> Key:
        return Key(self._config.tests_namespace, ((self.kinds.test, self._name(test_id, "test id")),))

    def test_component(self, test_id: str, component: str) -> Key:
        return self.test(test_id).child(self.kinds.component, self._slug(component, "component"))

    def test_log(self, test_id: str, component: str, log_id: str) -> Key:
        return self.test_component(test_id, component).child(self.kinds.test_logs, self._name(log_id, "log id"))

    # coverage namespace

    def coverage_run(self, run_id: str) -> Key:
        return Key(self._config.coverage_namespace, ((self.kinds.coverage_run, self._name(run_id, "run id")),))

    def component_coverage(self, component: str, org: str) -> Key:
        root = Key(self._config.coverage_namespace, ((self.kinds.organization, self._slug(org, "org")),))
        return root.child(self.kinds.component, self._slug(component, "component"))

    def version_coverage(self, component: str, org: str, version: str) -> Key:
        return self.component_coverage(component, org).child(self.kinds.version, self._name(version, "version"))

    def file_coverage(self, component: str, org: str, version: str, file: str) -> Key:
        return self.version_coverage(component, org, version).child(self.kinds.coverage_file, self._name(file, "file"))
