from arc_backend.repositories.component_tests import (
    ComponentTestLogsRepository,
    ComponentTestResultsRepository,
    ComponentTestsRepository,
)
from arc_backend.repositories.components import ComponentRegistry, TagOptions
from arc_backend.repositories.coverage import CoverageRepository

__all__ = [
    "ComponentRegistry",
    "TagOptions",
    "CoverageRepository",
    "ComponentTestsRepository",
    "ComponentTestResultsRepository",
    "ComponentTestLogsRepository",
]
