from __future__ import annotations

import logging
from collections.abc import Iterable

import semver

logger = logging.getLogger(__name__)


def parse_version(value: str) -> semver.Version:
    """Parse a release tag such as ``1.2.3``, ``v1.2.3`` or ``1.2.3-rc.1``."""
    text = str(value).strip().lstrip("=v").strip()
    return semver.Version.parse(text)


def is_valid(value: str) -> bool:
    try:
        parse_version(value)
    except (TypeError, ValueError):
        return False
    return True


def is_prerelease(value: str) -> bool:
    try:
        return parse_version(value).prerelease is not None
    except (TypeError, ValueError):
        return False


def is_greater(left: str, right: str) -> bool:
    return parse_version(left).compare(parse_version(right)) > 0


def find_latest_version(versions: Iterable[str] | None) -> str | None:
    latest: str | None = None
    latest_parsed: semver.Version | None = None
    for item in versions or ():
        try:
            parsed = parse_version(item)
        except (TypeError, ValueError):
            logger.warning("skipping_unparseable_version version=%s", item)
            continue
        if parsed.prerelease is not None:
            continue
        if latest_parsed is None or parsed.compare(latest_parsed) > 0:
            latest, latest_parsed = item, parsed
    return latest
