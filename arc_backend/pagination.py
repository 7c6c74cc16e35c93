"""Opaque page tokens and the listing contract shared by every list operation."""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from arc_backend.config import BackendConfig
from arc_backend.datastore import Datastore, Entity, Query
from arc_backend.errors import validation_error


def encode_page_token(offset: int) -> str:
    raw = json.dumps({"offset": int(offset)}, separators=(",", ":")).encode("ascii")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_page_token(token: str) -> int:
    padded = token + "=" * ((4 - len(token) % 4) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise validation_error("INVALID_PAGE_TOKEN", "page token is malformed") from exc
    offset = payload.get("offset") if isinstance(payload, dict) else None
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise validation_error("INVALID_PAGE_TOKEN", "page token is malformed")
    return offset


@dataclass
class QueryResult:
    entities: list[dict[str, Any]] = field(default_factory=list)
    page_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"entities": self.entities}
        if self.page_token:
            out["pageToken"] = self.page_token
        return out


def run_paged_query(
    datastore: Datastore,
    query: Query,
    *,
    config: BackendConfig,
    mapper: Callable[[Entity], dict[str, Any]],
    limit: int | None = None,
    page_token: str | None = None,
) -> QueryResult:
    offset = decode_page_token(page_token) if page_token else 0
    size = config.clamp_limit(limit)
    page = datastore.run_query(replace(query, offset=offset, limit=size))
    entities = [mapper(item) for item in page.entities]
    next_token = encode_page_token(offset + len(page.entities)) if page.more_results else None
    return QueryResult(entities=entities, page_token=next_token)
