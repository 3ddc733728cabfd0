"""Request/response schemas for observation ingestion."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError


class RawObservation(BaseModel):
    """One Tautulli history row: who connected, from where, and when.

    Tautulli rows carry many more fields; anything not listed here is ignored.
    """

    user_id: int
    user: str
    friendly_name: str | None = None
    user_thumb: str | None = None
    ip_address: str | None = None
    date: int | None = None


class IngestResponse(BaseModel):
    """Number of observations accepted from a batch."""

    ingested: int


class PayloadError(ValueError):
    """The body is neither an array of observations nor ``{"data": [...]}``."""


class InvalidObservations(Exception):
    """One or more batch items are missing required fields or have the wrong types."""

    def __init__(self, errors: list[Any]) -> None:
        self.errors = errors
        super().__init__(f"{len(errors)} invalid item field(s)")


_batch_adapter: TypeAdapter[list[RawObservation]] = TypeAdapter(list[RawObservation])


def extract_items(payload: Any) -> list[Any]:  # noqa: ANN401
    """Unwrap a decoded ingest payload into its list of raw items.

    An object without ``data`` (or with ``data: null``) is an empty batch.

    Raises:
        PayloadError: If the payload has the wrong top-level shape.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        items = payload.get("data")
        if items is None:
            return []
        if isinstance(items, list):
            return items
    msg = "Expected an array or an object with a 'data' array"
    raise PayloadError(msg)


def parse_batch(body: bytes) -> list[RawObservation]:
    """Decode and validate an ingest request body.

    Raises:
        PayloadError: If the body is not JSON or has the wrong top-level shape.
        InvalidObservations: If an item is missing required fields.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"Invalid JSON: {e}"
        raise PayloadError(msg) from e
    try:
        return _batch_adapter.validate_python(extract_items(payload))
    except ValidationError as e:
        raise InvalidObservations(e.errors()) from e
