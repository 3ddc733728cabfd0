"""Push ingestion endpoint — POST /ingest.

Payload and store errors propagate to the global handlers (400 / 422 / 500).
"""

from __future__ import annotations

import secrets

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from puipr.config import Settings, get_settings
from puipr.database import get_session
from puipr.ingest.schemas import IngestResponse, parse_batch
from puipr.ingest.service import ingest

logger = structlog.get_logger()

router = APIRouter(tags=["Ingest"])

_BEARER_PREFIX = "Bearer "


async def require_ingest_token(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> None:
    """Enforce the shared bearer token when one is configured."""
    expected = settings.ingest_token
    if not expected:
        return
    supplied = (authorization or "").removeprefix(_BEARER_PREFIX)
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("ingest_unauthorized")
        raise HTTPException(status_code=401, detail="unauthorized")


async def read_body_limited(request: Request, limit: int) -> bytes:
    """Read the request body, rejecting anything larger than ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="payload too large")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise HTTPException(status_code=413, detail="payload too large")
    return bytes(body)


@router.post(
    "/ingest",
    response_model=IngestResponse,
    dependencies=[Depends(require_ingest_token)],
)
async def ingest_observations(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> IngestResponse:
    """Merge a batch of observations (bare array or ``{"data": [...]}``)."""
    body = await read_body_limited(request, settings.max_ingest_bytes)
    batch = parse_batch(body)
    return IngestResponse(ingested=await ingest(db, batch, source="push"))
