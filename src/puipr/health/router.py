"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from puipr.config import get_settings
from puipr.database import get_session

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe — checks DB connectivity and reports the poller state."""
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    poller = getattr(request.app.state, "poller", None)
    poller_info: dict[str, object] = {"enabled": poller is not None}
    if poller is not None:
        poller_info.update(
            state=poller.state.value,
            cycles=poller.cycles,
            failures=poller.failures,
            ingested_total=poller.ingested_total,
        )

    return {
        "status": "ready" if checks["database"] == "ok" else "degraded",
        "checks": checks,
        "poller": poller_info,
    }


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
