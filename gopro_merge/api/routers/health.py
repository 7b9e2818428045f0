import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from gopro_merge.core.config import settings
from gopro_merge.models import get_db

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict:
    return {"status": "healthy", "service": "gopro-merge-api"}


@router.get("/health/ready")
async def readiness_check(db: Session = Depends(get_db)) -> dict:
    checks = {"database": "connected", "redis": "connected"}
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        checks["database"] = "disconnected"
    try:
        redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
    except redis.exceptions.RedisError:
        checks["redis"] = "disconnected"

    ready = all(value == "connected" for value in checks.values())
    return {"status": "ready" if ready else "not_ready", **checks}
