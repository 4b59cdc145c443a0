"""
Health check endpoint.

Monitors service health (database, Redis, queue, encoder).
"""

import json
import shutil
from datetime import datetime, timezone
from fastapi import APIRouter, Response
from shared.config import settings
from shared.database import db
from shared.redis_client import redis_client
from shared.logging import get_logger
from api_gateway.services.queue_service import get_queue_size

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status with service checks
    """
    issues = []
    status_code = 200

    # Check database
    db_healthy = await db.health_check()
    if not db_healthy:
        issues.append("database connection failed")
        status_code = 503

    # Check Redis
    redis_healthy = await redis_client.health_check()
    if not redis_healthy:
        issues.append("redis connection failed")
        status_code = 503

    queue_size = await get_queue_size() if redis_healthy else 0

    # A missing encoder only blocks rendering, so it is reported but not fatal
    ffmpeg_available = shutil.which(settings.ffmpeg_binary) is not None
    if not ffmpeg_available:
        issues.append("ffmpeg not found")

    response = {
        "status": "healthy" if status_code == 200 else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": {"size": queue_size},
        "database": "connected" if db_healthy else "disconnected",
        "redis": "connected" if redis_healthy else "disconnected",
        "ffmpeg": "available" if ffmpeg_available else "missing"
    }

    if issues:
        response["issues"] = issues

    return Response(
        content=json.dumps(response),
        status_code=status_code,
        media_type="application/json"
    )
