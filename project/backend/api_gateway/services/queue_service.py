"""
Queue service.

Stage jobs on a Redis list, consumed by the background worker.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

QUEUE_NAME = "video_pipeline"
QUEUE_KEY = f"{QUEUE_NAME}:queue"
STAGES = ("assets", "render")


def _queue_key(client: RedisClient) -> str:
    return client._prefix_key(QUEUE_KEY)


async def enqueue_stage(
    video_id: str,
    stage: str,
    client: Optional[RedisClient] = None,
    claim_token: Optional[str] = None
) -> Dict[str, Any]:
    """
    Enqueue a stage run for a video.

    Args:
        video_id: Video ID
        stage: "assets" or "render"
        claim_token: Stage claim the worker releases when the run ends

    Returns:
        The queued job payload
    """
    if stage not in STAGES:
        raise ValidationError(f"Unknown stage '{stage}'", video_id=video_id)

    client = client or redis_client
    job_data = {
        "video_id": video_id,
        "stage": stage,
        "claim_token": claim_token,
        "enqueued_at": datetime.now(timezone.utc).isoformat()
    }

    try:
        await client.client.lpush(_queue_key(client), json.dumps(job_data))
        logger.info("Stage enqueued", extra={"video_id": video_id, "stage": stage})
    except Exception as e:
        logger.error("Failed to enqueue stage", exc_info=e, extra={"video_id": video_id, "stage": stage})
        raise

    return job_data


async def dequeue_stage(timeout: int = 5, client: Optional[RedisClient] = None) -> Optional[Dict[str, Any]]:
    """Block up to ``timeout`` seconds for the next job."""
    client = client or redis_client
    item = await client.client.brpop(_queue_key(client), timeout=timeout)
    if not item:
        return None
    # brpop returns (key, value)
    payload = item[1]
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    return json.loads(payload)


async def get_queue_size(client: Optional[RedisClient] = None) -> int:
    """
    Get the current queue size.

    Returns:
        Number of jobs in queue
    """
    client = client or redis_client
    try:
        return await client.client.llen(_queue_key(client))
    except Exception as e:
        logger.error("Failed to get queue size", exc_info=e)
        return 0
