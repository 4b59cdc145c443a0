"""
Background worker process.

Pops stage jobs from the queue and runs the asset or render stage. The
persisted video status is the outcome; nothing is reported back to the
caller that enqueued the job.
"""

import asyncio
from typing import Optional

from shared.errors import (
    ConflictError,
    InvalidTransitionError,
    PipelineError,
    PreconditionError,
    RetryableError,
)
from shared.logging import get_logger, set_video_id
from api_gateway.dependencies import get_asset_orchestrator, get_render_engine
from api_gateway.services.queue_service import QUEUE_NAME, dequeue_stage

logger = get_logger(__name__)

# Max concurrent stage runs per worker process
MAX_CONCURRENT_JOBS = 3
semaphore = asyncio.Semaphore(MAX_CONCURRENT_JOBS)


async def process_job(job_data: dict) -> Optional[str]:
    """
    Run one queued stage.

    Args:
        job_data: {"video_id": ..., "stage": "assets" | "render", "claim_token": ...}

    Returns:
        Resulting status value, or None if the job was dropped
    """
    video_id = job_data.get("video_id")
    stage = job_data.get("stage")
    claim_token = job_data.get("claim_token")

    if not video_id or stage not in ("assets", "render"):
        logger.error("Invalid job data", extra={"job_data": job_data})
        return None

    set_video_id(video_id)
    logger.info("Processing stage", extra={"video_id": video_id, "stage": stage})

    try:
        if stage == "assets":
            result = await get_asset_orchestrator().ensure_assets(video_id, claim_token=claim_token)
        else:
            result = await get_render_engine().render(video_id, claim_token=claim_token)
        logger.info(
            "Stage finished",
            extra={"video_id": video_id, "stage": stage, "status": result.status.value}
        )
        return result.status.value

    except (ConflictError, PreconditionError, InvalidTransitionError) as e:
        # Another run owns the video, or it moved on since the job was queued
        logger.warning(f"Stage dropped: {e.message}", extra={"video_id": video_id, "stage": stage})
    except RetryableError as e:
        logger.warning("Retryable error occurred", exc_info=e, extra={"video_id": video_id, "stage": stage})
    except PipelineError as e:
        logger.error("Stage failed", exc_info=e, extra={"video_id": video_id, "stage": stage})
    return None


async def process_job_with_limit(job_data: dict) -> Optional[str]:
    """
    Process job with concurrency limit.

    Args:
        job_data: Job data dictionary
    """
    video_id = job_data.get("video_id")
    logger.info(
        "Acquiring semaphore for job",
        extra={"video_id": video_id, "available_slots": semaphore._value}
    )
    async with semaphore:
        return await process_job(job_data)


async def worker_loop():
    """Main worker loop: pop a job, run it in the background, repeat."""
    logger.info("Worker started", extra={"queue_name": QUEUE_NAME})
    running = set()

    while True:
        try:
            job_data = await dequeue_stage(timeout=5)
            if job_data:
                task = asyncio.create_task(process_job_with_limit(job_data))
                running.add(task)
                task.add_done_callback(running.discard)

        except asyncio.CancelledError:
            logger.info("Worker loop cancelled")
            for task in running:
                task.cancel()
            break
        except Exception as e:
            logger.error("Error in worker loop", exc_info=e)
            await asyncio.sleep(5)  # Wait before retrying


async def main():
    """Main entry point for worker."""
    try:
        await worker_loop()
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error("Worker crashed", exc_info=e)
        raise


if __name__ == "__main__":
    asyncio.run(main())
