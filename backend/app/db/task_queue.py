"""Redis-based task queue for handing social post jobs to the background worker

Tasks live in a Redis list per task type; their metadata (status, retries,
errors) lives in a hash so a failed dispatch or a crashed worker stays
observable and can be retried.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.core.config import settings
from app.db.redis import get_async_redis_client, get_redis_client

logger = logging.getLogger(__name__)

# Redis key prefixes
QUEUE_KEY_PREFIX = "task:queue:"
META_KEY_PREFIX = "task:meta:"
PROCESSING_SET_KEY = "task:processing"

# Task types
SOCIAL_POST_TASK = "social_post"

# Task TTL (24 hours for completed/failed tasks metadata)
TASK_META_TTL = 24 * 60 * 60


def _meta_key(task_id: str) -> str:
    return f"{META_KEY_PREFIX}{task_id}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def enqueue_task(
    task_type: str,
    payload: Dict[str, Any],
    retry_count: int = 0,
    max_retries: Optional[int] = None,
    retry_after: Optional[datetime] = None,
    last_error: Optional[str] = None
) -> str:
    """Enqueue a task to the Redis queue

    Args:
        task_type: Type of task (e.g., 'social_post')
        payload: JSON-serialisable task payload
        retry_count: Current retry attempt (0 for new tasks)
        max_retries: Maximum number of automatic retries
        retry_after: Earliest time the worker may run the task
        last_error: Error of the attempt this task retries

    Returns:
        task_id: Unique task identifier
    """
    if max_retries is None:
        max_retries = settings.TASK_MAX_RETRIES

    task_id = str(uuid.uuid4())
    created_at = _now_iso()

    meta = {
        "task_id": task_id,
        "task_type": task_type,
        "payload": json.dumps(payload),
        "retry_count": str(retry_count),
        "max_retries": str(max_retries),
        "created_at": created_at,
        "status": "pending"
    }
    if retry_after:
        meta["retry_after"] = retry_after.isoformat()
    if last_error:
        meta["last_error"] = last_error

    client = get_redis_client()
    client.hset(_meta_key(task_id), mapping=meta)
    client.expire(_meta_key(task_id), TASK_META_TTL)

    client.lpush(f"{QUEUE_KEY_PREFIX}{task_type}", json.dumps({
        "task_id": task_id,
        "task_type": task_type,
        "payload": payload,
        "retry_count": retry_count,
        "max_retries": max_retries,
        "created_at": created_at,
        "last_error": last_error,
    }))

    logger.info(f"Enqueued task {task_id} of type {task_type} (retry_count={retry_count})")
    return task_id


async def dequeue_task(task_type: str, timeout: int = 5) -> Optional[Dict[str, Any]]:
    """Dequeue a task from the Redis queue (blocking)

    Returns:
        Task dict if task available, None on timeout or Redis error
    """
    client = get_async_redis_client()
    if client is None:
        logger.error("Async Redis client not available")
        return None

    try:
        result = await client.brpop(f"{QUEUE_KEY_PREFIX}{task_type}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return json.loads(task_json)
    except Exception as e:
        logger.error(f"Error dequeuing task: {e}", exc_info=True)
        return None


def get_task_status(task_id: str) -> Optional[Dict[str, Any]]:
    """Get task metadata, or None if unknown/expired"""
    meta = get_redis_client().hgetall(_meta_key(task_id))
    if not meta:
        return None

    if "payload" in meta:
        meta["payload"] = json.loads(meta["payload"])
    for field in ("retry_count", "max_retries"):
        if field in meta:
            meta[field] = int(meta[field])
    return meta


def mark_task_processing(task_id: str) -> None:
    client = get_redis_client()
    client.hset(_meta_key(task_id), mapping={"status": "processing", "started_at": _now_iso()})
    client.sadd(PROCESSING_SET_KEY, task_id)
    logger.debug(f"Marked task {task_id} as processing")


def mark_task_completed(task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
    client = get_redis_client()
    mapping = {"status": "completed", "completed_at": _now_iso()}
    if result:
        mapping["result"] = json.dumps(result)
    client.hset(_meta_key(task_id), mapping=mapping)
    client.srem(PROCESSING_SET_KEY, task_id)
    logger.info(f"Marked task {task_id} as completed")


def mark_task_failed(task_id: str, error: str, retry: bool = True) -> Optional[str]:
    """Mark task as failed and optionally schedule a retry with exponential backoff

    Returns:
        New task_id if a retry was scheduled, None otherwise
    """
    client = get_redis_client()
    meta = get_task_status(task_id)
    if not meta:
        logger.warning(f"Task {task_id} metadata not found")
        return None

    retry_count = meta.get("retry_count", 0)
    max_retries = meta.get("max_retries", settings.TASK_MAX_RETRIES)
    client.srem(PROCESSING_SET_KEY, task_id)

    if retry and retry_count < max_retries:
        new_retry_count = retry_count + 1
        delay_seconds = min(300, 2 ** new_retry_count)
        retry_after = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)

        logger.info(
            f"Task {task_id} failed (attempt {retry_count + 1}/{max_retries + 1}), "
            f"scheduling retry in {delay_seconds}s: {error}"
        )
        client.hset(_meta_key(task_id), mapping={
            "status": "retrying",
            "error": error,
            "retry_scheduled_at": _now_iso(),
            "retry_delay_seconds": str(delay_seconds),
        })
        return enqueue_task(
            task_type=meta["task_type"],
            payload=meta["payload"],
            retry_count=new_retry_count,
            max_retries=max_retries,
            retry_after=retry_after,
            last_error=error
        )

    client.hset(_meta_key(task_id), mapping={"status": "failed", "error": error, "failed_at": _now_iso()})
    logger.warning(f"Task {task_id} failed permanently after {retry_count + 1} attempts: {error}")
    return None


def cleanup_stale_tasks(timeout_seconds: int = 3600) -> int:
    """Drop tasks stuck in processing (crashed worker) from the processing set

    Returns:
        Number of tasks cleaned up
    """
    client = get_redis_client()
    cleaned = 0

    for task_id in list(client.smembers(PROCESSING_SET_KEY)):
        started_at_str = client.hget(_meta_key(task_id), "started_at")
        try:
            started_at = datetime.fromisoformat(started_at_str) if started_at_str else None
        except ValueError:
            started_at = None

        if started_at is not None:
            elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
            if elapsed <= timeout_seconds:
                continue
            error = f"Task timeout after {elapsed:.0f} seconds"
        else:
            error = "Task has no valid start time"

        logger.warning(f"Cleaning up stale task {task_id}: {error}")
        client.srem(PROCESSING_SET_KEY, task_id)
        client.hset(_meta_key(task_id), mapping={"status": "failed", "error": error})
        cleaned += 1

    return cleaned
