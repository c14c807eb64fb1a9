"""
RQ tasks for running due schedules and refreshing call reports
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from rq import Queue
from rq.decorators import job

from config.redis import create_redis_connection
from config.settings import SchedulerSettings

from .errors import MissingProviderReferenceError, NotFoundError
from .scheduler import build_scheduler

logger = logging.getLogger("careline-tasks")

QUEUE_NAME = SchedulerSettings.from_env().queue_name

# Redis connection for RQ
redis_conn = create_redis_connection()


@job(QUEUE_NAME, connection=redis_conn, timeout=300)
def run_due_schedules_task() -> Dict[str, Any]:
    """
    RQ task to place calls for every due schedule

    Returns:
        Execution summary as a dictionary
    """
    scheduler = build_scheduler(redis_conn)
    summary = scheduler.run_due_schedules()
    logger.info(f"Due-run task finished: {summary.executed} executed, {summary.failed} failed")
    return summary.to_dict()


@job(QUEUE_NAME, connection=redis_conn, timeout=120)
def refresh_call_task(call_id: str) -> Dict[str, Any]:
    """
    RQ task to pull the latest transcript and analysis for a call

    Args:
        call_id: Local call id

    Returns:
        Refreshed call as a dictionary, or an error entry for calls that cannot be refreshed
    """
    scheduler = build_scheduler(redis_conn)
    try:
        call = scheduler.refresh_call(call_id)
    except (NotFoundError, MissingProviderReferenceError) as e:
        logger.error(f"Cannot refresh call {call_id}: {e}")
        return {"call_id": call_id, "error": str(e)}

    logger.info(f"Refreshed call {call_id} (status: {call.status.value})")
    return call.to_dict()


def enqueue_call_refresh(call_id: str, delay_seconds: Optional[int] = None, queue: Optional[Queue] = None):
    """
    Queue a call refresh, optionally delayed until the call is likely finished

    Delayed jobs need a worker started with the RQ scheduler enabled.
    """
    queue = queue or Queue(QUEUE_NAME, connection=redis_conn)
    if delay_seconds:
        rq_job = queue.enqueue_in(timedelta(seconds=delay_seconds), refresh_call_task, call_id)
        logger.info(f"Queued refresh of call {call_id} in {delay_seconds}s (job: {rq_job.id})")
    else:
        rq_job = queue.enqueue(refresh_call_task, call_id)
        logger.info(f"Queued refresh of call {call_id} (job: {rq_job.id})")
    return rq_job
