"""RQ queue helpers."""

from redis import Redis
from rq import Queue

from postcraft.config import settings


def get_queue() -> Queue:
    conn = Redis.from_url(settings.redis_url)
    return Queue(settings.rq_queue_name, connection=conn)


def enqueue_task(func_path: str, *args):
    # No RQ retry policy: failed runs are retried by the user.
    q = get_queue()
    return q.enqueue(func_path, *args, job_timeout=settings.job_timeout)
