"""
Durable job queue: contract, Redis implementation, payload schemas and the
consumer runtime used by the worker process.
"""

from .base import JobQueue
from .consumer import JobConsumer
from .jobs import JobName
from .models import Job, JobOutcome, JobState
from .redis_queue import RedisJobQueue

__all__ = ["Job", "JobConsumer", "JobName", "JobOutcome", "JobQueue", "JobState", "RedisJobQueue"]
