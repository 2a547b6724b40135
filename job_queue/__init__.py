"""
Persistent Queue Module

Provides durable job queue infrastructure for the queue server using
SQLite-backed persistence. Jobs survive process restarts and crashes.
"""

from job_queue.models import (
    JobRecord,
    JobState,
    JobType,
    QueueName,
    BackoffPolicy,
    JobOptions,
    JOB_TYPES,
)
from job_queue.store import JobStore
from job_queue.broker import Broker
from job_queue.operations import JobQueue, default_options_from_settings

__all__ = [
    'JobRecord',
    'JobState',
    'JobType',
    'QueueName',
    'BackoffPolicy',
    'JobOptions',
    'JOB_TYPES',
    'JobStore',
    'Broker',
    'JobQueue',
    'default_options_from_settings',
]
