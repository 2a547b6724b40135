"""
Background worker for processing queued jobs.

Exports JobWorker class that processes jobs from the broker
with proper acknowledgment and error handling.
"""

from worker.processor import JobWorker, JobContext

__all__ = ['JobWorker', 'JobContext']
