"""Status Gateway: HTTP facade over the job queue, plus the read-only admin view."""

__version__ = "1.0.0"
