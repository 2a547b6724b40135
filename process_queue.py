#!/usr/bin/env python3
"""
Worker process for the feedback queue.

Runs long-lived consumers for the email and message-persist queues, or drains
whatever is currently claimable and exits.

Usage:
    python process_queue.py [--queue email] [--concurrency 2] [--data-dir ./data]
    python process_queue.py --drain
    python process_queue.py --stats-only
"""

import argparse
import json
import logging
import signal
import sys
import threading

logger = logging.getLogger('feedback_queue.cli')


def build_worker(settings, queue_names=None):
    """Construct broker, handlers and worker from settings."""
    # Import here to allow script to show help without dependencies
    from handlers import build_registry
    from job_queue.broker import Broker
    from mailer.transport import build_transport
    from users.store import UserStore
    from worker.processor import JobWorker

    broker = Broker.from_settings(settings)
    registry = build_registry(
        build_transport(settings),
        UserStore(settings.resolved_users_db_path),
    )
    return JobWorker.from_settings(broker, registry, settings, queue_names=queue_names)


def drain(worker):
    """Process jobs until no queue has a claimable job. Returns exit code."""
    from job_queue.models import JobState

    worker.run_maintenance(force=True)
    completed = 0
    failed = 0
    retried = 0

    logger.info("Draining queues...")
    while True:
        progressed = False
        for queue_name in worker.queue_names:
            job = worker.process_next(queue_name, timeout=0)
            if job is None:
                continue
            progressed = True
            if job.state == JobState.COMPLETED:
                completed += 1
                logger.info(f"✓ Job {job.id} ({job.job_type.value}) completed")
            elif job.state == JobState.FAILED:
                failed += 1
                logger.error(f"✗ Job {job.id} ({job.job_type.value}) failed: {job.failure_reason}")
            else:
                retried += 1
                logger.warning(f"Job {job.id} will be retried: {job.last_error}")
        if not progressed:
            break

    logger.info(f"Drain complete. Completed: {completed}, Failed: {failed}, Awaiting retry: {retried}")
    return 0 if failed == 0 else 1


def run_forever(worker):
    """Run worker threads until SIGINT/SIGTERM."""
    stop = threading.Event()

    def _request_stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    worker.start()
    logger.info("Worker is running and waiting for jobs...")
    stop.wait()
    worker.stop()
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run feedback queue workers')
    parser.add_argument('--data-dir', '-d', help='Broker data directory (or set FBQ_DATA_DIR)')
    parser.add_argument(
        '--queue', '-q', action='append', choices=['email', 'message-persist'],
        help='Queue to consume; repeat for several (default: all)',
    )
    parser.add_argument('--concurrency', '-c', type=int, help='Threads per queue')
    parser.add_argument('--drain', action='store_true', help='Process claimable jobs, then exit')
    parser.add_argument('--stats-only', '-s', action='store_true', help='Only show queue stats')

    args = parser.parse_args(argv)

    from gateway.logging_config import configure_logging
    from validation.config import get_settings

    settings = get_settings()
    overrides = {}
    if args.data_dir:
        overrides['data_dir'] = args.data_dir
    if args.concurrency:
        overrides['worker_concurrency'] = args.concurrency
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)
    logger.info(f"Using data directory: {settings.data_dir}")

    # Stats only mode
    if args.stats_only:
        from job_queue.broker import Broker
        from job_queue.operations import JobQueue

        stats = JobQueue(Broker.from_settings(settings)).stats()
        print(json.dumps(stats, indent=2))
        return 0

    settings.log_config()
    worker = build_worker(settings, queue_names=args.queue)
    if args.drain:
        return drain(worker)
    return run_forever(worker)


if __name__ == '__main__':
    sys.exit(main())
