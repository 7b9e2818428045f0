"""
GoPro Merge Worker - Consumes concatenation jobs from RabbitMQ.

Runs MAX_CONCURRENT_JOBS consumer threads; each holds its own connection and
executes one job at a time.
"""

import signal
import threading

import structlog

from gopro_merge.core.config import settings
from gopro_merge.core.messaging import RabbitMQJobQueue
from gopro_merge.tasks.concatenate import process_job

logger = structlog.get_logger()

shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    logger.info("shutdown_requested", signal=signum)
    shutdown_requested.set()


def consume(worker_index: int) -> None:
    structlog.contextvars.bind_contextvars(worker=worker_index)
    queue = RabbitMQJobQueue()
    try:
        queue.on_job_picked(process_job, shutdown_requested)
    finally:
        queue.close()
    logger.info("consumer_stopped")


def main():
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("worker_starting", concurrency=settings.max_concurrent_jobs)

    threads = [
        threading.Thread(target=consume, args=(index,), name=f"consumer-{index}")
        for index in range(max(settings.max_concurrent_jobs, 1))
    ]
    for thread in threads:
        thread.start()

    # Signals are only delivered to the main thread, so wake up periodically.
    while not shutdown_requested.is_set():
        shutdown_requested.wait(1)

    for thread in threads:
        thread.join()

    logger.info("worker_stopped")


if __name__ == "__main__":
    main()
