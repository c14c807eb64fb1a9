"""
Poller and RQ worker for the care-line call scheduling system
"""
import logging
import signal
import threading
import time
from typing import Optional

import redis
from dotenv import load_dotenv
from rq import Queue, Worker

from config.settings import SchedulerSettings

from .executor import ExecutionSummary, ScheduleExecutor

logger = logging.getLogger("scheduling-worker")


class CallPoller:
    """
    Fixed-interval loop that runs the schedule executor

    Runs once immediately, then every interval seconds until stopped. A tick
    that finds the previous one still running is skipped, never queued.
    """

    def __init__(self, executor: ScheduleExecutor, interval: int = 30):
        """
        Initialize the poller

        Args:
            executor: Executor invoked on every tick
            interval: Seconds between ticks
        """
        self.executor = executor
        self.interval = interval
        self.ticks_run = 0
        self.ticks_skipped = 0
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.running = False

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Poller received signal {signum}, shutting down...")
        self.stop()

    def install_signal_handlers(self):
        """Stop on SIGINT/SIGTERM; only valid from the main thread"""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def tick(self) -> Optional[ExecutionSummary]:
        """
        Run the executor once unless a run is already in progress

        Returns:
            The execution summary, or None when skipped or failed
        """
        if not self._tick_lock.acquire(blocking=False):
            self.ticks_skipped += 1
            logger.warning("Previous due run still in progress, skipping this tick")
            return None

        try:
            summary = self.executor.run_due_schedules()
            self.ticks_run += 1
            return summary
        except Exception as e:
            logger.error(f"Error in poller tick: {e}", exc_info=True)
            return None
        finally:
            self._tick_lock.release()

    def run(self):
        """Run the loop in the current thread until stop() is called"""
        logger.info(f"Starting call poller (checking every {self.interval}s)")
        self.running = True
        self._stop_event.clear()

        try:
            while not self._stop_event.is_set():
                self.tick()
                self._stop_event.wait(self.interval)
        finally:
            self.running = False
            logger.info("Call poller stopped")

    def run_in_background(self) -> threading.Thread:
        """Start the loop in a daemon thread"""
        if self._thread and self._thread.is_alive():
            logger.warning("Poller is already running")
            return self._thread

        self._thread = threading.Thread(target=self.run, name="call-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        """Stop the loop; waits for a background thread when one is running"""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)


class CallRefreshWorker:
    """
    Runs an RQ worker for due-run and call-refresh jobs
    """

    def __init__(self, redis_conn: redis.Redis, queue_name: str = "careline_calls"):
        self.redis_conn = redis_conn
        self.queue = Queue(queue_name, connection=self.redis_conn)
        self.worker: Optional[Worker] = None
        self.running = False

    def start_worker(self, worker_name: Optional[str] = None):
        """
        Start the RQ worker to process queued jobs

        Args:
            worker_name: Optional name for the worker (defaults to timestamp-based)
        """
        if self.running:
            logger.warning("Worker is already running")
            return

        logger.info(f"Starting care-line worker on queue {self.queue.name}...")
        self.worker = Worker(
            [self.queue],
            connection=self.redis_conn,
            name=worker_name or f"careline-worker-{int(time.time())}"
        )
        self.running = True

        try:
            # Scheduler enabled so delayed refreshes are picked up
            self.worker.work(with_scheduler=True, logging_level=logging.INFO)
        finally:
            self.running = False
            logger.info("Worker stopped")

    def stop(self):
        """Stop the worker gracefully"""
        if self.worker and self.running:
            logger.info("Stopping worker...")
            self.worker.request_stop(signal.SIGTERM, None)
            self.running = False
        else:
            logger.info("Worker not running")


def main():
    """
    Main function for running the poller or the RQ worker
    """
    import argparse

    from config.redis import create_redis_connection

    from .scheduler import build_scheduler

    load_dotenv()
    settings = SchedulerSettings.from_env()

    parser = argparse.ArgumentParser(description="Care-line Call Scheduling Worker")
    parser.add_argument(
        "mode",
        choices=["poller", "worker", "both"],
        help="Mode to run: poller (place due calls), worker (process queued jobs), or both"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.poll_interval,
        help=f"Poll interval in seconds (default: {settings.poll_interval})"
    )
    parser.add_argument(
        "--worker-name",
        help="Name for the worker process"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    # Set up logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    redis_conn = create_redis_connection()
    worker = CallRefreshWorker(redis_conn, settings.queue_name)

    if args.mode == "worker":
        worker.start_worker(worker_name=args.worker_name)
        return

    scheduler = build_scheduler(redis_conn, settings)
    poller = CallPoller(scheduler.executor, interval=args.interval)

    if args.mode == "poller":
        poller.install_signal_handlers()
        poller.run()
        return

    # RQ installs its own signal handlers in the foreground
    poller.run_in_background()
    try:
        worker.start_worker(worker_name=args.worker_name)
    finally:
        poller.stop(timeout=5)


if __name__ == "__main__":
    main()
