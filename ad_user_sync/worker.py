"""
Polling loop that drives the SyncService.

The worker either performs a single reconciliation run and asks its host to
shut down, or runs reconciliation on a fixed interval until it is stopped.
A failing cycle in continuous mode is logged and the loop carries on.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from ad_user_sync.sync import SyncService

DEFAULT_SYNC_INTERVAL_SECONDS = 300


class SyncWorker:
    """
    Runs reconciliation once or repeatedly.

    Cancellation is cooperative: stop() is checked before each cycle and
    interrupts the wait between cycles, but a cycle already in progress is
    allowed to finish.
    """

    def __init__(self, sync_service: SyncService,
                 dry_run: bool = False,
                 run_once: bool = False,
                 sync_interval: float = DEFAULT_SYNC_INTERVAL_SECONDS,
                 stop_event: Optional[threading.Event] = None,
                 request_shutdown: Optional[Callable[[], None]] = None,
                 notifier: Optional[Callable[[str, str], object]] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the worker.

        Args:
            sync_service: Service performing one reconciliation pass
            dry_run: Report decisions only, never write to the target
            run_once: Perform a single pass, then request shutdown
            sync_interval: Seconds to wait between passes in continuous mode
            stop_event: Event used to signal cancellation
            request_shutdown: Called once a single run has finished
            notifier: Called with (title, message) when a run fails
            logger: Logger to use (defaults to the module logger)
        """
        self.sync_service = sync_service
        self.dry_run = dry_run
        self.run_once = run_once
        self.sync_interval = sync_interval
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = stop_event or threading.Event()
        self._request_shutdown = request_shutdown
        self._notifier = notifier

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        """Request cancellation; the current cycle, if any, runs to completion."""
        if not self._stop_event.is_set():
            self.logger.info("Stop requested, worker will exit after the current cycle")
        self._stop_event.set()

    def run(self) -> bool:
        """
        Run the worker until it finishes or is stopped.

        Returns:
            False if the single run (run-once mode) failed, True otherwise

        Raises:
            Exception: Errors outside the per-cycle boundary; logged as
                critical unless cancellation was requested
        """
        try:
            mode = 'run-once' if self.run_once else 'continuous'
            self.logger.info(f"Worker started at: {datetime.now().isoformat(timespec='seconds')} "
                             f"(mode={mode}, dry_run={self.dry_run})")

            if self.run_once:
                return self._run_single()

            self._run_continuously()
            return True

        except Exception as e:
            if not self.cancelled:
                self.logger.critical(f"Fatal error: {e}", exc_info=True)
                self._notify("Fatal Error", str(e))
            raise

    def _run_single(self) -> bool:
        success = True
        try:
            self.sync_service.run(self.dry_run)
        except Exception as e:
            success = False
            self.logger.error(f"Sync run failed: {e}", exc_info=True)
            self._notify("Sync Run Failed", str(e))
        finally:
            self.logger.info("Single run completed")
            if self._request_shutdown:
                self._request_shutdown()
        return success

    def _run_continuously(self):
        while not self.cancelled:
            self.logger.debug("Starting sync cycle...")
            try:
                self.sync_service.run(self.dry_run)
            except Exception as e:
                self.logger.error(f"Sync error: {e}", exc_info=True)
                self._notify("Sync Cycle Failed", str(e))

            if self._stop_event.wait(self.sync_interval):
                break

        self.logger.info("Worker stopped")

    def _notify(self, title: str, message: str):
        if not self._notifier:
            return
        try:
            self._notifier(title, message)
        except Exception as e:
            self.logger.error(f"Failed to send failure notification: {e}")
