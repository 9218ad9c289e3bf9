"""
Sync scheduler -- keeps pulling while the process lives.

Runs a background worker that reconciles with the remote blob on a fixed
interval. A pull that comes due while another sync is in flight is
dropped, not queued. ``notify_focus()`` asks for an immediate pull (the
daemon wires it to SIGUSR1). Stopping always flushes the local cache.
"""

from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import SyncStatus
from .sync.engine import SyncEngine

logger = logging.getLogger("ledgersync.scheduler")

LOG_DIR = "logs"
DEFAULT_INTERVAL = 30


class SchedulerState:
    """Thread-safe record of what the scheduler has done.

    All access is lock-protected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_pull: Optional[datetime] = None
        self.last_status: Optional[str] = None
        self.pulls_completed: int = 0
        self.pulls_skipped: int = 0
        self.focus_triggers: int = 0
        self.errors: list[str] = []
        self.running: bool = False

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current state."""
        with self._lock:
            return {
                "running": self.running,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "last_pull": self.last_pull.isoformat() if self.last_pull else None,
                "last_status": self.last_status,
                "pulls_completed": self.pulls_completed,
                "pulls_skipped": self.pulls_skipped,
                "focus_triggers": self.focus_triggers,
                "recent_errors": self.errors[-10:],
            }

    def mark_started(self) -> None:
        with self._lock:
            self.running = True
            self.started_at = datetime.now(timezone.utc)

    def mark_stopped(self) -> None:
        with self._lock:
            self.running = False

    def record_pull(self, status: SyncStatus) -> None:
        with self._lock:
            self.last_pull = datetime.now(timezone.utc)
            self.last_status = status.value
            self.pulls_completed += 1

    def record_skip(self) -> None:
        with self._lock:
            self.pulls_skipped += 1

    def record_focus(self) -> None:
        with self._lock:
            self.focus_triggers += 1

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > 50:
                self.errors = self.errors[-50:]


class SyncScheduler:
    """Periodic and event-driven pulls for one engine.

    Args:
        engine: The engine to drive.
        interval: Seconds between scheduled pulls.
    """

    def __init__(self, engine: SyncEngine, interval: float = DEFAULT_INTERVAL):
        self.engine = engine
        self.interval = interval
        self.state = SchedulerState()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, pull_now: bool = True) -> None:
        """Start the background worker.

        Args:
            pull_now: Run one pull right away instead of waiting a full interval.
        """
        if self.running:
            return
        self._stop_event.clear()
        self._wake_event.clear()
        self.state.mark_started()
        if pull_now:
            self._wake_event.set()

        self._thread = threading.Thread(target=self._loop, name="ledgersync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started, interval=%ss", self.interval)

    def stop(self) -> None:
        """Stop the worker and flush the local cache."""
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self.state.mark_stopped()
        self.engine.flush()
        logger.info("Scheduler stopped, local cache flushed")

    def notify_focus(self) -> None:
        """Request a pull now, as when the application regains focus."""
        self.state.record_focus()
        if self.running:
            self._wake_event.set()
        else:
            self.tick()

    def tick(self) -> bool:
        """Run one pull unless a sync is already in flight.

        Returns:
            True if a pull ran.
        """
        if self.engine.status == SyncStatus.SYNCING:
            self.state.record_skip()
            return False
        result = self.engine.reconcile(blocking=False)
        if result is None:
            self.state.record_skip()
            return False
        self.state.record_pull(self.engine.status)
        return True

    def run_forever(self) -> None:
        """Start if needed and block until SIGINT/SIGTERM, then stop."""
        self._setup_signals()
        self.start()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.wait(timeout=self.interval)
            if self._stop_event.is_set():
                break
            self._wake_event.clear()
            try:
                self.tick()
            except Exception as exc:
                logger.error("Scheduled pull failed: %s", exc)
                self.state.record_error(f"Pull: {exc}")

    def _setup_signals(self) -> None:
        """Register signal handlers. Main thread only."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_stop)
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, self._handle_focus)

    def _handle_stop(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self._stop_event.set()

    def _handle_focus(self, signum, frame):
        logger.info("Focus signal received, pulling")
        self.notify_focus()


def setup_file_logging(home: Path) -> Path:
    """Send INFO and above to ``<home>/logs/daemon.log``.

    Returns:
        Path to the log file.
    """
    log_dir = home / LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "daemon.log"
    handler = logging.FileHandler(log_file)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    return log_file
