"""
Heartbeat - runs registered maintenance tasks (reconciliation) on a fixed interval.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

from ..util.logging import logger


class Heartbeat:
    """Cooperative scheduler on a daemon thread.

    Each task runs when its interval has elapsed since its last run. A
    failing task is logged and the loop continues.
    """

    def __init__(self, tick_sec: float = 0.5):
        # task_name -> {func, interval, last_run (monotonic, for scheduling), last_run_at (wall clock), failures}
        self.tasks: Dict[str, Dict] = {}
        self.tick_sec = tick_sec
        self.running = False
        self._shutdown_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def register_task(self, name: str, interval_sec: int, func: Callable):
        """
        Register a task to be executed periodically.

        Args:
            name: Unique task identifier; registering the same name replaces the task
            interval_sec: How often to run this task in seconds
            func: Zero-argument callable
        """
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")

        if interval_sec < 1:
            raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

        with self._lock:
            self.tasks[name] = {
                "func": func,
                "interval": interval_sec,
                "last_run": None,
                "last_run_at": None,
                "failures": 0,
            }

        logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")

    def unregister_task(self, name: str):
        """Remove a task from the registry."""
        with self._lock:
            self.tasks.pop(name, None)

    def list_tasks(self) -> List[str]:
        """Return list of registered task names."""
        with self._lock:
            return list(self.tasks.keys())

    def should_run_task(self, task_info: Dict, now: Optional[float] = None) -> bool:
        """Check if a task is due."""
        if task_info["last_run"] is None:
            return True  # Run immediately if never run

        now = time.monotonic() if now is None else now
        return now - task_info["last_run"] >= task_info["interval"]

    def run_task(self, name: str, task_info: Dict) -> bool:
        """Execute a task and record timing. Returns False if it raised."""
        start_time = time.monotonic()
        try:
            task_info["func"]()
        except Exception as e:
            end_time = time.monotonic()
            task_info["last_run"] = end_time
            task_info["last_run_at"] = time.time()
            task_info["failures"] += 1
            logger.log_heartbeat_task(name, start_time, end_time, status="failed", details={"error": str(e)[:100]})
            return False

        end_time = time.monotonic()
        task_info["last_run"] = end_time
        task_info["last_run_at"] = time.time()
        logger.log_heartbeat_task(name, start_time, end_time)
        return True

    def run_due_tasks(self) -> int:
        """Run every due task once. Returns how many ran."""
        with self._lock:
            due = [(name, info) for name, info in self.tasks.items() if self.should_run_task(info)]

        for name, info in due:
            self.run_task(name, info)
        return len(due)

    def _loop(self):
        try:
            while not self._shutdown_event.is_set():
                self.run_due_tasks()
                self._shutdown_event.wait(self.tick_sec)
        finally:
            self.running = False
            logger.info("Heartbeat loop stopped")

    def start(self, block: bool = False):
        """Start the heartbeat loop, on a background thread unless ``block``."""
        if self.running:
            raise RuntimeError("Heartbeat already running")

        self.running = True
        self._shutdown_event.clear()
        logger.info(f"Starting heartbeat loop with tasks: {self.list_tasks()}")

        if block:
            try:
                self._loop()
            except KeyboardInterrupt:
                logger.info("Heartbeat interrupted by user")
            return

        self._thread = threading.Thread(target=self._loop, name="cardstore-heartbeat", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        """Stop the heartbeat loop gracefully."""
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.running = False

    def reset_task(self, name: str):
        """Reset a task's last_run time to force immediate execution."""
        with self._lock:
            if name in self.tasks:
                self.tasks[name]["last_run"] = None

    def get_status(self) -> Dict:
        """Return current heartbeat status for monitoring. Times are Unix timestamps."""
        with self._lock:
            tasks = {}
            for name, info in self.tasks.items():
                last_run_at = info.get("last_run_at")
                tasks[name] = {
                    "interval_sec": info["interval"],
                    "last_run": last_run_at,
                    "next_run": last_run_at + info["interval"] if last_run_at is not None else None,
                    "failures": info["failures"],
                }
            return {"status": "running" if self.running else "stopped", "tasks": tasks}
