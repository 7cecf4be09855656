"""
Process Monitor - Poll the running processes
============================================
"""

import logging
import threading
from typing import Callable, Optional, Set

import psutil

from .models import normalize_process_name

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


def running_process_names() -> Set[str]:
    """
    Normalized names of all running processes.

    Enumeration failures yield an empty set; a missing tick is harmless.
    """
    names = set()
    try:
        for proc in psutil.process_iter(['name']):
            name = proc.info.get('name')
            if name:
                names.add(normalize_process_name(name))
    except (psutil.Error, OSError) as e:
        logger.warning(f"Failed to enumerate processes: {e}")
        return set()
    return names


class ProcessMonitor:
    """
    Calls back with the set of running process names at a fixed interval.

    The callback runs on the monitor thread; it should only hand the names
    off (the agent enqueues a tick).
    """

    def __init__(self, interval: float = DEFAULT_POLL_INTERVAL,
                 enumerate_processes: Callable[[], Set[str]] = running_process_names):
        """
        Args:
            interval: Seconds between polls
            enumerate_processes: Source of process names
        """
        self.interval = interval
        self._enumerate = enumerate_processes
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._callback: Optional[Callable[[Set[str]], None]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start_monitoring(self, callback: Callable[[Set[str]], None]):
        """Start polling processes."""
        if self._running:
            return

        self._callback = callback
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitor_loop, name="process-monitor", daemon=True)
        self._thread.start()
        logger.info(f"Started process monitoring (every {self.interval:.0f}s)")

    def stop_monitoring(self):
        """Stop polling processes."""
        self._running = False
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        self._thread = None
        logger.info("Stopped process monitoring")

    def poll_once(self):
        """Enumerate processes and invoke the callback once."""
        names = self._enumerate()
        if self._callback:
            try:
                self._callback(names)
            except Exception as e:
                logger.error(f"Error in process monitor callback: {e}")

    def _monitor_loop(self):
        """Main monitoring loop (polling-based)."""
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Error in process monitor loop: {e}")
            if self._stop_event.wait(self.interval):
                break
