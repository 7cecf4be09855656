"""
Control Agent - Serialized command loop around the activation engine
====================================================================

Every trigger becomes a command on one ``queue.Queue``: poll ticks from the
process monitor, user commands, resolution deadlines and shutdown. A single
worker thread runs them one at a time in FIFO order, so the engine never
sees two operations interleave. Callers get a ``concurrent.futures.Future``
with the command's result.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from .engine import ActivationEngine, Outcome
from .models import ColorSettings, Profile, ResolutionSpec, Status
from .process_monitor import ProcessMonitor

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 60.0


@dataclass
class Command:
    """One queued engine operation."""
    name: str
    func: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    future: Future = field(default_factory=Future)


class ControlAgent:
    """
    Owns the engine and the worker thread that drives it.
    """

    def __init__(self, engine: ActivationEngine, monitor: Optional[ProcessMonitor] = None):
        """
        Initialize the agent.

        Args:
            engine: Engine to drive (only touched by the worker thread)
            monitor: Process poller feeding ticks, or None for no polling
        """
        self.engine = engine
        self.monitor = monitor
        self._queue: "queue.Queue[Command]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._accepting = False
        self._lock = threading.Lock()
        self._timers: List[threading.Timer] = []
        self._outcome_callbacks: List[Callable[[str, Outcome], None]] = []

        # Deadlines of resolution sessions come back as queued commands
        self.engine.guard.scheduler = self.schedule_deadline

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self):
        """Start the worker thread and the process poller."""
        if self.is_running:
            return
        self._accepting = True
        self._worker = threading.Thread(target=self._run, name="control-agent", daemon=True)
        self._worker.start()
        if self.monitor is not None:
            self.monitor.start_monitoring(self.submit_tick)
        logger.info("Control agent started")

    def stop(self, restore: bool = True, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Optional[Outcome]:
        """
        Stop polling, restore the display and end the worker.

        The shutdown command runs after everything already queued; it reverts
        any pending resolution change and, with *restore*, resets to Default.

        Returns:
            Outcome of the engine shutdown, or None if the agent was not running
        """
        if self.monitor is not None:
            self.monitor.stop_monitoring()

        with self._lock:
            if not self._accepting:
                return None
            command = Command("shutdown", self.engine.shutdown if restore else self.engine.reset_resolution)
            self._queue.put(command)
            self._accepting = False

        outcome = None
        try:
            outcome = command.future.result(timeout=timeout)
        except Exception as e:
            logger.error(f"Shutdown failed: {e}")

        if self._worker is not None:
            self._worker.join(timeout=2)
            self._worker = None
        self._cancel_timers()
        logger.info("Control agent stopped")
        return outcome

    def add_outcome_callback(self, callback: Callable[[str, Outcome], None]):
        """Register a callback run on the worker thread after every command that returns an Outcome."""
        self._outcome_callbacks.append(callback)

    # ── Worker ───────────────────────────────────────────────────────────

    def _run(self):
        while True:
            command = self._queue.get()
            try:
                self._execute(command)
            finally:
                self._queue.task_done()
            if command.name == "shutdown":
                break

    def _execute(self, command: Command):
        if not command.future.set_running_or_notify_cancel():
            return
        logger.debug(f"Running command '{command.name}'")
        try:
            result = command.func(*command.args)
        except Exception as e:
            logger.error(f"Command '{command.name}' failed: {e}")
            command.future.set_exception(e)
            return

        if isinstance(result, Outcome):
            for error in result.errors:
                logger.warning(f"{command.name}: {error}")
            for callback in self._outcome_callbacks:
                try:
                    callback(command.name, result)
                except Exception as e:
                    logger.error(f"Error in outcome callback: {e}")
        command.future.set_result(result)

    def submit(self, name: str, func: Callable[..., Any], *args) -> Future:
        """
        Queue an engine operation.

        Raises:
            RuntimeError: If the agent is not accepting commands
        """
        command = Command(name, func, args)
        with self._lock:
            if not self._accepting:
                raise RuntimeError("Control agent is not running")
            self._queue.put(command)
        return command.future

    # ── Deadlines ────────────────────────────────────────────────────────

    def schedule_deadline(self, delay: float, session_id: int) -> threading.Timer:
        """Arm a timer that queues ``expire(session_id)`` after *delay* seconds."""
        def fire():
            try:
                self.submit_expire(session_id)
            except RuntimeError:
                logger.debug(f"Deadline for session {session_id} fired after shutdown")

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if not t.finished.is_set()]
            self._timers.append(timer)
        timer.start()
        return timer

    def _cancel_timers(self):
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()

    # ── Commands ─────────────────────────────────────────────────────────

    def submit_tick(self, running_process_names) -> Future:
        return self.submit("tick", self.engine.tick, set(running_process_names))

    def submit_manual(self, settings: ColorSettings) -> Future:
        return self.submit("apply_manual", self.engine.apply_manual, settings)

    def submit_profile(self, profile: Profile) -> Future:
        return self.submit("apply_profile", self.engine.apply_profile, profile)

    def submit_reset(self) -> Future:
        return self.submit("reset", self.engine.reset)

    def submit_confirm(self, session_id: Optional[int] = None) -> Future:
        return self.submit("confirm_resolution", self.engine.confirm_resolution, session_id)

    def submit_revert(self, session_id: Optional[int] = None) -> Future:
        return self.submit("revert_resolution", self.engine.revert_resolution, session_id)

    def submit_expire(self, session_id: int) -> Future:
        return self.submit("expire_resolution", self.engine.expire_resolution, session_id)

    def submit_apply_resolution(self, mode: ResolutionSpec) -> Future:
        return self.submit("apply_resolution", self.engine.apply_resolution, mode)

    def submit_reset_resolution(self) -> Future:
        return self.submit("reset_resolution", self.engine.reset_resolution)

    def submit_auto_switch(self, enabled: bool) -> Future:
        return self.submit("set_auto_switch", self.engine.set_auto_switch, enabled)

    def submit_profiles(self, profiles: List[Profile]) -> Future:
        return self.submit("set_profiles", self.engine.set_profiles, list(profiles))

    def submit_status(self) -> Future:
        return self.submit("status", self.engine.status)

    # Blocking wrappers

    def apply_manual(self, settings: ColorSettings, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_manual(settings).result(timeout)

    def apply_profile(self, profile: Profile, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_profile(profile).result(timeout)

    def reset(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_reset().result(timeout)

    def confirm_resolution(self, session_id: Optional[int] = None,
                           timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_confirm(session_id).result(timeout)

    def revert_resolution(self, session_id: Optional[int] = None,
                          timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_revert(session_id).result(timeout)

    def apply_resolution(self, mode: ResolutionSpec, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_apply_resolution(mode).result(timeout)

    def reset_resolution(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_reset_resolution().result(timeout)

    def set_auto_switch(self, enabled: bool, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Outcome:
        return self.submit_auto_switch(enabled).result(timeout)

    def status(self, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> Status:
        return self.submit_status().result(timeout)
