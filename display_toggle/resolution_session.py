"""
Resolution Change Session - Confirm or roll back a risky mode change
====================================================================

A resolution change is applied speculatively and must be confirmed within a
time window, otherwise the previous mode is restored. This protects the user
from being stuck in a mode the monitor cannot display.

``ResolutionGuard`` owns the last-known-good resolution and at most one
pending ``ResolutionChangeSession``. The deadline timer never acts on the
display by itself: it is handed to a scheduler supplied by the owner (the
agent turns it into an ``expire`` command on its serialized queue), so a
deadline can never race a concurrent ``confirm()``.
"""

import itertools
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from .errors import ResolutionRejected, RevertFailed, SessionAlreadyOpen, SessionNotPending
from .models import ResolutionSpec
from .resolution_control import AttemptResult, ResolutionControl

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_TIMEOUT = 15.0

# scheduler(delay_seconds, session_id) -> handle with cancel()
DeadlineScheduler = Callable[[float, int], Any]


class SessionOutcome(Enum):
    PENDING = "pending"
    KEPT = "kept"
    REVERTED = "reverted"


class ResolutionChangeSession:
    """One in-flight resolution change awaiting confirmation or rollback."""

    _ids = itertools.count(1)

    def __init__(
        self,
        control: ResolutionControl,
        target: ResolutionSpec,
        backup: ResolutionSpec,
        deadline: Optional[float],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = next(self._ids)
        self.target = target
        self.backup = backup
        self.deadline = deadline
        self.outcome = SessionOutcome.PENDING
        self.revert_failed = False
        self._control = control
        self._clock = clock
        self._timer_handle: Any = None

    def __repr__(self):
        return (f"ResolutionChangeSession(id={self.session_id}, target={self.target}, "
                f"backup={self.backup}, outcome={self.outcome.value})")

    @property
    def is_pending(self) -> bool:
        return self.outcome is SessionOutcome.PENDING

    def seconds_left(self) -> Optional[float]:
        """Seconds until the deadline, or None if no deadline applies."""
        if self.deadline is None or not self.is_pending:
            return None
        return max(0.0, self.deadline - self._clock())

    def _require_pending(self, action: str):
        if not self.is_pending:
            raise SessionNotPending(
                f"Cannot {action} resolution session {self.session_id}: already {self.outcome.value}"
            )

    def _cancel_timer(self):
        if self._timer_handle is not None:
            try:
                self._timer_handle.cancel()
            except Exception as e:
                logger.debug(f"Failed to cancel deadline timer: {e}")
            self._timer_handle = None

    def confirm(self):
        """Keep the new resolution. Only valid while pending."""
        self._require_pending("confirm")
        self._cancel_timer()
        self.outcome = SessionOutcome.KEPT
        logger.info(f"Resolution change to {self.target} confirmed")

    def expire_or_cancel(self):
        """
        Restore the backup resolution. Only valid while pending.

        Raises:
            RevertFailed: If the display refused the backup mode. The session
                is closed anyway; nothing retries the revert.
        """
        self._require_pending("revert")
        self._cancel_timer()
        self.outcome = SessionOutcome.REVERTED

        try:
            result = self._control.attempt(self.backup)
        except Exception as e:
            logger.error(f"Revert to {self.backup} raised: {e}")
            result = AttemptResult.FAILED

        if result is not AttemptResult.OK:
            self.revert_failed = True
            logger.error(f"REVERT FAILED: display may still be at {self.target}, "
                         f"could not restore {self.backup} ({result.value})")
            raise RevertFailed(self.backup, self.target)

        logger.info(f"Resolution reverted to {self.backup}")


class ResolutionGuard:
    """
    Tracks the last-known-good resolution and the single pending session.
    """

    def __init__(
        self,
        control: ResolutionControl,
        last_known_good: Optional[ResolutionSpec] = None,
        auto_confirm: bool = False,
        scheduler: Optional[DeadlineScheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the guard.

        Args:
            control: Resolution backend
            last_known_good: Resolution to revert to (read from the display if None)
            auto_confirm: Confirm every successful change immediately, without a timer
            scheduler: Arms the deadline timer for a session; None disables timers
            clock: Monotonic time source
        """
        self.control = control
        self.auto_confirm = auto_confirm
        self.scheduler = scheduler
        self._clock = clock
        self._pending: Optional[ResolutionChangeSession] = None
        self.last_known_good = last_known_good
        if self.last_known_good is None:
            try:
                self.last_known_good = control.current_mode()
            except Exception as e:
                logger.warning(f"Could not read current resolution: {e}")

    @property
    def pending(self) -> Optional[ResolutionChangeSession]:
        return self._pending

    @property
    def pending_backup(self) -> Optional[ResolutionSpec]:
        return self._pending.backup if self._pending else None

    def open(self, target: ResolutionSpec, backup: Optional[ResolutionSpec] = None,
             timeout: float = DEFAULT_CONFIRM_TIMEOUT) -> ResolutionChangeSession:
        """
        Attempt *target* and open a session awaiting confirmation.

        Args:
            target: Mode to switch to
            backup: Mode to revert to (defaults to the last-known-good mode)
            timeout: Seconds before the change is reverted automatically

        Returns:
            The session (already KEPT in auto-confirm mode)

        Raises:
            SessionAlreadyOpen: Another session is pending; nothing is attempted
            ResolutionRejected: The display refused *target*; nothing changed
        """
        if self._pending is not None:
            raise SessionAlreadyOpen(
                f"Resolution change to {self._pending.target} is still awaiting confirmation"
            )

        backup = backup or self.last_known_good
        if backup is None:
            raise ResolutionRejected(target, "has no known resolution to revert to")

        logger.info(f"Attempting resolution change {backup} -> {target}")
        try:
            result = self.control.attempt(target)
        except Exception as e:
            logger.warning(f"Resolution attempt raised: {e}")
            raise ResolutionRejected(target, f"failed: {e}")
        if result is not AttemptResult.OK:
            logger.warning(f"Resolution {target} rejected by display ({result.value})")
            raise ResolutionRejected(target, result.value)

        deadline = None if self.auto_confirm else self._clock() + timeout
        session = ResolutionChangeSession(self.control, target, backup, deadline, self._clock)

        if self.auto_confirm:
            session.confirm()
            self.last_known_good = target
            return session

        self._pending = session
        if self.scheduler is not None:
            session._timer_handle = self.scheduler(timeout, session.session_id)
        logger.info(f"Resolution change pending confirmation ({timeout:.0f}s)")
        return session

    def _require_session(self, session_id: Optional[int], action: str) -> ResolutionChangeSession:
        """The pending session, which must be *session_id* when one is given."""
        session = self._pending
        if session is None:
            raise SessionNotPending("No resolution change is awaiting confirmation")
        if session_id is not None and session.session_id != session_id:
            raise SessionNotPending(
                f"Cannot {action} resolution session {session_id}: "
                f"session {session.session_id} is pending instead"
            )
        return session

    def confirm(self, session_id: Optional[int] = None) -> ResolutionChangeSession:
        """
        Keep the pending change; it becomes the last-known-good resolution.

        Args:
            session_id: Session the user answered for, or None for whichever is pending

        Raises:
            SessionNotPending: If nothing is pending or another session is
        """
        session = self._require_session(session_id, "confirm")
        session.confirm()
        self._pending = None
        self.last_known_good = session.target
        return session

    def cancel(self, session_id: Optional[int] = None) -> ResolutionChangeSession:
        """
        Revert the pending change on the user's request.

        Raises:
            SessionNotPending: If nothing is pending or another session is
            RevertFailed: The backup mode could not be restored
        """
        session = self._require_session(session_id, "revert")
        self.expire_or_cancel()
        return session

    def expire_or_cancel(self) -> Optional[ResolutionChangeSession]:
        """
        Revert the pending change, if any.

        Returns:
            The reverted session, or None if nothing was pending

        Raises:
            RevertFailed: The backup mode could not be restored
        """
        session = self._pending
        if session is None:
            return None
        # Clear first so a failed revert does not leave the guard wedged
        self._pending = None
        session.expire_or_cancel()
        return session

    def expire(self, session_id: int) -> Optional[ResolutionChangeSession]:
        """Deadline for *session_id* fired; stale deadlines are ignored."""
        if self._pending is None or self._pending.session_id != session_id:
            logger.debug(f"Ignoring stale deadline for session {session_id}")
            return None
        logger.info(f"No confirmation for {self._pending.target} before deadline, reverting")
        return self.expire_or_cancel()
