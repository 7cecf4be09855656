"""
Activation Engine - Decide which activation is enforced
=======================================================

The engine owns the single ``ActivationState`` (Default, Manual or
ProfileActive) and converges the display to it. It is not thread-safe:
every call must come from the agent's worker thread.

Expected collaborator failures never raise out of the public operations;
they are reported in the returned ``Outcome``. The logical transition is
still recorded when colors fail to apply, and a rejected resolution leaves
the backup mode live while the color transition proceeds.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .color_control import DisplayColorControl
from .errors import (
    BackendError, ColorApplyError, DisplayToggleError, ResolutionRejected,
    RevertFailed, SessionAlreadyOpen,
)
from .models import (
    ActivationState, ColorSettings, DEFAULT_COLOR_SETTINGS, DEFAULT_STATE,
    Manual, Profile, ProfileActive, ResolutionSpec, Status,
)
from .resolution_control import AttemptResult, same_mode
from .resolution_session import DEFAULT_CONFIRM_TIMEOUT, ResolutionChangeSession, ResolutionGuard
from .selector import select_profile

logger = logging.getLogger(__name__)

# Most severe first; Outcome.error reports the most severe failure
_SEVERITY = (RevertFailed, ResolutionRejected, SessionAlreadyOpen, ColorApplyError)


@dataclass
class Outcome:
    """Result of one engine operation."""
    state: ActivationState
    errors: List[DisplayToggleError] = field(default_factory=list)
    session: Optional[ResolutionChangeSession] = None

    @property
    def error(self) -> Optional[DisplayToggleError]:
        for error_type in _SEVERITY:
            for error in self.errors:
                if isinstance(error, error_type):
                    return error
        return self.errors[0] if self.errors else None

    @property
    def ok(self) -> bool:
        return not self.errors


class ActivationEngine:
    """
    State machine for profile activation and guarded resolution changes.
    """

    def __init__(
        self,
        color: DisplayColorControl,
        guard: ResolutionGuard,
        profiles: Optional[Sequence[Profile]] = None,
        defaults: ColorSettings = DEFAULT_COLOR_SETTINGS,
        auto_switch_enabled: bool = False,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    ):
        """
        Initialize the engine in the Default state.

        Args:
            color: Color backend of the primary output
            guard: Resolution guard holding the last-known-good mode
            profiles: Profiles in priority order
            defaults: Color settings of the Default state
            auto_switch_enabled: Let ticks switch profiles
            confirm_timeout: Seconds a resolution change waits for confirmation
        """
        self.color = color
        self.guard = guard
        self.profiles: List[Profile] = list(profiles or [])
        self.defaults = defaults
        self.auto_switch_enabled = auto_switch_enabled
        self.confirm_timeout = confirm_timeout

        self._state: ActivationState = DEFAULT_STATE
        self._observed: Optional[Profile] = None
        # Profile the user switched away from while its process was running;
        # ticks leave it alone until the selection changes
        self._suppressed: Optional[str] = None

    @property
    def state(self) -> ActivationState:
        return self._state

    @property
    def observed_profile(self) -> Optional[Profile]:
        return self._observed

    def set_profiles(self, profiles: Sequence[Profile]):
        """Replace the profile list (after the store was edited)."""
        self.profiles = list(profiles)
        logger.debug(f"Engine now has {len(self.profiles)} profiles")

    # ── Internal helpers ─────────────────────────────────────────────────

    def _transition(self, new_state: ActivationState):
        if new_state != self._state:
            logger.info(f"Activation: {self._state.describe()} -> {new_state.describe()}")
        self._state = new_state

    def _apply_colors(self, settings: ColorSettings, errors: List[DisplayToggleError]):
        try:
            self.color.apply(settings)
        except ColorApplyError as e:
            errors.append(e)

    def _cancel_pending(self, errors: List[DisplayToggleError]):
        """Revert an open resolution session, if any."""
        if self.guard.pending is None:
            return
        logger.info(f"Cancelling pending resolution change to {self.guard.pending.target}")
        try:
            self.guard.expire_or_cancel()
        except RevertFailed as e:
            errors.append(e)

    def _open_session(self, target: ResolutionSpec,
                      errors: List[DisplayToggleError]) -> Optional[ResolutionChangeSession]:
        try:
            return self.guard.open(target, timeout=self.confirm_timeout)
        except (ResolutionRejected, SessionAlreadyOpen) as e:
            logger.warning(f"Resolution change not made: {e}")
            errors.append(e)
            return None

    def _restore_last_known_good(self, errors: List[DisplayToggleError]):
        """Switch back to the last-known-good mode if the live mode differs."""
        good = self.guard.last_known_good
        if good is None:
            return
        try:
            live = self.guard.control.current_mode()
        except (BackendError, NotImplementedError) as e:
            logger.warning(f"Could not read live resolution: {e}")
            return
        if same_mode(live, good):
            return

        logger.info(f"Restoring resolution {live} -> {good}")
        try:
            result = self.guard.control.attempt(good)
        except BackendError as e:
            logger.error(f"Restoring resolution raised: {e}")
            result = AttemptResult.FAILED
        if result is not AttemptResult.OK:
            logger.error(f"REVERT FAILED: could not restore {good} ({result.value})")
            errors.append(RevertFailed(good, live))

    def _enter_default(self, errors: List[DisplayToggleError]):
        self._cancel_pending(errors)
        self._apply_colors(self.defaults, errors)
        self._restore_last_known_good(errors)
        self._transition(DEFAULT_STATE)

    def _activate(self, profile: Profile, errors: List[DisplayToggleError]) -> Optional[ResolutionChangeSession]:
        self._cancel_pending(errors)
        self._apply_colors(profile.color_settings, errors)
        session = None
        if profile.resolution is not None:
            session = self._open_session(profile.resolution, errors)
        self._transition(ProfileActive(profile))
        return session

    def _outcome(self, errors: List[DisplayToggleError],
                 session: Optional[ResolutionChangeSession] = None) -> Outcome:
        return Outcome(state=self._state, errors=errors, session=session)

    def _suppress_observed(self):
        self._suppressed = self._observed.name if self._observed else None

    # ── Operations ───────────────────────────────────────────────────────

    def tick(self, running_process_names) -> Outcome:
        """
        Process one poll of the running processes.

        Without auto-switch this only records the observed profile. After an
        explicit user action (manual apply, reset, toggle-off) the profile that
        was running at the time is not re-activated until the selection changes,
        so a Manual state is only replaced when a different profile's process
        shows up.
        """
        observed = select_profile(running_process_names, self.profiles)
        if (observed.name if observed else None) != (self._observed.name if self._observed else None):
            logger.debug(f"Observed profile: {observed.name if observed else 'none'}")
            self._suppressed = None
        self._observed = observed

        errors: List[DisplayToggleError] = []
        if not self.auto_switch_enabled:
            return self._outcome(errors)

        if observed is not None and observed.name == self._suppressed:
            return self._outcome(errors)

        current = self._state.profile
        if isinstance(self._state, Manual):
            if observed is not None:
                logger.info(f"Process '{observed.process_match}' started, replacing manual settings "
                            f"with profile '{observed.name}'")
                return self._outcome(errors, self._activate(observed, errors))
            return self._outcome(errors)

        if isinstance(self._state, ProfileActive):
            if observed is None:
                logger.info(f"Process for profile '{current.name}' no longer running")
                self._enter_default(errors)
                return self._outcome(errors)
            if observed.name != current.name:
                return self._outcome(errors, self._activate(observed, errors))
            return self._outcome(errors)

        if observed is not None:
            logger.info(f"Process '{observed.process_match}' detected, switching to profile '{observed.name}'")
            return self._outcome(errors, self._activate(observed, errors))
        return self._outcome(errors)

    def apply_manual(self, settings: ColorSettings) -> Outcome:
        """Apply *settings* and enter Manual; an open resolution session is reverted first."""
        errors: List[DisplayToggleError] = []
        self._cancel_pending(errors)
        self._apply_colors(settings, errors)
        self._transition(Manual(settings))
        self._suppress_observed()
        return self._outcome(errors)

    def apply_profile(self, profile: Profile) -> Outcome:
        """
        Activate *profile*, or reset if it is already the active profile.

        The profile's resolution (if any) is opened as a session awaiting
        confirmation; the activation holds whatever the session's outcome.
        """
        if isinstance(self._state, ProfileActive) and self._state.profile.name == profile.name:
            logger.info(f"Profile '{profile.name}' already active, toggling off")
            return self.reset()

        errors: List[DisplayToggleError] = []
        session = self._activate(profile, errors)
        return self._outcome(errors, session)

    def reset(self) -> Outcome:
        """Restore default colors and the last-known-good resolution, enter Default."""
        errors: List[DisplayToggleError] = []
        self._enter_default(errors)
        self._suppress_observed()
        return self._outcome(errors)

    def confirm_resolution(self, session_id: Optional[int] = None) -> Outcome:
        """
        Keep the pending resolution change.

        Args:
            session_id: Session the user was asked about; None accepts whichever is pending

        Raises:
            SessionNotPending: If nothing awaits confirmation, or a different session does
        """
        session = self.guard.confirm(session_id)
        return self._outcome([], session)

    def revert_resolution(self, session_id: Optional[int] = None) -> Outcome:
        """
        Revert the pending resolution change now.

        Raises:
            SessionNotPending: If nothing awaits confirmation, or a different session does
        """
        errors: List[DisplayToggleError] = []
        session = self.guard.pending
        try:
            session = self.guard.cancel(session_id)
        except RevertFailed as e:
            errors.append(e)
        return self._outcome(errors, session)

    def expire_resolution(self, session_id: int) -> Outcome:
        """Deadline of *session_id* passed; stale deadlines are ignored."""
        errors: List[DisplayToggleError] = []
        session = None
        try:
            session = self.guard.expire(session_id)
        except RevertFailed as e:
            errors.append(e)
        return self._outcome(errors, session)

    def apply_resolution(self, mode: ResolutionSpec) -> Outcome:
        """Guarded change to *mode* without touching the activation."""
        errors: List[DisplayToggleError] = []
        session = self._open_session(mode, errors)
        return self._outcome(errors, session)

    def reset_resolution(self) -> Outcome:
        """Revert any pending change and restore the last-known-good resolution."""
        errors: List[DisplayToggleError] = []
        self._cancel_pending(errors)
        self._restore_last_known_good(errors)
        return self._outcome(errors)

    def set_auto_switch(self, enabled: bool) -> Outcome:
        """Enable or disable tick-driven switching. The current activation is kept."""
        if enabled != self.auto_switch_enabled:
            logger.info(f"Auto profile switching {'enabled' if enabled else 'disabled'}")
        self.auto_switch_enabled = enabled
        self._suppressed = None
        return self._outcome([])

    def shutdown(self) -> Outcome:
        """Revert any pending change and reset before the agent exits."""
        logger.info("Restoring display state before exit")
        errors: List[DisplayToggleError] = []
        self._enter_default(errors)
        for error in errors:
            logger.error(f"Shutdown: {error}")
        return self._outcome(errors)

    def status(self) -> Status:
        """Snapshot of the activation and the live display state."""
        def _read(what, reader):
            try:
                return reader()
            except DisplayToggleError as e:
                logger.debug(f"Could not read {what}: {e}")
                return None

        pending = self.guard.pending
        return Status(
            state=self._state,
            live_vibrance=_read("vibrance", self.color.get_vibrance),
            live_hue=_read("hue", self.color.get_hue),
            gamma_is_default=_read("gamma ramp", self.color.gamma_is_default),
            last_known_good_resolution=self.guard.last_known_good,
            live_resolution=_read("resolution", self.guard.control.current_mode),
            pending_resolution=pending.target if pending else None,
            auto_switch_enabled=self.auto_switch_enabled,
            observed_profile=self._observed,
        )
