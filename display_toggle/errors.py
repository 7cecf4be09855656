"""
Error Taxonomy
==============

``DisplayApplyError`` and its subclasses describe failures reported by the
display collaborators. The activation engine returns them inside an
``Outcome`` instead of raising. ``SessionError`` subclasses are ordering
errors made by the caller and propagate normally.
"""


class DisplayToggleError(Exception):
    """Base class for all errors raised by display_toggle."""
    pass


class ConfigError(DisplayToggleError):
    """Configuration could not be parsed."""
    pass


class ProfileError(DisplayToggleError, ValueError):
    """A profile (or one of its values) is invalid."""
    pass


class BackendError(DisplayToggleError):
    """An external tool or X11 call used by a backend failed."""
    pass


class DisplayApplyError(DisplayToggleError):
    """A display collaborator failed to apply a change."""
    pass


class ColorApplyError(DisplayApplyError):
    """
    Color settings could not be (fully) applied.

    Recoverable: the logical activation still proceeds and the settings
    are re-applied on the next transition.
    """
    pass


class ResolutionRejected(DisplayApplyError):
    """The display refused the requested mode; nothing was changed."""

    def __init__(self, target, reason: str = "rejected"):
        self.target = target
        self.reason = reason
        super().__init__(f"Resolution {target} {reason}")


class RevertFailed(DisplayApplyError):
    """
    Reverting to the backup resolution failed.

    The display may be left in an unreadable mode with no automated way back.
    """

    def __init__(self, backup, target=None):
        self.backup = backup
        self.target = target
        super().__init__(f"Failed to revert resolution to {backup}")


class SessionError(DisplayToggleError):
    """Misuse of the resolution change session."""
    pass


class SessionAlreadyOpen(SessionError):
    """A resolution change is already awaiting confirmation."""
    pass


class SessionNotPending(SessionError):
    """confirm()/expire_or_cancel() called on a session that already resolved."""
    pass
