"""
Console Confirm Prompt
======================

Headless counterpart of the confirm dialog: asks on stdin whether to keep
a resolution change. Like the dialog it never owns the deadline; the
agent may revert the change while the prompt is waiting.
"""

from typing import Callable, Optional

from ..resolution_session import ResolutionChangeSession


def countdown_text(session: ResolutionChangeSession) -> str:
    seconds = session.seconds_left()
    if seconds is None:
        return "Keep this resolution?"
    return f"Keep this resolution?\nReverting in {int(seconds + 0.999)} seconds..."


class ConsoleConfirmPrompt:
    """Asks on stdin; anything but a "keep" answer (or end of input) reverts."""

    KEEP_ANSWERS = ("k", "keep", "y", "yes")

    def __init__(
        self,
        session: ResolutionChangeSession,
        on_keep: Callable[[], None],
        on_revert: Callable[[], None],
        input_func: Callable[[str], str] = input,
    ):
        self.session = session
        self.on_keep = on_keep
        self.on_revert = on_revert
        self._input = input_func

    def show(self) -> Optional[str]:
        """
        Ask once.

        Returns:
            "keep", "revert", or None if the session resolved without the user
        """
        if not self.session.is_pending:
            return None
        print(f"\nResolution changed to {self.session.target}")
        try:
            answer = self._input(f"{countdown_text(self.session)} [k]eep / [r]evert: ")
        except EOFError:
            answer = ""
        if not self.session.is_pending:
            print(f"Too late, the resolution change was already {self.session.outcome.value}.")
            return None
        if answer.strip().lower() in self.KEEP_ANSWERS:
            self.on_keep()
            return "keep"
        self.on_revert()
        return "revert"
