"""
Resolution Confirm Dialog
=========================

Asks the user to keep or revert a resolution change while its session is
pending. The dialog never owns the deadline: it polls the session's
``seconds_left()`` for the countdown and closes itself once the session is
resolved elsewhere (confirmed, reverted, or expired by the agent).
"""

import logging
from typing import Callable, Optional

import customtkinter as ctk

from ..resolution_session import ResolutionChangeSession
from .console_prompt import countdown_text

logger = logging.getLogger(__name__)

REFRESH_MS = 200


class ResolutionConfirmDialog:
    """
    Small topmost window with Keep / Revert buttons.

    Keep calls *on_keep*; Revert or closing the window calls *on_revert*.
    Must be shown from the thread that runs Tk (the main thread).
    """

    def __init__(
        self,
        session: ResolutionChangeSession,
        on_keep: Callable[[], None],
        on_revert: Callable[[], None],
    ):
        self.session = session
        self.on_keep = on_keep
        self.on_revert = on_revert
        self.choice: Optional[str] = None
        self._root: Optional[ctk.CTk] = None
        self._label: Optional[ctk.CTkLabel] = None

    def _build(self):
        ctk.set_appearance_mode("dark")
        ctk.set_default_color_theme("blue")
        self._root = ctk.CTk(className='display-toggle')
        self._root.title("Confirm Resolution")
        self._root.attributes('-topmost', True)
        self._root.resizable(False, False)
        self._root.protocol("WM_DELETE_WINDOW", self._on_revert)

        width, height = 360, 170
        x = (self._root.winfo_screenwidth() - width) // 2
        y = (self._root.winfo_screenheight() - height) // 2
        self._root.geometry(f"{width}x{height}+{x}+{y}")

        ctk.CTkLabel(
            self._root,
            text=str(self.session.target),
            font=ctk.CTkFont(size=14, weight="bold"),
        ).pack(pady=(16, 4))

        self._label = ctk.CTkLabel(
            self._root,
            text=countdown_text(self.session),
            font=ctk.CTkFont(size=13),
        )
        self._label.pack(pady=4)

        buttons = ctk.CTkFrame(self._root, fg_color="transparent")
        buttons.pack(pady=(8, 12))
        ctk.CTkButton(buttons, text="Keep", width=120, command=self._on_keep).pack(side="left", padx=8)
        ctk.CTkButton(
            buttons, text="Revert", width=120,
            fg_color="#6b2d2d", hover_color="#8a3a3a",
            command=self._on_revert,
        ).pack(side="left", padx=8)

    def _refresh(self):
        if self._root is None:
            return
        if not self.session.is_pending:
            logger.debug(f"Session {self.session.session_id} resolved elsewhere, closing dialog")
            self._close()
            return
        self._label.configure(text=countdown_text(self.session))
        self._root.after(REFRESH_MS, self._refresh)

    def _on_keep(self):
        self.choice = "keep"
        self._close()
        self.on_keep()

    def _on_revert(self):
        self.choice = "revert"
        self._close()
        self.on_revert()

    def _close(self):
        if self._root is not None:
            root, self._root = self._root, None
            root.quit()
            root.destroy()

    def show(self) -> Optional[str]:
        """
        Show the dialog and block until it closes.

        Returns:
            "keep", "revert", or None if the session resolved without the user
        """
        if not self.session.is_pending:
            return None
        self._build()
        self._root.after(REFRESH_MS, self._refresh)
        self._root.mainloop()
        return self.choice

