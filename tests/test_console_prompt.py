#!/usr/bin/env python3
"""
Tests for the headless keep/revert prompt.
"""

import io
import sys
import unittest
from contextlib import redirect_stdout
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from display_toggle.gui.console_prompt import ConsoleConfirmPrompt, countdown_text
from display_toggle.resolution_session import ResolutionGuard, SessionOutcome

from fakes import FakeClock, FakeResolutionControl, FakeScheduler, GAME_MODE, NATIVE


class TestConsoleConfirmPrompt(unittest.TestCase):

    def setUp(self):
        self.control = FakeResolutionControl()
        self.clock = FakeClock()
        self.guard = ResolutionGuard(self.control, scheduler=FakeScheduler(), clock=self.clock)
        self.session = self.guard.open(GAME_MODE)
        self.calls = []

    def prompt(self, input_func):
        return ConsoleConfirmPrompt(
            self.session,
            on_keep=lambda: self.calls.append("keep"),
            on_revert=lambda: self.calls.append("revert"),
            input_func=input_func,
        )

    def show(self, input_func):
        out = io.StringIO()
        with redirect_stdout(out):
            choice = self.prompt(input_func).show()
        return choice, out.getvalue()

    def test_keep_answers(self):
        for answer in ("k", "Keep", " y ", "YES"):
            self.calls.clear()
            choice, _ = self.show(lambda text: answer)
            self.assertEqual(choice, "keep")
            self.assertEqual(self.calls, ["keep"])

    def test_other_answer_reverts(self):
        choice, output = self.show(lambda text: "r")
        self.assertEqual(choice, "revert")
        self.assertEqual(self.calls, ["revert"])
        self.assertIn(str(GAME_MODE), output)

    def test_end_of_input_reverts(self):
        def closed(text):
            raise EOFError

        choice, _ = self.show(closed)
        self.assertEqual(choice, "revert")
        self.assertEqual(self.calls, ["revert"])

    def test_answer_after_deadline_does_nothing(self):
        def slow_user(text):
            self.guard.expire(self.session.session_id)
            return "k"

        choice, output = self.show(slow_user)
        self.assertIsNone(choice)
        self.assertEqual(self.calls, [])
        self.assertIn("already reverted", output)
        self.assertEqual(self.session.outcome, SessionOutcome.REVERTED)
        self.assertEqual(self.control.current, NATIVE)

    def test_resolved_session_is_not_asked(self):
        self.guard.confirm()
        asked = []
        choice, _ = self.show(lambda text: asked.append(text) or "k")
        self.assertIsNone(choice)
        self.assertEqual(asked, [])
        self.assertEqual(self.calls, [])

    def test_countdown_text(self):
        self.assertIn("Reverting in 15 seconds", countdown_text(self.session))
        self.clock.advance(14.5)
        self.assertIn("Reverting in 1 seconds", countdown_text(self.session))


if __name__ == '__main__':
    unittest.main()
