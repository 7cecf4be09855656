#!/usr/bin/env python3
"""
Tests for choosing the profile of the running processes.
"""

import sys
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from display_toggle.models import Profile
from display_toggle.selector import select_profile


class TestSelectProfile(unittest.TestCase):

    def setUp(self):
        self.game = Profile("Game", "game")
        self.browser = Profile("Browser", "firefox")
        self.game_alt = Profile("Game (alt)", "game")

    def test_no_profiles(self):
        self.assertIsNone(select_profile({"game"}, []))

    def test_no_processes(self):
        self.assertIsNone(select_profile(set(), [self.game]))

    def test_no_match(self):
        self.assertIsNone(select_profile({"bash", "xterm"}, [self.game, self.browser]))

    def test_case_and_extension_insensitive(self):
        self.assertEqual(select_profile({"GAME.EXE"}, [self.game]), self.game)
        self.assertEqual(select_profile({"/opt/games/Game"}, [self.game]), self.game)

    def test_first_match_in_list_order_wins(self):
        running = {"firefox", "game"}
        self.assertIs(select_profile(running, [self.browser, self.game]), self.browser)
        self.assertIs(select_profile(running, [self.game, self.browser]), self.game)

    def test_duplicate_process_picks_first(self):
        self.assertIs(select_profile({"game"}, [self.game, self.game_alt]), self.game)
        self.assertIs(select_profile({"game"}, [self.game_alt, self.game]), self.game_alt)

    def test_deterministic(self):
        running = ["firefox", "game", "bash"]
        profiles = [self.game, self.browser]
        results = {select_profile(running, profiles).name for _ in range(20)}
        self.assertEqual(results, {"Game"})

    def test_ignores_empty_names(self):
        self.assertEqual(select_profile(["", None, "game"], [self.game]), self.game)


if __name__ == '__main__':
    unittest.main()
