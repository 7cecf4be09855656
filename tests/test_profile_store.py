#!/usr/bin/env python3
"""
Tests for the YAML profile store.
"""

import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from display_toggle.errors import ConfigError, ProfileError
from display_toggle.models import Profile, ResolutionSpec
from display_toggle.profile_store import ProfileStore


class TestProfileStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "profiles.yaml"
        self.store = ProfileStore(self.path)
        self.game = Profile("Game", "game", vibrance=80, resolution=ResolutionSpec(1920, 1080, 144))
        self.browser = Profile("Browser", "firefox", gamma=1.1)

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file(self):
        self.assertEqual(self.store.load(), [])

    def test_save_and_load_keeps_order(self):
        self.store.save([self.game, self.browser])
        loaded = ProfileStore(self.path).load()
        self.assertEqual(loaded, [self.game, self.browser])
        self.assertIn("resolution: null", self.path.read_text())

    def test_process_field_saved_as_entered(self):
        self.store.save([Profile("Game", "Game"), Profile("Launcher", "Game.exe")])
        original = self.path.read_text()

        store = ProfileStore(self.path)
        loaded = store.load()
        self.assertEqual([p.process_match for p in loaded], ["Game", "Game.exe"])
        store.save(loaded)
        self.assertEqual(self.path.read_text(), original)

    def test_malformed_entries_skipped(self):
        self.path.write_text(
            "profiles:\n"
            "  - name: Game\n"
            "    process: game\n"
            "    vibrance: 80\n"
            "  - name: Broken\n"
            "    process: broken\n"
            "    vibrance: 500\n"
            "  - just a string\n"
            "  - process: nameless\n"
            "  - name: Game\n"
            "    process: other\n"
        )
        loaded = self.store.load()
        self.assertEqual([p.name for p in loaded], ["Game"])
        self.assertEqual(loaded[0].match_key, "game")

    def test_invalid_yaml(self):
        self.path.write_text("profiles: [\n")
        with self.assertRaises(ConfigError):
            self.store.load()

    def test_add(self):
        self.store.add(self.game)
        with self.assertRaises(ProfileError):
            self.store.add(Profile("Game", "other"))
        self.assertEqual(ProfileStore(self.path).load(), [self.game])

    def test_replace_keeps_position(self):
        self.store.save([self.game, self.browser])
        renamed = self.game.with_changes(name="Shooter", vibrance=90)
        self.store.replace("Game", renamed)
        self.assertEqual(ProfileStore(self.path).load(), [renamed, self.browser])

    def test_replace_errors(self):
        self.store.save([self.game, self.browser])
        with self.assertRaises(ProfileError):
            self.store.replace("Missing", self.game)
        with self.assertRaises(ProfileError):
            self.store.replace("Game", self.browser)

    def test_remove(self):
        self.store.save([self.game, self.browser])
        self.assertEqual(self.store.remove("Game"), self.game)
        self.assertIsNone(self.store.get("Game"))
        self.assertEqual(ProfileStore(self.path).load(), [self.browser])
        with self.assertRaises(ProfileError):
            self.store.remove("Game")


if __name__ == '__main__':
    unittest.main()
