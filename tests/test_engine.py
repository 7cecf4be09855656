#!/usr/bin/env python3
"""
Tests for the activation state machine.
"""

import sys
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from display_toggle.engine import ActivationEngine
from display_toggle.errors import (
    ColorApplyError, ResolutionRejected, RevertFailed, SessionAlreadyOpen, SessionNotPending,
)
from display_toggle.models import (
    ColorSettings, DEFAULT_COLOR_SETTINGS, DEFAULT_STATE, Manual, Profile, ProfileActive,
)
from display_toggle.resolution_session import ResolutionGuard, SessionOutcome

from fakes import (
    FakeClock, FakeColorControl, FakeResolutionControl, FakeScheduler,
    GAME_MODE, NATIVE, OTHER_MODE,
)


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.events = []
        self.control = FakeResolutionControl(events=self.events)
        self.color = FakeColorControl(events=self.events)
        self.scheduler = FakeScheduler()
        self.clock = FakeClock()
        self.guard = ResolutionGuard(self.control, scheduler=self.scheduler, clock=self.clock)

        self.game = Profile("Game", "game", vibrance=80, hue=5, resolution=GAME_MODE)
        self.browser = Profile("Browser", "firefox", vibrance=60, gamma=1.2)
        self.editor = Profile("Editor", "code", vibrance=40, resolution=OTHER_MODE)
        self.engine = ActivationEngine(
            self.color, self.guard, [self.game, self.browser, self.editor],
        )


class TestTransitions(EngineTestCase):

    def test_initial_state(self):
        self.assertEqual(self.engine.state, DEFAULT_STATE)

    def test_default_to_manual(self):
        settings = ColorSettings(vibrance=80)
        outcome = self.engine.apply_manual(settings)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.state, Manual(settings))
        self.assertEqual(self.color.last, settings)

    def test_default_to_profile(self):
        outcome = self.engine.apply_profile(self.browser)
        self.assertEqual(outcome.state, ProfileActive(self.browser))
        self.assertEqual(self.color.last, self.browser.color_settings)
        self.assertIsNone(outcome.session)

    def test_manual_to_profile(self):
        self.engine.apply_manual(ColorSettings(vibrance=10))
        outcome = self.engine.apply_profile(self.browser)
        self.assertEqual(outcome.state, ProfileActive(self.browser))

    def test_manual_reset(self):
        self.engine.apply_manual(ColorSettings(vibrance=10))
        outcome = self.engine.reset()
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertEqual(self.color.last, DEFAULT_COLOR_SETTINGS)

    def test_apply_profile_twice_toggles_off(self):
        self.engine.apply_profile(self.browser)
        outcome = self.engine.apply_profile(self.browser)
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertEqual(self.color.last, DEFAULT_COLOR_SETTINGS)

    def test_toggle_off_matches_by_name(self):
        self.engine.apply_profile(self.browser)
        edited = self.browser.with_changes(vibrance=70)
        self.assertEqual(self.engine.apply_profile(edited).state, DEFAULT_STATE)

    def test_profile_to_other_profile(self):
        self.engine.apply_profile(self.browser)
        outcome = self.engine.apply_profile(self.game)
        self.assertEqual(outcome.state, ProfileActive(self.game))
        self.assertEqual(self.color.last, self.game.color_settings)

    def test_profile_reset(self):
        self.engine.apply_profile(self.browser)
        self.assertEqual(self.engine.reset().state, DEFAULT_STATE)

    def test_custom_defaults(self):
        defaults = ColorSettings(vibrance=55, gamma=1.1)
        engine = ActivationEngine(self.color, self.guard, [self.browser], defaults=defaults)
        engine.apply_profile(self.browser)
        engine.reset()
        self.assertEqual(self.color.last, defaults)


class TestTick(EngineTestCase):

    def setUp(self):
        super().setUp()
        self.engine.auto_switch_enabled = True

    def test_tick_activates_running_profile(self):
        outcome = self.engine.tick({"firefox", "bash"})
        self.assertEqual(outcome.state, ProfileActive(self.browser))

    def test_tick_switches_profile(self):
        self.engine.tick({"firefox"})
        outcome = self.engine.tick({"game"})
        self.assertEqual(outcome.state, ProfileActive(self.game))

    def test_tick_same_profile_is_noop(self):
        self.engine.tick({"firefox"})
        applied = len(self.color.applied)
        self.engine.tick({"firefox", "bash"})
        self.assertEqual(len(self.color.applied), applied)

    def test_process_exit_restores_default(self):
        self.engine.tick({"firefox"})
        outcome = self.engine.tick(set())
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertEqual(self.color.last, DEFAULT_COLOR_SETTINGS)

    def test_tick_without_auto_switch_only_observes(self):
        self.engine.set_auto_switch(False)
        outcome = self.engine.tick({"firefox"})
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertEqual(self.color.applied, [])
        self.assertEqual(self.engine.status().observed_profile, self.browser)

    def test_disabling_auto_switch_keeps_activation(self):
        self.engine.tick({"firefox"})
        outcome = self.engine.set_auto_switch(False)
        self.assertEqual(outcome.state, ProfileActive(self.browser))
        self.engine.tick(set())
        self.assertEqual(self.engine.state, ProfileActive(self.browser))

    def test_manual_not_overridden_by_running_process(self):
        self.engine.tick({"firefox"})
        settings = ColorSettings(vibrance=90)
        self.engine.apply_manual(settings)
        for _ in range(3):
            self.engine.tick({"firefox"})
        self.assertEqual(self.engine.state, Manual(settings))
        # Profile process exit does not clear a manual state either
        self.engine.tick(set())
        self.assertEqual(self.engine.state, Manual(settings))

    def test_manual_replaced_when_new_profile_starts(self):
        self.engine.apply_manual(ColorSettings(vibrance=90))
        outcome = self.engine.tick({"firefox"})
        self.assertEqual(outcome.state, ProfileActive(self.browser))

    def test_toggle_off_not_undone_by_next_tick(self):
        self.engine.tick({"firefox"})
        self.engine.apply_profile(self.browser)
        self.assertEqual(self.engine.state, DEFAULT_STATE)
        self.engine.tick({"firefox"})
        self.assertEqual(self.engine.state, DEFAULT_STATE)
        # Once the process goes away and comes back the profile applies again
        self.engine.tick(set())
        self.assertEqual(self.engine.tick({"firefox"}).state, ProfileActive(self.browser))

    def test_enumeration_failure_counts_as_nothing_running(self):
        self.engine.tick({"firefox"})
        self.assertEqual(self.engine.tick(set()).state, DEFAULT_STATE)


class TestResolution(EngineTestCase):

    def setUp(self):
        super().setUp()
        self.engine.auto_switch_enabled = True

    def test_game_scenario_expires(self):
        outcome = self.engine.tick({"game"})
        self.assertEqual(outcome.state, ProfileActive(self.game))
        session = outcome.session
        self.assertTrue(session.is_pending)
        self.assertEqual(session.target, GAME_MODE)
        self.assertEqual(self.control.current, GAME_MODE)
        self.assertEqual(self.scheduler.last.delay, 15.0)

        self.clock.advance(15)
        outcome = self.engine.expire_resolution(session.session_id)
        self.assertTrue(outcome.ok)
        self.assertEqual(session.outcome, SessionOutcome.REVERTED)
        self.assertEqual(self.control.current, NATIVE)
        self.assertEqual(self.guard.last_known_good, NATIVE)
        self.assertEqual(self.engine.state, ProfileActive(self.game))
        self.assertEqual(self.color.last, self.game.color_settings)

    def test_confirm_makes_target_last_known_good(self):
        self.engine.apply_profile(self.game)
        outcome = self.engine.confirm_resolution()
        self.assertEqual(outcome.session.outcome, SessionOutcome.KEPT)
        self.assertEqual(self.guard.last_known_good, GAME_MODE)
        self.assertEqual(self.control.current, GAME_MODE)

    def test_confirm_without_pending_raises(self):
        with self.assertRaises(SessionNotPending):
            self.engine.confirm_resolution()
        with self.assertRaises(SessionNotPending):
            self.engine.revert_resolution()

    def test_revert_resolution(self):
        self.engine.apply_profile(self.game)
        outcome = self.engine.revert_resolution()
        self.assertEqual(outcome.session.outcome, SessionOutcome.REVERTED)
        self.assertEqual(self.control.current, NATIVE)
        self.assertEqual(self.engine.state, ProfileActive(self.game))

    def test_expiry_reverts_in_manual_state(self):
        settings = ColorSettings(vibrance=30)
        self.engine.apply_manual(settings)
        outcome = self.engine.apply_resolution(GAME_MODE)
        self.engine.set_auto_switch(False)
        self.engine.expire_resolution(outcome.session.session_id)
        self.assertEqual(self.control.current, NATIVE)
        self.assertEqual(self.engine.state, Manual(settings))

    def test_manual_apply_reverts_pending_first(self):
        self.engine.apply_profile(self.game)
        self.events.clear()
        settings = ColorSettings(vibrance=80)
        outcome = self.engine.apply_manual(settings)

        self.assertEqual(self.events, [("attempt", NATIVE), ("color", settings)])
        self.assertEqual(outcome.state, Manual(settings))
        self.assertIsNone(self.guard.pending)
        self.assertEqual(self.control.current, NATIVE)

    def test_switching_profiles_reverts_pending(self):
        first = self.engine.apply_profile(self.game).session
        outcome = self.engine.apply_profile(self.editor)
        self.assertEqual(first.outcome, SessionOutcome.REVERTED)
        self.assertEqual(outcome.session.target, OTHER_MODE)
        self.assertEqual(outcome.session.backup, NATIVE)
        self.assertEqual(self.control.current, OTHER_MODE)

    def test_rejected_resolution_keeps_color_transition(self):
        self.control.rejected.add(GAME_MODE)
        outcome = self.engine.apply_profile(self.game)
        self.assertIsInstance(outcome.error, ResolutionRejected)
        self.assertIsNone(outcome.session)
        self.assertEqual(outcome.state, ProfileActive(self.game))
        self.assertEqual(self.color.last, self.game.color_settings)
        self.assertEqual(self.control.current, NATIVE)
        self.assertIsNone(self.guard.pending)

    def test_second_resolution_change_while_pending(self):
        self.engine.apply_resolution(GAME_MODE)
        attempts = len(self.control.attempts)
        outcome = self.engine.apply_resolution(OTHER_MODE)
        self.assertIsInstance(outcome.error, SessionAlreadyOpen)
        self.assertEqual(len(self.control.attempts), attempts)
        self.assertEqual(self.control.current, GAME_MODE)

    def test_revert_failure_reported(self):
        session = self.engine.apply_profile(self.game).session
        self.control.rejected.add(NATIVE)
        outcome = self.engine.expire_resolution(session.session_id)
        self.assertIsInstance(outcome.error, RevertFailed)
        self.assertIsNone(self.guard.pending)
        self.assertEqual(self.engine.state, ProfileActive(self.game))

    def test_stale_deadline_ignored(self):
        first = self.engine.apply_resolution(GAME_MODE).session
        self.engine.confirm_resolution()
        second = self.engine.apply_resolution(OTHER_MODE).session
        outcome = self.engine.expire_resolution(first.session_id)
        self.assertTrue(outcome.ok)
        self.assertIsNone(outcome.session)
        self.assertTrue(second.is_pending)

    def test_late_keep_does_not_confirm_newer_session(self):
        first = self.engine.apply_resolution(GAME_MODE).session
        self.engine.expire_resolution(first.session_id)
        second = self.engine.apply_resolution(OTHER_MODE).session

        with self.assertRaises(SessionNotPending):
            self.engine.confirm_resolution(first.session_id)
        self.assertTrue(second.is_pending)
        self.assertEqual(self.guard.last_known_good, NATIVE)

        outcome = self.engine.confirm_resolution(second.session_id)
        self.assertIs(outcome.session, second)
        self.assertEqual(self.guard.last_known_good, OTHER_MODE)

    def test_late_revert_does_not_touch_newer_session(self):
        first = self.engine.apply_resolution(GAME_MODE).session
        self.engine.expire_resolution(first.session_id)
        second = self.engine.apply_resolution(OTHER_MODE).session

        with self.assertRaises(SessionNotPending):
            self.engine.revert_resolution(first.session_id)
        self.assertTrue(second.is_pending)
        self.assertEqual(self.control.current, OTHER_MODE)

        outcome = self.engine.revert_resolution(second.session_id)
        self.assertEqual(outcome.session.outcome, SessionOutcome.REVERTED)
        self.assertEqual(self.control.current, NATIVE)

    def test_reset_restores_last_known_good(self):
        self.engine.apply_profile(self.game)
        outcome = self.engine.reset()
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertIsNone(self.guard.pending)
        self.assertEqual(self.control.current, NATIVE)

    def test_reset_resolution(self):
        self.engine.apply_resolution(GAME_MODE)
        self.engine.confirm_resolution()
        self.control.current = OTHER_MODE
        outcome = self.engine.reset_resolution()
        self.assertTrue(outcome.ok)
        self.assertEqual(self.control.current, GAME_MODE)

    def test_apply_resolution_keeps_activation(self):
        self.engine.apply_profile(self.browser)
        self.engine.apply_resolution(GAME_MODE)
        self.assertEqual(self.engine.state, ProfileActive(self.browser))

    def test_shutdown_reverts_and_resets(self):
        self.engine.apply_profile(self.game)
        outcome = self.engine.shutdown()
        self.assertEqual(outcome.state, DEFAULT_STATE)
        self.assertEqual(self.control.current, NATIVE)
        self.assertEqual(self.color.last, DEFAULT_COLOR_SETTINGS)
        self.assertIsNone(self.guard.pending)


class TestFailures(EngineTestCase):

    def test_color_failure_still_transitions(self):
        self.color.fail = True
        outcome = self.engine.apply_profile(self.browser)
        self.assertIsInstance(outcome.error, ColorApplyError)
        self.assertEqual(outcome.state, ProfileActive(self.browser))

    def test_color_failure_with_resolution(self):
        self.color.fail = True
        outcome = self.engine.apply_profile(self.game)
        self.assertIsInstance(outcome.error, ColorApplyError)
        self.assertTrue(outcome.session.is_pending)

    def test_most_severe_error_reported(self):
        self.color.fail = True
        self.control.rejected.add(GAME_MODE)
        outcome = self.engine.apply_profile(self.game)
        self.assertEqual(len(outcome.errors), 2)
        self.assertIsInstance(outcome.error, ResolutionRejected)


class TestStatus(EngineTestCase):

    def test_status_snapshot(self):
        self.engine.apply_profile(self.game)
        status = self.engine.status()
        self.assertEqual(status.state, ProfileActive(self.game))
        self.assertEqual(status.live_vibrance, 80)
        self.assertEqual(status.live_hue, 5)
        self.assertTrue(status.gamma_is_default)
        self.assertEqual(status.last_known_good_resolution, NATIVE)
        self.assertEqual(status.live_resolution, GAME_MODE)
        self.assertEqual(status.pending_resolution, GAME_MODE)

    def test_status_gamma_custom(self):
        self.engine.apply_profile(self.browser)
        self.assertFalse(self.engine.status().gamma_is_default)


if __name__ == '__main__':
    unittest.main()
