#!/usr/bin/env python3
"""
Tests for xrandr output parsing and mode switching.
"""

import subprocess
import sys
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from display_toggle.errors import BackendError
from display_toggle.models import ResolutionSpec
from display_toggle.resolution_control import (
    AttemptResult, XrandrResolutionControl, parse_xrandr_query, same_mode,
)

XRANDR_QUERY = """\
Screen 0: minimum 8 x 8, current 4480 x 1440, maximum 32767 x 32767
HDMI-0 connected 1920x1080+2560+0 (normal left inverted right x axis y axis) 527mm x 296mm
   1920x1080     60.00*+  50.00    59.94
   1280x720      60.00    59.94
DP-0 connected primary 2560x1440+0+0 (normal left inverted right x axis y axis) 597mm x 336mm
   2560x1440     59.95*+ 143.97
   1920x1080    144.00   119.98    60.00
   1280x720      60.00
DP-1 disconnected (normal left inverted right x axis y axis)
   1024x768      60.00
"""


class TestParseXrandr(unittest.TestCase):

    def test_connected_outputs(self):
        outputs = parse_xrandr_query(XRANDR_QUERY)
        self.assertEqual([o.name for o in outputs], ["HDMI-0", "DP-0"])
        self.assertFalse(outputs[0].is_primary)
        self.assertTrue(outputs[1].is_primary)

    def test_modes_and_current(self):
        dp = parse_xrandr_query(XRANDR_QUERY, depth=24)[1]
        self.assertEqual(dp.current, ResolutionSpec(2560, 1440, 60, 24))
        self.assertIn(ResolutionSpec(2560, 1440, 144, 24), dp.modes)
        self.assertIn(ResolutionSpec(1920, 1080, 120, 24), dp.modes)
        self.assertEqual(len(dp.modes), 6)

    def test_rates_rounded_without_duplicates(self):
        hdmi = parse_xrandr_query(XRANDR_QUERY)[0]
        # 60.00 and 59.94 both round to 60
        self.assertEqual(hdmi.modes.count(ResolutionSpec(1920, 1080, 60, 24)), 1)

    def test_disconnected_modes_ignored(self):
        for output in parse_xrandr_query(XRANDR_QUERY):
            self.assertNotIn(ResolutionSpec(1024, 768, 60, 24), output.modes)

    def test_same_mode_true_color(self):
        self.assertTrue(same_mode(ResolutionSpec(1920, 1080, 60, 24), ResolutionSpec(1920, 1080, 60, 32)))
        self.assertFalse(same_mode(ResolutionSpec(1920, 1080, 60, 16), ResolutionSpec(1920, 1080, 60, 32)))
        self.assertFalse(same_mode(ResolutionSpec(1920, 1080, 60), ResolutionSpec(1920, 1080, 144)))


class TestXrandrResolutionControl(unittest.TestCase):

    def setUp(self):
        self.control = XrandrResolutionControl()
        self.control._depth = 24
        self.calls = []

        def fake_run(args):
            self.calls.append(args)
            return Mock(stdout=XRANDR_QUERY)

        self.patcher = patch.object(self.control, '_run_xrandr', side_effect=fake_run)
        self.patcher.start()

    def tearDown(self):
        self.patcher.stop()

    def test_primary_output_used(self):
        self.assertEqual(self.control.current_mode(), ResolutionSpec(2560, 1440, 60, 24))
        self.assertEqual(len(self.control.enumerate_modes()), 6)

    def test_named_output(self):
        self.control.output_name = "HDMI-0"
        self.assertEqual(self.control.current_mode(), ResolutionSpec(1920, 1080, 60, 24))

    def test_missing_output(self):
        self.control.output_name = "DP-5"
        with self.assertRaises(BackendError):
            self.control.current_mode()
        self.assertEqual(self.control.enumerate_modes(), [])

    def test_attempt_ok(self):
        result = self.control.attempt(ResolutionSpec(1920, 1080, 144, 32))
        self.assertEqual(result, AttemptResult.OK)
        self.assertEqual(self.calls[-1], ["--output", "DP-0", "--mode", "1920x1080", "--rate", "144"])

    def test_attempt_unsupported_mode(self):
        self.assertEqual(self.control.attempt(ResolutionSpec(3840, 2160, 60)), AttemptResult.FAILED)
        self.assertEqual(self.calls, [["--query"]])

    def test_attempt_depth_change(self):
        result = self.control.attempt(ResolutionSpec(1920, 1080, 144, 16))
        self.assertEqual(result, AttemptResult.RESTART_REQUIRED)
        self.assertEqual(self.calls, [["--query"]])

    def test_attempt_switch_failure(self):
        def fail_on_switch(args):
            if args[0] != "--query":
                raise BackendError("xrandr --output failed: Configure crtc 0 failed")
            return Mock(stdout=XRANDR_QUERY)

        self.control._run_xrandr.side_effect = fail_on_switch
        self.assertEqual(self.control.attempt(ResolutionSpec(1920, 1080, 144)), AttemptResult.FAILED)


class TestRunXrandr(unittest.TestCase):

    @patch('display_toggle.resolution_control.subprocess.run', side_effect=FileNotFoundError)
    def test_missing_xrandr(self, mock_run):
        with self.assertRaises(BackendError):
            XrandrResolutionControl()._run_xrandr(["--query"])

    @patch('display_toggle.resolution_control.subprocess.run')
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("xrandr", 10)
        with self.assertRaises(BackendError):
            XrandrResolutionControl()._run_xrandr(["--query"])


if __name__ == '__main__':
    unittest.main()
