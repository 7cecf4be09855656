"""
Resolution Control - Enumerate and switch display modes via xrandr
==================================================================
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import BackendError
from .models import ResolutionSpec

logger = logging.getLogger(__name__)

try:
    from Xlib import display as xdisplay
    XLIB_AVAILABLE = True
except ImportError:
    XLIB_AVAILABLE = False

# X11 treats 24 and 32 bpp as the same true-color visual
TRUE_COLOR_DEPTHS = {24, 32}


class AttemptResult(Enum):
    """Result of trying to commit a display mode."""
    OK = "ok"
    FAILED = "failed"
    RESTART_REQUIRED = "restart required"


def depths_compatible(a: int, b: int) -> bool:
    return a == b or (a in TRUE_COLOR_DEPTHS and b in TRUE_COLOR_DEPTHS)


def same_mode(a: ResolutionSpec, b: ResolutionSpec) -> bool:
    """Compare two modes, treating equivalent true-color depths as equal."""
    return (a.width == b.width and a.height == b.height and
            a.refresh_hz == b.refresh_hz and depths_compatible(a.color_depth, b.color_depth))


class ResolutionControl:
    """
    Interface to the display's resolution.

    Backends implement ``enumerate_modes``, ``current_mode`` and ``attempt``.
    """

    def enumerate_modes(self) -> List[ResolutionSpec]:
        """Supported modes of the primary output, without duplicates."""
        raise NotImplementedError

    def current_mode(self) -> ResolutionSpec:
        """
        Mode the primary output is running.

        Raises:
            BackendError: If the mode cannot be determined
        """
        raise NotImplementedError

    def attempt(self, mode: ResolutionSpec) -> AttemptResult:
        """Test *mode* and, if supported, commit it."""
        raise NotImplementedError


@dataclass
class XrandrOutput:
    """A connected output from ``xrandr --query``."""
    name: str
    is_primary: bool
    current: Optional[ResolutionSpec] = None
    modes: List[ResolutionSpec] = field(default_factory=list)


# "DP-0 connected primary 1920x1080+0+0 (normal left ..." (geometry absent when off)
_OUTPUT_RE = re.compile(r'^(\S+)\s+connected\s*(primary)?\s*(?:(\d+)x(\d+)\+\d+\+\d+)?')
# "   1920x1080     60.00 +  144.00*   119.98"
_MODE_RE = re.compile(r'^\s+(\d+)x(\d+)i?\s+(.*)$')
_RATE_RE = re.compile(r'(\d+(?:\.\d+)?)(\*?)(\+?)')


def parse_xrandr_query(text: str, depth: int = 24) -> List[XrandrOutput]:
    """
    Parse ``xrandr --query`` output into connected outputs and their modes.

    Args:
        text: stdout of ``xrandr --query``
        depth: Color depth to report for every mode (xrandr does not list it)

    Returns:
        Connected outputs in xrandr order
    """
    outputs: List[XrandrOutput] = []
    current: Optional[XrandrOutput] = None

    for line in text.split('\n'):
        match = _OUTPUT_RE.match(line)
        if match:
            current = XrandrOutput(name=match.group(1), is_primary=bool(match.group(2)))
            outputs.append(current)
            continue

        if not line.startswith(' '):
            # Disconnected output, "Screen 0:" header or blank line
            current = None
            continue

        if current is None:
            continue

        mode_match = _MODE_RE.match(line)
        if not mode_match:
            continue

        width = int(mode_match.group(1))
        height = int(mode_match.group(2))
        for rate_text, active, _preferred in _RATE_RE.findall(mode_match.group(3)):
            mode = ResolutionSpec(width, height, max(1, int(round(float(rate_text)))), depth)
            if mode not in current.modes:
                current.modes.append(mode)
            if active:
                current.current = mode

    for output in outputs:
        logger.debug(f"xrandr output {output.name}: {len(output.modes)} modes, current={output.current}")
    return outputs


class XrandrResolutionControl(ResolutionControl):
    """
    Resolution control for X11 using the xrandr command-line tool.

    ``attempt`` first checks the mode against the output's mode list (the
    test pass) and only then asks xrandr to switch.
    """

    def __init__(self, output: Optional[str] = None, timeout: float = 10.0):
        """
        Initialize xrandr resolution control.

        Args:
            output: xrandr output name (e.g. "DP-0"), or None for the primary output
            timeout: Timeout for xrandr calls in seconds
        """
        self.output_name = output
        self.timeout = timeout
        self._depth: Optional[int] = None

    def _run_xrandr(self, args: List[str]) -> subprocess.CompletedProcess:
        command = ["xrandr"] + args
        logger.debug(f"Running: {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr_msg = e.stderr.strip() if e.stderr else "(no stderr)"
            raise BackendError(f"xrandr {' '.join(args)} failed: {stderr_msg}")
        except subprocess.TimeoutExpired:
            raise BackendError(f"xrandr {' '.join(args)} timed out after {self.timeout}s")
        except FileNotFoundError:
            raise BackendError("xrandr not found. Install with: sudo apt install x11-xserver-utils")

    def get_depth(self) -> int:
        """Color depth of the X root window (24 if it cannot be read)."""
        if self._depth is None:
            self._depth = 24
            if XLIB_AVAILABLE:
                try:
                    d = xdisplay.Display()
                    self._depth = d.screen().root_depth
                    d.close()
                except Exception as e:
                    logger.debug(f"Could not read X root depth: {e}")
        return self._depth

    def _get_output(self) -> XrandrOutput:
        result = self._run_xrandr(["--query"])
        outputs = parse_xrandr_query(result.stdout, self.get_depth())
        if not outputs:
            raise BackendError("xrandr reports no connected outputs")

        if self.output_name:
            for output in outputs:
                if output.name == self.output_name:
                    return output
            raise BackendError(f"xrandr output '{self.output_name}' is not connected")

        for output in outputs:
            if output.is_primary:
                return output
        return outputs[0]

    def enumerate_modes(self) -> List[ResolutionSpec]:
        try:
            return list(self._get_output().modes)
        except BackendError as e:
            logger.error(f"Failed to enumerate display modes: {e}")
            return []

    def current_mode(self) -> ResolutionSpec:
        output = self._get_output()
        if output.current is None:
            raise BackendError(f"Output {output.name} has no active mode")
        return output.current

    def attempt(self, mode: ResolutionSpec) -> AttemptResult:
        try:
            output = self._get_output()
        except BackendError as e:
            logger.error(f"Cannot change resolution: {e}")
            return AttemptResult.FAILED

        supported = [m for m in output.modes
                     if (m.width, m.height, m.refresh_hz) == (mode.width, mode.height, mode.refresh_hz)]
        if not supported:
            logger.warning(f"Mode {mode} is not supported by {output.name}")
            return AttemptResult.FAILED
        if not depths_compatible(supported[0].color_depth, mode.color_depth):
            logger.warning(f"Mode {mode} needs a color depth change ({supported[0].color_depth} bpp running)")
            return AttemptResult.RESTART_REQUIRED

        try:
            self._run_xrandr([
                "--output", output.name,
                "--mode", f"{mode.width}x{mode.height}",
                "--rate", str(mode.refresh_hz),
            ])
        except BackendError as e:
            logger.error(f"Failed to set {mode} on {output.name}: {e}")
            return AttemptResult.FAILED

        logger.info(f"Set {output.name} to {mode}")
        return AttemptResult.OK
