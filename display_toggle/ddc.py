"""
DDC/CI Controller - Interface to ddcutil for monitor communication
==================================================================

Used for the color features the monitor itself implements: color
saturation (vibrance) and hue.
"""

import logging
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class VCPFeature:
    """VCP feature information."""
    code: int
    name: str
    current_value: int
    max_value: int


class DDCError(Exception):
    """Exception raised for DDC communication errors."""
    pass


class DDCController:
    """
    Controller for DDC/CI communication with a monitor via ddcutil.
    """

    VCP_SATURATION = 0x8A
    VCP_HUE = 0x90

    VCP_NAMES = {
        0x8A: "Color Saturation",
        0x90: "Hue",
    }

    def __init__(
        self,
        display: Optional[int] = None,
        retry_count: int = 2,
        sleep_multiplier: float = 0.5,
    ):
        """
        Initialize DDC controller.

        Args:
            display: Display number (1-based) to control, or None for ddcutil's default
            retry_count: Number of attempts for failed commands
            sleep_multiplier: Multiplier for ddcutil's inter-command delays
        """
        self.display = display
        self.retry_count = max(1, retry_count)
        self.sleep_multiplier = sleep_multiplier
        self._lock = threading.Lock()
        self._last_command_time = 0.0
        self._min_command_interval = 0.1 * sleep_multiplier
        # Max values reported by the monitor, so writes can be scaled
        self._max_values: Dict[int, int] = {}

    def _build_display_args(self) -> List[str]:
        args = ["--sleep-multiplier", f"{self.sleep_multiplier:.1f}"]
        if self.display is not None:
            args.extend(["--display", str(self.display)])
        return args

    def _run_ddcutil(self, command: List[str], timeout: float = 5.0) -> subprocess.CompletedProcess:
        """
        Run a ddcutil command with retry logic.

        Raises:
            DDCError: If command fails after retries
        """
        with self._lock:
            elapsed = time.time() - self._last_command_time
            if elapsed < self._min_command_interval:
                time.sleep(self._min_command_interval - elapsed)

            full_command = ["ddcutil"] + self._build_display_args() + command
            logger.debug(f"DDC[{self.display}] Running: {' '.join(full_command)}")

            last_error = None
            for attempt in range(self.retry_count):
                try:
                    result = subprocess.run(
                        full_command,
                        capture_output=True,
                        text=True,
                        timeout=timeout,
                        check=True,
                    )
                    self._last_command_time = time.time()
                    return result
                except FileNotFoundError:
                    raise DDCError("ddcutil not found. Install with: sudo apt install ddcutil")
                except subprocess.CalledProcessError as e:
                    last_error = e
                    stderr_msg = e.stderr.strip() if e.stderr else "(no stderr)"
                    logger.warning(
                        f"DDC[{self.display}] Command failed (attempt {attempt + 1}/{self.retry_count}): "
                        f"{' '.join(command)} → {stderr_msg}"
                    )
                    if attempt < self.retry_count - 1:
                        time.sleep(0.3 * (attempt + 1))
                except subprocess.TimeoutExpired as e:
                    last_error = e
                    logger.warning(
                        f"DDC[{self.display}] Command timed out (attempt {attempt + 1}/{self.retry_count}): "
                        f"{' '.join(command)}"
                    )

        raise DDCError(f"DDC command '{' '.join(command)}' failed after {self.retry_count} attempts: {last_error}")

    def get_vcp(self, feature_code: int) -> VCPFeature:
        """
        Get current value of a continuous VCP feature.

        Raises:
            DDCError: If feature is unsupported or read fails
        """
        result = self._run_ddcutil(["getvcp", f"0x{feature_code:02x}"])

        # "VCP code 0x8a (Color Saturation): current value = 50, max value = 100"
        match = re.search(
            r'VCP code 0x([0-9A-Fa-f]+)\s+\(([^)]+)\).*?'
            r'current value\s*=\s*(\d+).*?max value\s*=\s*(\d+)',
            result.stdout,
            re.IGNORECASE
        )
        if not match:
            raise DDCError(f"Failed to parse VCP response: {result.stdout.strip()}")

        feature = VCPFeature(
            code=int(match.group(1), 16),
            name=match.group(2),
            current_value=int(match.group(3)),
            max_value=int(match.group(4)),
        )
        self._max_values[feature_code] = feature.max_value or 100
        return feature

    def set_vcp(self, feature_code: int, value: int):
        """
        Set a VCP feature value.

        Raises:
            DDCError: If the write fails
        """
        feature_name = self.VCP_NAMES.get(feature_code, f"VCP 0x{feature_code:02x}")
        self._run_ddcutil(["setvcp", f"0x{feature_code:02x}", str(value)])
        logger.info(f"Set {feature_name} to {value}")

    def get_max_value(self, feature_code: int) -> int:
        """Max value of a feature (read once from the monitor)."""
        if feature_code not in self._max_values:
            self.get_vcp(feature_code)
        return self._max_values[feature_code]

    # Percent/degree scaled accessors

    def get_saturation(self) -> int:
        """Color saturation scaled to 0-100."""
        feature = self.get_vcp(self.VCP_SATURATION)
        return round(feature.current_value * 100 / (feature.max_value or 100))

    def set_saturation(self, percent: int):
        percent = max(0, min(100, percent))
        max_value = self.get_max_value(self.VCP_SATURATION)
        self.set_vcp(self.VCP_SATURATION, round(percent * max_value / 100))

    def get_hue(self) -> int:
        """Hue in degrees (-180 to 179); the monitor's midpoint is 0°."""
        feature = self.get_vcp(self.VCP_HUE)
        degrees = round(feature.current_value * 360 / (feature.max_value or 100)) - 180
        return ((degrees + 180) % 360) - 180

    def set_hue(self, degrees: int):
        max_value = self.get_max_value(self.VCP_HUE)
        degrees = ((degrees + 180) % 360) - 180
        self.set_vcp(self.VCP_HUE, round((degrees + 180) * max_value / 360))


def check_ddcutil_available() -> Tuple[bool, str]:
    """
    Check if ddcutil is installed and working.

    Returns:
        Tuple of (is_available, message)
    """
    try:
        result = subprocess.run(
            ["ddcutil", "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            version = result.stdout.split('\n')[0] if result.stdout else "unknown"
            return True, f"ddcutil found: {version}"
        return False, f"ddcutil error: {result.stderr}"
    except FileNotFoundError:
        return False, "ddcutil not found. Install with: sudo apt install ddcutil"
    except subprocess.TimeoutExpired:
        return False, "ddcutil timed out"
