"""
Display Color Control - Vibrance, hue and gamma ramp of the primary output
==========================================================================

``DisplayColorControl`` combines three independent backends:

- vibrance: NVIDIA ``DigitalVibrance`` through nvidia-settings, or the
  monitor's color saturation over DDC/CI
- hue: the monitor's hue control over DDC/CI
- gamma ramp: the X server's gamma ramp (XF86VidMode) through python-xlib

A backend can be disabled (``None``); reads then return None and writes
are skipped.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .ddc import DDCController, DDCError, check_ddcutil_available
from .errors import BackendError, ColorApplyError
from .models import ColorSettings

logger = logging.getLogger(__name__)

try:
    from Xlib import display as xdisplay
    XLIB_AVAILABLE = True
except ImportError:
    XLIB_AVAILABLE = False
    logger.warning("python-xlib not available, gamma ramp control disabled")

RAMP_MAX = 65535
DEFAULT_RAMP_SIZE = 256

# Neutral ramp parameters; they produce the identity ramp
NEUTRAL_BRIGHTNESS = 0.5
NEUTRAL_CONTRAST = 0.5
NEUTRAL_GAMMA = 1.0


# ── Gamma ramp ───────────────────────────────────────────────────────────

@dataclass
class GammaRamp:
    """16-bit gamma lookup table, one curve per channel."""
    red: np.ndarray
    green: np.ndarray
    blue: np.ndarray

    @property
    def size(self) -> int:
        return len(self.red)

    def equals(self, other: 'GammaRamp') -> bool:
        """Component-wise comparison of all three channels."""
        return (np.array_equal(self.red, other.red) and
                np.array_equal(self.green, other.green) and
                np.array_equal(self.blue, other.blue))

    def is_default(self) -> bool:
        return self.equals(default_gamma_ramp(self.size))

    @classmethod
    def from_lists(cls, red, green, blue) -> 'GammaRamp':
        return cls(
            red=np.asarray(red, dtype=np.uint16),
            green=np.asarray(green, dtype=np.uint16),
            blue=np.asarray(blue, dtype=np.uint16),
        )


def build_gamma_ramp(brightness: float, contrast: float, gamma: float,
                     size: int = DEFAULT_RAMP_SIZE) -> GammaRamp:
    """
    Compute a ramp from brightness/contrast/gamma.

    Brightness 0.5 and contrast 0.5 are neutral; brightness shifts the curve,
    contrast scales it around mid-grey, gamma bends it.

    Args:
        brightness: 0.0-1.0 (0.5 neutral)
        contrast: 0.0-1.0 (0.5 neutral)
        gamma: > 0 (1.0 neutral)
        size: Number of entries per channel
    """
    if gamma <= 0:
        raise ValueError(f"gamma must be positive, got {gamma}")
    x = np.linspace(0.0, 1.0, size)
    curve = np.power(x, 1.0 / gamma)
    curve = (curve - 0.5) * (contrast + 0.5) + 0.5 + (brightness - 0.5)
    channel = np.round(np.clip(curve, 0.0, 1.0) * RAMP_MAX).astype(np.uint16)
    return GammaRamp(red=channel, green=channel.copy(), blue=channel.copy())


def default_gamma_ramp(size: int = DEFAULT_RAMP_SIZE) -> GammaRamp:
    """The canonical (identity) ramp."""
    return build_gamma_ramp(NEUTRAL_BRIGHTNESS, NEUTRAL_CONTRAST, NEUTRAL_GAMMA, size)


class XGammaBackend:
    """Gamma ramp of the default X screen through the XF86VidMode extension."""

    def __init__(self, screen: Optional[int] = None):
        if not XLIB_AVAILABLE:
            raise BackendError("python-xlib not available. Install with: pip install python-xlib")
        self._display = xdisplay.Display()
        if not self._display.has_extension('XFree86-VidModeExtension'):
            raise BackendError("X server does not support XFree86-VidModeExtension")
        self._screen = self._display.get_default_screen() if screen is None else screen

    @property
    def ramp_size(self) -> int:
        return self._display.xf86vidmode_get_gamma_ramp_size(self._screen).size

    def get_ramp(self) -> GammaRamp:
        try:
            reply = self._display.xf86vidmode_get_gamma_ramp(self._screen, self.ramp_size)
            return GammaRamp.from_lists(reply.red, reply.green, reply.blue)
        except Exception as e:
            raise BackendError(f"Failed to read gamma ramp: {e}")

    def set_ramp(self, ramp: GammaRamp):
        try:
            self._display.xf86vidmode_set_gamma_ramp(
                self._screen, ramp.size,
                ramp.red.tolist(), ramp.green.tolist(), ramp.blue.tolist(),
            )
            self._display.sync()
        except Exception as e:
            raise BackendError(f"Failed to set gamma ramp: {e}")


# ── Vibrance and hue ─────────────────────────────────────────────────────

class NvidiaVibranceBackend:
    """
    Digital vibrance through ``nvidia-settings``.

    nvidia-settings uses -1024..1023 with 0 as the neutral level; vibrance
    percent 50 maps to 0.
    """

    RAW_MIN = -1024
    RAW_MAX = 1023

    def __init__(self, target: Optional[str] = None, timeout: float = 5.0):
        """
        Args:
            target: nvidia-settings target such as "DPY:DP-0" (None for all displays)
            timeout: Command timeout in seconds
        """
        self.target = target
        self.timeout = timeout

    def _attribute(self) -> str:
        return f"[{self.target}]/DigitalVibrance" if self.target else "DigitalVibrance"

    def _run(self, args: List[str]) -> str:
        command = ["nvidia-settings"] + args
        logger.debug(f"Running: {' '.join(command)}")
        try:
            result = subprocess.run(command, capture_output=True, text=True,
                                    timeout=self.timeout, check=True)
            return result.stdout
        except FileNotFoundError:
            raise BackendError("nvidia-settings not found")
        except subprocess.CalledProcessError as e:
            raise BackendError(f"nvidia-settings failed: {e.stderr.strip() if e.stderr else e}")
        except subprocess.TimeoutExpired:
            raise BackendError("nvidia-settings timed out")

    @classmethod
    def to_raw(cls, percent: int) -> int:
        raw = round((percent - 50) * 1024 / 50)
        return max(cls.RAW_MIN, min(cls.RAW_MAX, raw))

    @classmethod
    def to_percent(cls, raw: int) -> int:
        return max(0, min(100, round(raw * 50 / 1024 + 50)))

    def get(self) -> int:
        output = self._run(["-t", "-q", self._attribute()])
        for line in output.splitlines():
            line = line.strip()
            if line.lstrip('-').isdigit():
                return self.to_percent(int(line))
        raise BackendError(f"Unexpected nvidia-settings output: {output.strip()}")

    def set(self, percent: int):
        self._run(["-a", f"{self._attribute()}={self.to_raw(percent)}"])


class DDCVibranceBackend:
    """Vibrance mapped onto the monitor's color saturation (VCP 0x8A)."""

    def __init__(self, ddc: DDCController):
        self.ddc = ddc

    def get(self) -> int:
        try:
            return self.ddc.get_saturation()
        except DDCError as e:
            raise BackendError(str(e))

    def set(self, percent: int):
        try:
            self.ddc.set_saturation(percent)
        except DDCError as e:
            raise BackendError(str(e))


class DDCHueBackend:
    """Hue through the monitor's hue control (VCP 0x90)."""

    def __init__(self, ddc: DDCController):
        self.ddc = ddc

    def get(self) -> int:
        try:
            return self.ddc.get_hue()
        except DDCError as e:
            raise BackendError(str(e))

    def set(self, degrees: int):
        try:
            self.ddc.set_hue(degrees)
        except DDCError as e:
            raise BackendError(str(e))


# ── Combined control ─────────────────────────────────────────────────────

class DisplayColorControl:
    """
    Read and write the color state of the primary output.

    Failures of the individual backends are reported as ``ColorApplyError``.
    """

    def __init__(self, vibrance=None, hue=None, gamma: Optional[XGammaBackend] = None):
        self.vibrance_backend = vibrance
        self.hue_backend = hue
        self.gamma_backend = gamma

    @classmethod
    def from_settings(cls, backend) -> 'DisplayColorControl':
        """
        Build the control from ``BackendSettings``.

        Backends that cannot be initialized are disabled with a warning.
        """
        ddc = None
        vibrance_mode, hue_mode = backend.vibrance_mode, backend.hue_mode
        if vibrance_mode == 'ddc' or hue_mode == 'ddc':
            available, message = check_ddcutil_available()
            if available:
                logger.debug(message)
            else:
                logger.warning(f"{message}; DDC color control disabled")
                vibrance_mode = 'none' if vibrance_mode == 'ddc' else vibrance_mode
                hue_mode = 'none' if hue_mode == 'ddc' else hue_mode
        if vibrance_mode == 'ddc' or hue_mode == 'ddc':
            ddc = DDCController(
                display=backend.ddc_display,
                retry_count=backend.ddc_retry_count,
                sleep_multiplier=backend.ddc_sleep_multiplier,
            )

        vibrance = None
        if vibrance_mode == 'nvidia':
            vibrance = NvidiaVibranceBackend(target=backend.nvidia_target)
        elif vibrance_mode == 'ddc':
            vibrance = DDCVibranceBackend(ddc)

        hue = DDCHueBackend(ddc) if hue_mode == 'ddc' else None

        gamma = None
        if backend.gamma_enabled:
            try:
                gamma = XGammaBackend()
            except BackendError as e:
                logger.warning(f"Gamma ramp control disabled: {e}")
            except Exception as e:
                logger.warning(f"Gamma ramp control disabled, cannot open X display: {e}")

        logger.info(f"Color backends: vibrance={vibrance_mode}, hue={hue_mode}, "
                    f"gamma={'xf86vidmode' if gamma else 'off'}")
        return cls(vibrance=vibrance, hue=hue, gamma=gamma)

    def get_vibrance(self) -> Optional[int]:
        if self.vibrance_backend is None:
            return None
        return self.vibrance_backend.get()

    def set_vibrance(self, value: int):
        if self.vibrance_backend is None:
            logger.debug("No vibrance backend, skipping vibrance")
            return
        try:
            self.vibrance_backend.set(value)
        except BackendError as e:
            raise ColorApplyError(f"vibrance: {e}")

    def get_hue(self) -> Optional[int]:
        if self.hue_backend is None:
            return None
        return self.hue_backend.get()

    def set_hue(self, degrees: int):
        if self.hue_backend is None:
            logger.debug("No hue backend, skipping hue")
            return
        try:
            self.hue_backend.set(degrees)
        except BackendError as e:
            raise ColorApplyError(f"hue: {e}")

    def get_gamma_ramp(self) -> Optional[GammaRamp]:
        if self.gamma_backend is None:
            return None
        return self.gamma_backend.get_ramp()

    def set_gamma_ramp(self, brightness: float, contrast: float, gamma: float):
        if self.gamma_backend is None:
            logger.debug("No gamma backend, skipping gamma ramp")
            return
        try:
            ramp = build_gamma_ramp(brightness, contrast, gamma, self.gamma_backend.ramp_size)
            self.gamma_backend.set_ramp(ramp)
        except (BackendError, ValueError) as e:
            raise ColorApplyError(f"gamma ramp: {e}")

    def gamma_is_default(self) -> Optional[bool]:
        ramp = self.get_gamma_ramp()
        return None if ramp is None else ramp.is_default()

    def apply(self, settings: ColorSettings):
        """
        Apply all color settings.

        Every part is attempted even if an earlier one fails.

        Raises:
            ColorApplyError: If any part failed
        """
        failures = []
        for apply_part in (
            lambda: self.set_vibrance(settings.vibrance),
            lambda: self.set_hue(settings.hue),
            lambda: self.set_gamma_ramp(settings.brightness, settings.contrast, settings.gamma),
        ):
            try:
                apply_part()
            except ColorApplyError as e:
                failures.append(str(e))

        if failures:
            logger.warning(f"Color settings partially applied: {'; '.join(failures)}")
            raise ColorApplyError("; ".join(failures))
        logger.debug(f"Applied color settings {settings}")
