"""
Data Model - Profiles, color settings and activation state
==========================================================
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .errors import ProfileError


@dataclass(frozen=True)
class ResolutionSpec:
    """A display mode: size, refresh rate and color depth."""
    width: int
    height: int
    refresh_hz: int
    color_depth: int = 32

    def __post_init__(self):
        for name in ('width', 'height', 'refresh_hz', 'color_depth'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ProfileError(f"Resolution {name} must be a positive integer, got {value!r}")

    def __str__(self):
        return f"{self.width}x{self.height}@{self.refresh_hz} Hz, {self.color_depth} bpp"

    def to_dict(self) -> Dict[str, int]:
        return {
            'width': self.width,
            'height': self.height,
            'refresh_hz': self.refresh_hz,
            'color_depth': self.color_depth,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResolutionSpec':
        return cls(
            width=data['width'],
            height=data['height'],
            refresh_hz=data['refresh_hz'],
            color_depth=data.get('color_depth', 32),
        )

    @classmethod
    def parse(cls, text: str) -> 'ResolutionSpec':
        """
        Parse a mode string like ``1920x1080@144`` or ``1920x1080@144:32``.

        Raises:
            ProfileError: If the string is not a valid mode
        """
        try:
            size, _, rest = text.strip().partition('@')
            width, _, height = size.lower().partition('x')
            rate, _, depth = rest.partition(':')
            return cls(
                width=int(width),
                height=int(height),
                refresh_hz=int(rate),
                color_depth=int(depth) if depth else 32,
            )
        except ValueError as e:
            raise ProfileError(f"Invalid resolution '{text}' (expected WxH@R[:D]): {e}")


@dataclass(frozen=True)
class ColorSettings:
    """Color state applied to the primary output."""
    vibrance: int = 50
    hue: int = 0
    brightness: float = 0.5
    contrast: float = 0.5
    gamma: float = 1.0

    def __post_init__(self):
        if not 0 <= self.vibrance <= 100:
            raise ProfileError(f"Vibrance must be within 0-100, got {self.vibrance}")
        if self.gamma <= 0:
            raise ProfileError(f"Gamma must be positive, got {self.gamma}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vibrance': self.vibrance,
            'hue': self.hue,
            'brightness': self.brightness,
            'contrast': self.contrast,
            'gamma': self.gamma,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: Optional['ColorSettings'] = None) -> 'ColorSettings':
        """Build settings from a mapping, filling missing keys from *defaults*."""
        base = defaults or cls()
        return cls(
            vibrance=int(data.get('vibrance', base.vibrance)),
            hue=int(data.get('hue', base.hue)),
            brightness=float(data.get('brightness', base.brightness)),
            contrast=float(data.get('contrast', base.contrast)),
            gamma=float(data.get('gamma', base.gamma)),
        )


DEFAULT_COLOR_SETTINGS = ColorSettings()


# Image-name suffixes that are not part of the program's name
EXECUTABLE_EXTENSIONS = ('.exe', '.bat', '.cmd', '.com', '.appimage')


def normalize_process_name(name: str) -> str:
    """Reduce a process or image name to its lower-case base name without executable extension."""
    base = os.path.basename(name.strip().replace('\\', '/')).lower()
    stem, ext = os.path.splitext(base)
    # "python3.11" and "org.gnome.Shell" keep their dotted parts
    return stem if stem and ext in EXECUTABLE_EXTENSIONS else base


@dataclass(frozen=True)
class Profile:
    """
    Named bundle of color settings and an optional resolution, keyed to a process.

    Profiles are immutable; editing a profile means replacing it in the store.
    """
    name: str
    process_match: str
    vibrance: int = 50
    hue: int = 0
    brightness: float = 0.5
    contrast: float = 0.5
    gamma: float = 1.0
    resolution: Optional[ResolutionSpec] = None

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ProfileError("Profile name must not be empty")
        if not self.process_match or not self.process_match.strip():
            raise ProfileError(f"Profile '{self.name}' has no process to match")
        # Validates the color ranges
        self.color_settings

    @property
    def match_key(self) -> str:
        """Normalized form of ``process_match``, compared against running processes."""
        return normalize_process_name(self.process_match)

    @property
    def color_settings(self) -> ColorSettings:
        return ColorSettings(
            vibrance=self.vibrance,
            hue=self.hue,
            brightness=self.brightness,
            contrast=self.contrast,
            gamma=self.gamma,
        )

    def matches(self, process_name: str) -> bool:
        """Check if a running process name matches this profile (case-insensitive)."""
        return normalize_process_name(process_name) == self.match_key

    def with_changes(self, **changes) -> 'Profile':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'process': self.process_match,
            'vibrance': self.vibrance,
            'hue': self.hue,
            'brightness': self.brightness,
            'contrast': self.contrast,
            'gamma': self.gamma,
            'resolution': self.resolution.to_dict() if self.resolution else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        """Create a Profile from its stored mapping."""
        resolution = data.get('resolution')
        return cls(
            name=str(data.get('name', '')),
            process_match=str(data.get('process', '')),
            vibrance=int(data.get('vibrance', 50)),
            hue=int(data.get('hue', 0)),
            brightness=float(data.get('brightness', 0.5)),
            contrast=float(data.get('contrast', 0.5)),
            gamma=float(data.get('gamma', 1.0)),
            resolution=ResolutionSpec.from_dict(resolution) if resolution else None,
        )

    def __str__(self):
        res = str(self.resolution) if self.resolution else "Unchanged"
        return f"{self.name} ({self.process_match}) - Res: {res}"


# ── Activation state ─────────────────────────────────────────────────────

class ActivationState:
    """Base for the three activation states. Exactly one holds at a time."""
    kind = "abstract"
    profile: Optional[Profile] = None

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class Default(ActivationState):
    """Default color settings; no profile or manual override."""
    kind = "default"

    def describe(self) -> str:
        return "Default"


@dataclass(frozen=True)
class Manual(ActivationState):
    """Color settings applied explicitly by the user."""
    settings: ColorSettings = field(default_factory=ColorSettings)
    kind = "manual"

    def describe(self) -> str:
        return f"Manual (vibrance {self.settings.vibrance}, hue {self.settings.hue})"


@dataclass(frozen=True)
class ProfileActive(ActivationState):
    """A profile's color settings are enforced."""
    profile: Profile
    kind = "profile"

    def describe(self) -> str:
        return f"Profile '{self.profile.name}'"


DEFAULT_STATE = Default()


@dataclass
class Status:
    """Read-only snapshot of the engine for presentation."""
    state: ActivationState
    live_vibrance: Optional[int]
    live_hue: Optional[int]
    gamma_is_default: Optional[bool]
    last_known_good_resolution: Optional[ResolutionSpec]
    live_resolution: Optional[ResolutionSpec] = None
    pending_resolution: Optional[ResolutionSpec] = None
    auto_switch_enabled: bool = False
    observed_profile: Optional[Profile] = None

    def format(self, defaults: ColorSettings = DEFAULT_COLOR_SETTINGS) -> str:
        """Multi-line status text for the terminal."""
        def _or_unknown(value):
            return "unknown" if value is None else value

        if self.gamma_is_default is None:
            gamma_state = "unknown"
        else:
            gamma_state = "Default" if self.gamma_is_default else "Custom"
        lines = [
            f"Digital Vibrance: {_or_unknown(self.live_vibrance)} (Default: {defaults.vibrance})",
            f"Hue Angle: {_or_unknown(self.live_hue)}° (Default: {defaults.hue}°)",
            f"Gamma: {gamma_state}",
            f"Active: {self.state.describe()}",
            f"Auto Profile Switching: {'Enabled' if self.auto_switch_enabled else 'Disabled'}",
            f"Default Resolution: {self.last_known_good_resolution or 'unknown'}",
        ]
        if self.live_resolution and self.live_resolution != self.last_known_good_resolution:
            lines.append(f"Live Resolution: {self.live_resolution}")
        if self.pending_resolution:
            lines.append(f"Pending Resolution: {self.pending_resolution} (awaiting confirmation)")
        if self.observed_profile and self.observed_profile != self.state.profile:
            lines.append(f"Running Profile Process: {self.observed_profile.name}")
        return "\n".join(lines)
