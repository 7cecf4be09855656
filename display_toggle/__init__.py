"""
Display Toggle - Per-application display profiles for Linux
===========================================================

Applies color settings and resolution per running application:
- Profile activation state machine (Default, Manual, ProfileActive)
- Guarded resolution changes that revert unless confirmed
- Serialized control agent fed by a process poller
"""

__version__ = "1.0.0"
__author__ = "Display Toggle"

from .agent import ControlAgent
from .config import Config
from .engine import ActivationEngine, Outcome
from .profile_store import ProfileStore
from .selector import select_profile

__all__ = [
    "ControlAgent",
    "Config",
    "ActivationEngine",
    "Outcome",
    "ProfileStore",
    "select_profile",
]
