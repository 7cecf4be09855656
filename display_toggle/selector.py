"""
Profile Selector - Pick the profile for the running processes
=============================================================

Profiles are matched in stored order and the first match wins: list order
is the only tie-break, so reordering the profile list is how users give one
profile priority over another.
"""

import logging
from typing import Iterable, Optional, Sequence

from .models import Profile, normalize_process_name

logger = logging.getLogger(__name__)


def select_profile(running_process_names: Iterable[str],
                   profiles: Sequence[Profile]) -> Optional[Profile]:
    """
    Return the first profile whose process is running.

    Args:
        running_process_names: Image names of running processes, any case,
            with or without path or extension
        profiles: Profiles in stored (priority) order

    Returns:
        The first matching profile, or None if nothing matches
    """
    if not profiles:
        return None

    running = {normalize_process_name(name) for name in running_process_names if name}
    if not running:
        return None

    for profile in profiles:
        if profile.match_key in running:
            logger.debug(f"Process '{profile.process_match}' matched profile '{profile.name}'")
            return profile

    return None
