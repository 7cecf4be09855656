"""
Profile Store - Persist profiles in a YAML file
===============================================

File layout::

    profiles:
      - name: Game
        process: game
        vibrance: 80
        hue: 0
        brightness: 0.5
        contrast: 0.5
        gamma: 1.0
        resolution: {width: 1920, height: 1080, refresh_hz: 144, color_depth: 32}
      - name: Browser
        process: firefox
        ...
        resolution: null

List order is the profile priority.
"""

import logging
from pathlib import Path
from typing import List, Optional

import yaml

from .errors import ConfigError, ProfileError
from .models import Profile

logger = logging.getLogger(__name__)

DEFAULT_PROFILES_PATH = Path.home() / ".config" / "display-toggle" / "profiles.yaml"


class ProfileStore:
    """
    Loads, saves and edits the profile list.

    The in-memory list is kept in file order; every edit is written back
    immediately.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DEFAULT_PROFILES_PATH
        self.profiles: List[Profile] = []

    def load(self) -> List[Profile]:
        """
        Load profiles from the file.

        A missing file is an empty list. Malformed entries and duplicate
        names are skipped with a warning.

        Raises:
            ConfigError: If the file is not valid YAML
        """
        if not self.path.exists():
            logger.warning(f"Profile file not found: {self.path}")
            self.profiles = []
            return []

        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse profile file {self.path}: {e}")

        entries = data.get('profiles') if isinstance(data, dict) else None
        profiles: List[Profile] = []
        for index, entry in enumerate(entries or []):
            try:
                if not isinstance(entry, dict):
                    raise ProfileError(f"expected a mapping, got {type(entry).__name__}")
                profile = Profile.from_dict(entry)
            except (ProfileError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed profile #{index + 1} in {self.path}: {e}")
                continue
            if any(p.name == profile.name for p in profiles):
                logger.warning(f"Skipping duplicate profile name '{profile.name}'")
                continue
            profiles.append(profile)

        self.profiles = profiles
        logger.info(f"Loaded {len(profiles)} profiles from {self.path}")
        return list(profiles)

    def save(self, profiles: Optional[List[Profile]] = None):
        """
        Write *profiles* (or the current list) to the file.

        Raises:
            ConfigError: If the file cannot be written
        """
        if profiles is not None:
            self.profiles = list(profiles)
        data = {'profiles': [p.to_dict() for p in self.profiles]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to save profiles to {self.path}: {e}")
        logger.info(f"Saved {len(self.profiles)} profiles to {self.path}")

    def get(self, name: str) -> Optional[Profile]:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None

    def add(self, profile: Profile):
        """
        Append a profile and save.

        Raises:
            ProfileError: If a profile with the same name exists
        """
        if self.get(profile.name) is not None:
            raise ProfileError(f"A profile named '{profile.name}' already exists")
        self.profiles.append(profile)
        self.save()
        logger.info(f"Added profile {profile}")

    def replace(self, name: str, profile: Profile):
        """
        Replace the profile called *name*, keeping its position.

        Raises:
            ProfileError: If *name* does not exist or the new name is taken
        """
        for index, existing in enumerate(self.profiles):
            if existing.name == name:
                break
        else:
            raise ProfileError(f"No profile named '{name}'")

        if profile.name != name and self.get(profile.name) is not None:
            raise ProfileError(f"A profile named '{profile.name}' already exists")

        self.profiles[index] = profile
        self.save()
        logger.info(f"Updated profile '{name}' -> {profile}")

    def remove(self, name: str) -> Profile:
        """
        Remove a profile and save.

        Raises:
            ProfileError: If *name* does not exist
        """
        profile = self.get(name)
        if profile is None:
            raise ProfileError(f"No profile named '{name}'")
        self.profiles.remove(profile)
        self.save()
        logger.info(f"Removed profile '{name}'")
        return profile
