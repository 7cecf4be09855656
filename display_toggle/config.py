"""
Configuration Management
========================
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ProfileError
from .models import ColorSettings, DEFAULT_COLOR_SETTINGS
from .profile_store import DEFAULT_PROFILES_PATH

logger = logging.getLogger(__name__)

VIBRANCE_MODES = ('nvidia', 'ddc', 'none')
HUE_MODES = ('ddc', 'none')


@dataclass
class AgentSettings:
    """Behaviour of the control agent."""
    auto_switch_enabled: bool = False
    auto_confirm_resolution: bool = False
    poll_interval_seconds: float = 5.0
    confirm_timeout_seconds: float = 15.0


@dataclass
class BackendSettings:
    """Which tools drive the display."""
    vibrance_mode: str = "nvidia"
    hue_mode: str = "none"
    gamma_enabled: bool = True
    ddc_display: Optional[int] = None
    ddc_retry_count: int = 2
    ddc_sleep_multiplier: float = 0.5
    output: Optional[str] = None
    nvidia_target: Optional[str] = None


class Config:
    """
    Configuration manager for display-toggle.

    Handles loading, saving, and accessing configuration settings.
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".config" / "display-toggle" / "config.yaml"

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to configuration file, or None for default
        """
        self.config_path = Path(config_path) if config_path else self.DEFAULT_CONFIG_PATH
        self._data: Dict[str, Any] = {}
        self._set_defaults()

    def _set_defaults(self):
        self.agent = AgentSettings()
        self.backend = BackendSettings()
        self.defaults: ColorSettings = DEFAULT_COLOR_SETTINGS
        self.manual: ColorSettings = DEFAULT_COLOR_SETTINGS
        self.profiles_path: Path = DEFAULT_PROFILES_PATH

    def load(self) -> bool:
        """
        Load configuration from file.

        Returns:
            True if configuration was loaded successfully
        """
        if not self.config_path.exists():
            logger.warning(f"Configuration file not found: {self.config_path}")
            return False

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError("top level must be a mapping")
            self._parse_config(data)
            self._data = data
            logger.info(f"Loaded configuration from {self.config_path}")
            return True

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse configuration: {e}")
            return False
        except (ProfileError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Invalid configuration in {self.config_path}: {e}")
            self._set_defaults()
            return False

    def _parse_config(self, data: Dict[str, Any]):
        """Parse loaded configuration data into typed objects."""
        agent = data.get('agent') or {}
        self.agent = AgentSettings(
            auto_switch_enabled=bool(agent.get('auto_switch_enabled', False)),
            auto_confirm_resolution=bool(agent.get('auto_confirm_resolution', False)),
            poll_interval_seconds=float(agent.get('poll_interval_seconds', 5.0)),
            confirm_timeout_seconds=float(agent.get('confirm_timeout_seconds', 15.0)),
        )
        if self.agent.poll_interval_seconds <= 0 or self.agent.confirm_timeout_seconds <= 0:
            raise ValueError("poll_interval_seconds and confirm_timeout_seconds must be positive")

        backend = data.get('backend') or {}
        self.backend = BackendSettings(
            vibrance_mode=str(backend.get('vibrance_mode', 'nvidia')),
            hue_mode=str(backend.get('hue_mode', 'none')),
            gamma_enabled=bool(backend.get('gamma_enabled', True)),
            ddc_display=backend.get('ddc_display'),
            ddc_retry_count=int(backend.get('ddc_retry_count', 2)),
            ddc_sleep_multiplier=float(backend.get('ddc_sleep_multiplier', 0.5)),
            output=backend.get('output'),
            nvidia_target=backend.get('nvidia_target'),
        )
        if self.backend.vibrance_mode not in VIBRANCE_MODES:
            logger.warning(f"Unknown vibrance_mode '{self.backend.vibrance_mode}', using 'none'")
            self.backend.vibrance_mode = 'none'
        if self.backend.hue_mode not in HUE_MODES:
            logger.warning(f"Unknown hue_mode '{self.backend.hue_mode}', using 'none'")
            self.backend.hue_mode = 'none'

        self.defaults = ColorSettings.from_dict(data.get('defaults') or {})
        self.manual = ColorSettings.from_dict(data.get('manual') or {}, self.defaults)

        profiles_path = data.get('profiles_path')
        self.profiles_path = Path(profiles_path).expanduser() if profiles_path else DEFAULT_PROFILES_PATH

    def save(self) -> bool:
        """
        Save current configuration to file.

        Returns:
            True if configuration was saved successfully
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=False)
            logger.info(f"Saved configuration to {self.config_path}")
            return True
        except Exception as e:
            logger.error(f"Failed to save configuration: {e}")
            return False

    def set_auto_switch_enabled(self, enabled: bool) -> bool:
        """
        Update and save the auto-switch state.

        Returns:
            True if successfully saved
        """
        self.agent.auto_switch_enabled = enabled
        self._data.setdefault('agent', {})['auto_switch_enabled'] = enabled
        logger.info(f"Auto profile switching {'enabled' if enabled else 'disabled'}")
        return self.save()

    def save_manual_settings(self, settings: ColorSettings) -> bool:
        """
        Remember the last manually applied color settings.

        Returns:
            True if successfully saved
        """
        self.manual = settings
        self._data['manual'] = settings.to_dict()
        logger.info("Saved manual color settings")
        return self.save()

    @classmethod
    def create_default_config(cls, path: Optional[Path] = None) -> bool:
        """
        Create a default configuration file from the packaged example.

        Args:
            path: Path for the configuration file

        Returns:
            True if file was created successfully
        """
        target_path = path or cls.DEFAULT_CONFIG_PATH

        package_config = Path(__file__).parent.parent / "config.yaml.example"
        if not package_config.exists():
            logger.error("Default configuration template not found")
            return False

        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(package_config, target_path)
            logger.info(f"Created default configuration at {target_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to copy default config: {e}")
            return False
