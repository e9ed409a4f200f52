"""Configuration module for loading and managing application settings"""
from typing import Dict, Any

from .lib.load_settings_conf import (
    load_settings_conf,
    validate_settings,
    SettingsError,
    DEFAULTS,
    REQUIRED_SETTINGS
)

__all__ = ['load_config', 'load_settings_conf', 'validate_settings', 'SettingsError', 'DEFAULTS']

def load_config(settings_path: str = ".") -> Dict[str, Any]:
    """Load the indexer configuration.

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Dictionary of validated settings

    Raises:
        SettingsError: With additional guidance when the configuration is unusable
    """
    try:
        return load_settings_conf(settings_path)
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf is properly configured.\n"
            f"Required settings: {', '.join(REQUIRED_SETTINGS)}"
        ) from e
