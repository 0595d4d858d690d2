"""
Configuration management for the pixel-art pipeline.
Handles loading, saving, and managing user preferences.
"""

import copy
import json
import logging
import os
from typing import Any, Dict
from pathlib import Path

__all__ = [
    'ConfigManager',
]

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages application configuration and user preferences."""

    DEFAULT_CONFIG = {
        # Pipeline settings
        "pipeline": {
            "working_width": 128,
            "working_height": 128,
            "upscale_factor": 8,
            "dither_mode": "none",  # "none", "floyd_steinberg"
            "resample": "box"  # "box", "bilinear", "hamming", "bicubic", "lanczos"
        },

        # Palette settings
        "palettes": {
            "file": "palette.json",  # Where imported palettes are kept
            "active": "default"
        },

        # Last used paths
        "paths": {
            "last_image_dir": None,
            "last_save_dir": None
        },

        # Recent files (keep last 10)
        "recent_files": []
    }

    def __init__(self, config_file: str = "config.json"):
        """
        Initialize config manager.

        Args:
            config_file: Path to config file
        """
        self.config_file = config_file
        self.config = self._load_config()

    def _load_config(self) -> Dict:
        """Load config from file, or create default if not exists."""
        defaults = copy.deepcopy(self.DEFAULT_CONFIG)
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Error loading config {self.config_file}: {e}; using defaults")
                return defaults
            if not isinstance(loaded, dict):
                logger.warning(f"Config {self.config_file} is not an object; using defaults")
                return defaults
            # Merge with defaults to handle new settings
            return self._merge_configs(defaults, loaded)
        else:
            # Create default config
            self.config = defaults
            self.save()
            return defaults

    def _merge_configs(self, default: Dict, loaded: Dict) -> Dict:
        """
        Recursively merge loaded config with defaults.
        Ensures all default keys exist even if not in loaded config.
        """
        for key, value in default.items():
            if key in loaded:
                if isinstance(value, dict) and isinstance(loaded[key], dict):
                    default[key] = self._merge_configs(value, loaded[key])
                else:
                    default[key] = loaded[key]
        return default

    def save(self):
        """Save current config to file."""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=4)
        except OSError as e:
            logger.warning(f"Error saving config {self.config_file}: {e}")

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get config value by nested keys.

        Args:
            *keys: Nested keys (e.g., "pipeline", "upscale_factor")
            default: Default value if key not found

        Returns:
            Config value or default

        Example:
            config.get("pipeline", "upscale_factor")  # Returns 8
        """
        value = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, *keys: str, value: Any):
        """
        Set config value by nested keys.

        Args:
            *keys: Nested keys (e.g., "pipeline", "dither_mode")
            value: Value to set

        Example:
            config.set("pipeline", "dither_mode", value="floyd_steinberg")
        """
        if len(keys) == 0:
            return

        # Navigate to the parent dict
        current = self.config
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        # Set the final value
        current[keys[-1]] = value

    def update_last_path(self, path_type: str, filepath: str):
        """
        Update last used directory for a path type.

        Args:
            path_type: "image" or "save"
            filepath: File path to extract directory from
        """
        if filepath:
            directory = str(Path(filepath).parent)
            self.set("paths", f"last_{path_type}_dir", value=directory)

    def add_recent_file(self, filepath: str, max_recent: int = 10):
        """
        Add file to recent files list.

        Args:
            filepath: File path to add
            max_recent: Maximum number of recent files to keep
        """
        recent = list(self.get("recent_files", default=[]))

        # Remove if already exists
        if filepath in recent:
            recent.remove(filepath)

        # Add to front
        recent.insert(0, filepath)

        # Trim to max
        recent = recent[:max_recent]

        self.set("recent_files", value=recent)

    def get_recent_files(self, max_count: int = 10) -> list:
        """
        Get list of recent files that still exist.

        Args:
            max_count: Maximum number to return

        Returns:
            List of file paths
        """
        recent = self.get("recent_files", default=[])
        # Filter out files that no longer exist
        existing = [f for f in recent if os.path.exists(f)]
        return existing[:max_count]

    def clear_recent_files(self):
        """Clear all recent files."""
        self.set("recent_files", value=[])
