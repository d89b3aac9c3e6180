"""
Configuration module for the matching service.

This module provides centralized configuration management using pydantic-settings.
All environment variables and configuration values should be accessed through this module.

Usage:
    from config import get_settings

    settings = get_settings()
    weights = settings.default_weights("pulse")
    name = settings.experiment_name("zone")     # "zone_weights_v1"
"""

from config.settings import Settings, get_settings, get_settings_for_testing

__all__ = ["Settings", "get_settings", "get_settings_for_testing"]
