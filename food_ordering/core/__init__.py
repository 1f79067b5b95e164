"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from food_ordering.core.config import get_settings, Settings, EnvironmentMode, setup_logging

__all__ = ["get_settings", "Settings", "EnvironmentMode", "setup_logging"]
