"""Configuration Package

Environment-based settings for the error-handling core.
"""

from .settings import StudyBuddySettings, get_settings, reset_settings

__all__ = ["StudyBuddySettings", "get_settings", "reset_settings"]
