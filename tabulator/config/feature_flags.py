"""
Feature Flags Configuration

Centralized feature flag management for the tabulation engine.
All feature flags are loaded from environment variables.
"""
import os


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


class FeatureFlags:
    """
    Feature flags for the application.

    To add a new feature flag:
    1. Add it here as a class property
    2. Load it from environment variable
    3. Use it in your code
    """

    # Judges may only write scores while the event status is "active"
    FEATURE_REQUIRE_ACTIVE_EVENT: bool = get_bool_env('FEATURE_REQUIRE_ACTIVE_EVENT', True)

    # Return the existing pending request instead of appending a duplicate
    FEATURE_DEDUPE_UNLOCK_REQUESTS: bool = get_bool_env('FEATURE_DEDUPE_UNLOCK_REQUESTS', True)

    # Replay log entries after last_sequence on WebSocket reconnect
    FEATURE_WS_DELTA_REPLAY: bool = get_bool_env('FEATURE_WS_DELTA_REPLAY', True)

    @classmethod
    def get_all_flags(cls) -> dict:
        """Get all feature flags as a dictionary."""
        return {
            key: value
            for key, value in cls.__dict__.items()
            if not key.startswith('_') and isinstance(value, bool)
        }


# Singleton instance for easy importing
feature_flags = FeatureFlags()
