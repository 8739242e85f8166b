from tabulator.config.settings import settings
from tabulator.config.feature_flags import feature_flags

__all__ = ["settings", "feature_flags"]
