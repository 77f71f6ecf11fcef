"""Settings package: layered TOML + environment configuration."""

from optout.settings.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
