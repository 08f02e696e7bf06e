"""Configuration module -- exports Settings, the YAML loaders, and a module-level singleton."""

from chatiq_kb.config.loader import load_config, load_plan_quotas
from chatiq_kb.config.settings import Settings

settings = Settings()

__all__ = ["Settings", "load_config", "load_plan_quotas", "settings"]
