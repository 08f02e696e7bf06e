"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers override earlier):

  1. ``config/config.yaml`` -- static defaults checked into the repo,
     including the per-plan quota table
  2. ``.env`` file          -- local developer overrides (not committed)
  3. Environment variables  -- set at deploy time

:func:`load_config` reads the YAML file first, then deep-merges
environment-derived values on top.  :func:`load_plan_quotas` turns the
``quotas.plans`` section into typed :class:`PlanQuota` records.
"""

from pathlib import Path

import yaml

from chatiq_kb.config.settings import Settings
from chatiq_kb.models.quota import PlanQuota

# Used when the YAML file is missing or omits a plan entirely.
DEFAULT_PLAN_QUOTAS: dict[str, PlanQuota] = {
    "free": PlanQuota(documents=1, embeddings=2000, warning_ratio=0.8),
    "pro": PlanQuota(documents=50, embeddings=100_000, warning_ratio=0.8),
    "team": PlanQuota(documents=200, embeddings=500_000, warning_ratio=0.8),
    "enterprise": PlanQuota(documents=None, embeddings=None, warning_ratio=1.0),
    "admin": PlanQuota(documents=1000, embeddings=None, warning_ratio=1.0),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.
        settings: Pre-built settings; a fresh ``Settings()`` is read otherwise.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "embedding": {
            "model": settings.openai_embedding_model,
            "model_version": settings.embedding_model_version,
            "configured": settings.embedding_configured(),
        },
        "queue": {
            "max_attempts": settings.embedding_max_attempts,
            "batch_size": settings.worker_batch_size,
            "worker_id": settings.worker_id,
        },
        "storage": {
            "database_path": settings.database_path,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def load_plan_quotas(config: dict) -> dict[str, PlanQuota]:
    """Build the plan quota table from a loaded config dictionary.

    Plans present in ``config["quotas"]["plans"]`` override the built-in
    defaults field by field; a ``null`` limit means unlimited.
    """
    quotas = dict(DEFAULT_PLAN_QUOTAS)
    plans = (config.get("quotas") or {}).get("plans") or {}
    for plan_id, values in plans.items():
        base = quotas.get(plan_id, DEFAULT_PLAN_QUOTAS["free"])
        merged = base.model_dump()
        merged.update(values or {})
        quotas[plan_id] = PlanQuota(**merged)
    return quotas


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
