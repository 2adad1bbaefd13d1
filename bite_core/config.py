# =============================================================================
# bite_core/config.py
# Runtime settings for SwipeNBite Core
# =============================================================================
"""
Settings are resolved in three layers: dataclass defaults, an optional TOML
secrets file, then environment variables (a local ``.env`` is loaded first).

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [providers.reviews]
    api_key = "yelp-key"

    [providers.reservations]
    api_key = "opentable-key"

    [providers.places]
    api_key = "google-maps-key"

    [cache]
    aggregation_ttl = 120
    inference_ttl = 300

    [reconciler]
    freshness_threshold = 900
    check_interval = 300

    [sweep]
    threshold_days = 7
    batch_size = 10
    min_delay = 2.0
    max_delay = 4.0
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import toml
from dotenv import load_dotenv

from bite_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path("config") / "secrets.toml"
DEFAULT_DB_PATH = Path("local_data") / "swipenbite.db"


@dataclass
class ProviderSettings:
    """Connection settings for one enrichment provider."""
    base_url: str
    api_key: Optional[str] = None
    timeout: float = 10.0
    enabled: bool = True


@dataclass
class Settings:
    """All tunables for the cache and reconciliation subsystem."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH

    # Derived-data cache (seconds)
    aggregation_ttl: float = 120.0
    inference_ttl: float = 300.0

    # Entity status reconciler (seconds)
    freshness_threshold: float = 15 * 60.0
    check_interval: float = 5 * 60.0

    # Enrichment pipeline
    jitter_max: float = 1.0
    provider_timeout: float = 10.0

    # Stale-sweep job
    sweep_threshold_days: int = 7
    sweep_batch_size: int = 10
    sweep_min_delay: float = 2.0
    sweep_max_delay: float = 4.0

    # Sync manager
    hydrate_restaurant_limit: int = 100

    providers: Dict[str, ProviderSettings] = field(default_factory=lambda: {
        "reviews": ProviderSettings(base_url="https://api.yelp.com/v3"),
        "reservations": ProviderSettings(base_url="https://platform.otqa.com"),
        "places": ProviderSettings(base_url="https://maps.googleapis.com/maps/api"),
    })

    def validate(self) -> Settings:
        positive = [
            "aggregation_ttl", "inference_ttl", "freshness_threshold",
            "check_interval", "provider_timeout", "sweep_threshold_days",
            "sweep_batch_size",
        ]
        for name in positive:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(
                    f"{name} must be a positive number",
                    config_key=name,
                    expected_type="number > 0",
                )
        if self.jitter_max < 0:
            raise ConfigurationError("jitter_max cannot be negative", config_key="jitter_max")
        if not 0 <= self.sweep_min_delay <= self.sweep_max_delay:
            raise ConfigurationError(
                "sweep delay range must satisfy 0 <= min <= max",
                config_key="sweep_min_delay",
            )
        return self

    @property
    def backend_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


# TOML table -> {toml key: Settings attribute}
_SECTION_KEYS = {
    "cache": {"aggregation_ttl": "aggregation_ttl", "inference_ttl": "inference_ttl"},
    "reconciler": {
        "freshness_threshold": "freshness_threshold",
        "check_interval": "check_interval",
    },
    "enrichment": {"jitter_max": "jitter_max", "provider_timeout": "provider_timeout"},
    "sweep": {
        "threshold_days": "sweep_threshold_days",
        "batch_size": "sweep_batch_size",
        "min_delay": "sweep_min_delay",
        "max_delay": "sweep_max_delay",
    },
    "sync": {"hydrate_restaurant_limit": "hydrate_restaurant_limit"},
}

_PROVIDER_ENV_KEYS = {
    "reviews": "YELP_API_KEY",
    "reservations": "OPENTABLE_API_KEY",
    "places": "GOOGLE_MAPS_API_KEY",
}


def _apply_toml(settings: Settings, data: Dict[str, Any]) -> None:
    supabase = data.get("supabase", {})
    settings.supabase_url = supabase.get("url", settings.supabase_url)
    settings.supabase_key = supabase.get("key", settings.supabase_key)

    storage = data.get("storage", {})
    if "db_path" in storage:
        settings.db_path = Path(storage["db_path"])

    for section, mapping in _SECTION_KEYS.items():
        for toml_key, attr in mapping.items():
            if toml_key in data.get(section, {}):
                setattr(settings, attr, data[section][toml_key])

    known = {f.name for f in fields(ProviderSettings)}
    for name, provider_data in data.get("providers", {}).items():
        unknown = set(provider_data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown keys for provider '{name}': {sorted(unknown)}",
                config_key=f"providers.{name}",
            )
        current = settings.providers.get(name)
        if current is None:
            if "base_url" not in provider_data:
                raise ConfigurationError(
                    f"Provider '{name}' needs a base_url",
                    config_key=f"providers.{name}.base_url",
                )
            settings.providers[name] = ProviderSettings(**provider_data)
        else:
            for key, value in provider_data.items():
                setattr(current, key, value)


def _apply_env(settings: Settings) -> None:
    settings.supabase_url = os.getenv("SUPABASE_URL", settings.supabase_url)
    settings.supabase_key = (
        os.getenv("SUPABASE_KEY")
        or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        or settings.supabase_key
    )
    if os.getenv("BITE_DB_PATH"):
        settings.db_path = Path(os.environ["BITE_DB_PATH"])

    for name, env_key in _PROVIDER_ENV_KEYS.items():
        if os.getenv(env_key) and name in settings.providers:
            settings.providers[name].api_key = os.environ[env_key]


def load_settings(path: Optional[Path] = None, use_env: bool = True) -> Settings:
    """
    Build Settings from defaults, a TOML file and the environment.

    Args:
        path: TOML file to read (default: config/secrets.toml if it exists)
        use_env: Whether environment variables override file values

    Returns:
        Validated Settings
    """
    settings = Settings()

    secrets_path = Path(path) if path else DEFAULT_SECRETS_PATH
    if secrets_path.exists():
        try:
            data = toml.load(secrets_path)
        except toml.TomlDecodeError as e:
            raise ConfigurationError(
                f"Could not parse {secrets_path}: {e}",
                config_key=str(secrets_path),
            ) from e
        _apply_toml(settings, data)
        logger.debug(f"Loaded settings from {secrets_path}")
    elif path:
        raise ConfigurationError(f"Settings file not found: {secrets_path}")

    if use_env:
        load_dotenv()
        _apply_env(settings)

    return settings.validate()
