"""
Builds the Dynaconf settings object for the dataset refresher.
This module is the single source of truth for all configuration.
"""

from pathlib import Path
from typing import List, Optional

from dynaconf import Dynaconf, Validator
from dynaconf.validator import ValidationError

from .application.exceptions import ConfigurationError

PROJECT_ROOT = Path(__file__).parent.parent
ENVVAR_PREFIX = "REFRESHER"

_VALIDATORS = [
    Validator(
        "store.password",
        must_exist=True,
        len_min=1,
        messages={
            "must_exist_true": (
                "store.password is required; set it in config/.secrets.toml "
                "or REFRESHER_STORE__PASSWORD"
            ),
        },
    ),
    Validator("store.host", "store.user", "store.database", must_exist=True),
    Validator("refresher.max_age_days", must_exist=True, gte=1),
    Validator("refresher.check_interval_seconds", must_exist=True, gt=0),
    Validator("refresher.datasets", must_exist=True, len_min=1),
]


def resolve_path(value) -> Path:
    """Resolve a configured path relative to the project root."""
    path = Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def load_settings(settings_files: Optional[List[str]] = None) -> Dynaconf:
    """
    Load and validate settings from files and REFRESHER_* variables.

    Raises:
        ConfigurationError: If a required value (notably the store
                            password) is missing or out of range.
    """

    settings = Dynaconf(
        root_path=PROJECT_ROOT,
        settings_files=settings_files or ["config/settings.toml"],
        secrets=["config/.secrets.toml"],
        envvar_prefix=ENVVAR_PREFIX,
        merge_enabled=True,
        environments=False,
        validators=_VALIDATORS,
    )

    try:
        settings.validators.validate()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    return settings
