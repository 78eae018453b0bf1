# File: citypark/config.py
"""
Configuration for the CityPark engine

Settings are resolved in three layers, later layers winning:
1. Defaults declared on Settings
2. An optional YAML file (top-level keys match the field names)
3. CITYPARK_* environment variables
"""

from typing import Any, Dict, Mapping, Optional
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.strategies import FinePolicyType


ENV_PREFIX = "CITYPARK_"

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Runtime settings for the service and the CLI"""

    model_config = ConfigDict(use_enum_values=False, extra="ignore")

    database_url: str = Field(default="sqlite:///./citypark.db")
    redis_url: Optional[str] = Field(default=None, description="Spot cache; disabled when unset")
    fine_policy: Optional[FinePolicyType] = Field(
        default=None, description="Overrides the stored policy for this process when set"
    )
    floors: int = Field(default=3, ge=1, description="Floors in the default layout")
    lot_name: str = "CityPark"
    log_level: str = "INFO"
    log_file: Optional[str] = Field(default=None, description="File under logs/ when set")

    @field_validator("fine_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = str(value).strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("redis_url", "log_file", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @staticmethod
    def read_yaml(path: str) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return data

    @staticmethod
    def read_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        environ = os.environ if environ is None else environ
        values = {}
        for name in Settings.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                values[name] = environ[key]
        return values

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any
    ) -> 'Settings':
        """
        Build settings from defaults, YAML, environment and explicit overrides
        Overrides whose value is None are ignored
        """
        values: Dict[str, Any] = {}
        if config_path:
            values.update(cls.read_yaml(config_path))
            logger.debug(f"Loaded settings from {config_path}")
        values.update(cls.read_env(environ))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
