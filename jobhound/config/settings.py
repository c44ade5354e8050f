# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Workflow settings with explicit precedence.

Precedence (highest to lowest):
1. Keyword overrides passed to from_sources()
2. Environment variables (JOBHOUND_*)
3. .env file
4. YAML settings file (when given)
5. Default values

Usage:
    settings = WorkflowSettings.from_sources(
        config_file="jobhound.yaml",
        max_steps=50,
    )
    config = ExecutionConfig.from_settings(settings)
"""

from __future__ import annotations

import logging
import os
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from jobhound.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "JOBHOUND_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Values of the YAML file given to the from_sources() call in progress
_yaml_file_values: ContextVar[Dict[str, Any]] = ContextVar("jobhound_yaml_file_values", default={})


class YamlFileSettingsSource(PydanticBaseSettingsSource):
    """Settings source for the YAML file loaded by ``from_sources()``."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return _yaml_file_values.get().get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in _yaml_file_values.get().items()
            if key in self.settings_cls.model_fields
        }


class WorkflowSettings(BaseSettings):
    """Settings for building and running workflows."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env" if not os.getenv("JOBHOUND_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Execution
    # ==========================================================================

    stage_timeout: Optional[float] = Field(
        default=120.0,
        description="Default per-stage timeout in seconds (0 or None disables)",
    )
    max_steps: int = Field(
        default=25,
        gt=0,
        description="Maximum stage invocations per run",
    )

    # ==========================================================================
    # Compilation
    # ==========================================================================

    graph_cache_size: int = Field(
        default=16,
        ge=0,
        description="Compiled workflows kept in the cache (0 disables caching)",
    )

    # ==========================================================================
    # Logging / tracing
    # ==========================================================================

    log_level: str = Field(default="INFO", description="Log level for jobhound loggers")
    tracing_enabled: bool = Field(default=False, description="Log per-stage trace events")
    project_name: str = Field(default="jobhound", description="Project name used in logs")

    @field_validator("stage_timeout")
    @classmethod
    def validate_stage_timeout(cls, v: Optional[float]) -> Optional[float]:
        """Treat non-positive timeouts as disabled."""
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {list(_LOG_LEVELS)}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_sources(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        env_file: Optional[Union[str, Path]] = None,
        **overrides: Any,
    ) -> "WorkflowSettings":
        """Load settings with proper precedence.

        Args:
            config_file: Optional YAML file with setting values
            env_file: .env file to read instead of the configured one
            **overrides: Highest-priority values (None values are ignored)

        Returns:
            WorkflowSettings with all sources merged

        Raises:
            ConfigurationError: If the file is malformed or a value is invalid
        """
        file_values: Dict[str, Any] = {}

        if config_file is not None:
            path = Path(config_file)
            if path.exists():
                try:
                    with open(path, encoding="utf-8") as f:
                        loaded = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {path}: {e}", cause=e) from e
                if not isinstance(loaded, dict):
                    raise ConfigurationError(f"{path} must contain a mapping of settings")
                file_values = loaded
            else:
                logger.warning(f"Settings file not found: {path}")

        init_kwargs: Dict[str, Any] = {
            k: v for k, v in overrides.items() if v is not None and k in cls.model_fields
        }
        if env_file is not None:
            init_kwargs["_env_file"] = env_file

        token = _yaml_file_values.set(file_values)
        try:
            return cls(**init_kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid workflow settings: {e}", cause=e) from e
        finally:
            _yaml_file_values.reset(token)


def load_settings(config_file: Optional[Union[str, Path]] = None) -> WorkflowSettings:
    """Load settings from the environment and an optional YAML file."""
    return WorkflowSettings.from_sources(config_file=config_file)


__all__ = ["WorkflowSettings", "load_settings", "ENV_PREFIX"]
