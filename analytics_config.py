import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from analytics_errors import InvalidInputError

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class AnalyticsConfig:
    """Tunable defaults shared by the analytics components"""

    log_level: str = "INFO"
    log_json: bool = False

    significance_level: float = 0.05
    credible_interval_z: float = 1.96
    positive_response_threshold: float = 4.0

    min_cluster_size: int = 5
    max_personas: int = 5

    base_price: float = 50.0
    cost_per_response: float = 5.0
    default_response_rate: float = 0.20

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {self.log_level}")
        if not 0 < self.significance_level < 1:
            raise ValueError(f"significance_level must be in (0, 1), got {self.significance_level}")
        if self.credible_interval_z <= 0:
            raise ValueError(f"credible_interval_z must be positive, got {self.credible_interval_z}")
        if self.min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be at least 1, got {self.min_cluster_size}")
        if self.max_personas < 1:
            raise ValueError(f"max_personas must be at least 1, got {self.max_personas}")
        if self.base_price <= 0:
            raise ValueError(f"base_price must be positive, got {self.base_price}")
        if self.cost_per_response < 0:
            raise ValueError(f"cost_per_response must be non-negative, got {self.cost_per_response}")
        if not 0 < self.default_response_rate <= 1:
            raise ValueError(f"default_response_rate must be in (0, 1], got {self.default_response_rate}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AnalyticsConfig":
        """Build a config from a mapping, ignoring unknown keys"""
        data = data or {}
        kwargs = {}
        for config_field in fields(cls):
            if config_field.name in data and data[config_field.name] is not None:
                kwargs[config_field.name] = _coerce(config_field.type, data[config_field.name], config_field.name)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, prefix: str = "SURVEY_ANALYTICS_", environ: Optional[Dict[str, str]] = None) -> "AnalyticsConfig":
        """Build a config from ``PREFIX_FIELD`` environment variables"""
        environ = os.environ if environ is None else environ
        data = {}
        for config_field in fields(cls):
            key = f"{prefix}{config_field.name.upper()}"
            if key in environ:
                data[config_field.name] = environ[key]
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path], environ: Optional[Dict[str, str]] = None) -> "AnalyticsConfig":
        """Load a config from a YAML file, substituting ``${VAR}`` / ``${VAR:default}``"""
        environ = os.environ if environ is None else environ
        content = Path(path).expanduser().read_text(encoding="utf-8")

        def substitute(match):
            name, default = match.group(1), match.group(2)
            if name in environ:
                return environ[name]
            if default is not None:
                return default
            raise InvalidInputError(f"Environment variable {name} referenced in {path} is not set")

        data = yaml.safe_load(_ENV_PATTERN.sub(substitute, content)) or {}
        if not isinstance(data, dict):
            raise InvalidInputError(f"Config file {path} must contain a mapping")

        # Allow the settings to sit under an ``analytics`` section
        section = data.get("analytics", data)
        if not isinstance(section, dict):
            raise InvalidInputError(f"'analytics' section in {path} must be a mapping")
        return cls.from_dict(section)

    def to_dict(self) -> Dict[str, Any]:
        return {config_field.name: getattr(self, config_field.name) for config_field in fields(self)}


def _coerce(field_type: Any, value: Any, name: str) -> Any:
    type_name = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", str(field_type))
    try:
        if type_name == "bool":
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Invalid value for {name}: {value!r}") from e
