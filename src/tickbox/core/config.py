"""Configuration loading and validation."""

import json
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
import jsonschema
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError


DEFAULT_CONCURRENCY = 4
DEFAULT_CONFIG_NAMES = (".tickbox.json", ".tickbox.yaml", ".tickbox.yml")

# Structural check run before the pydantic model sees the document
CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "env": {
            "type": "object",
            "additionalProperties": {"type": ["string", "number", "boolean"]},
        },
        "sync": {"type": "array", "items": {"type": "string"}},
        "shell": {"type": "string", "minLength": 1},
        "concurrency": {"type": "integer", "minimum": 1},
        "line_limit": {"type": "integer", "minimum": 1024},
    },
    "additionalProperties": False,
}


class WorkflowConfig(BaseModel):
    """Per-workflow configuration file."""
    env: dict[str, str] = Field(default_factory=dict)
    # Each expression is one parallel group, tested in order
    sync: list[str] = Field(default_factory=list)
    shell: str = Field(default="/bin/sh")
    concurrency: Optional[int] = Field(default=None, ge=1)
    line_limit: int = Field(default=1024 * 1024, ge=1024)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                str(k): (str(v).lower() if isinstance(v, bool) else str(v))
                for k, v in value.items()
            }
        return value

    @field_validator("sync")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid sync pattern {pattern!r}: {e}")
        return value


class RunOptions(BaseModel):
    """Resolved scheduler parameters for one run."""
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    ranges: list[tuple[int, int]] = Field(default_factory=list)
    name_filter: str = Field(default="")
    wait: bool = Field(default=False)

    @field_validator("name_filter")
    @classmethod
    def _check_filter(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid filter {value!r}: {e}")
        return value

    @model_validator(mode="after")
    def _check_ranges(self) -> "RunOptions":
        for lo, hi in self.ranges:
            if lo > hi:
                raise ValueError(f"sync range {lo}-{hi} is reversed")
        return self


def parse_range(text: str) -> tuple[int, int]:
    """
    Parse a sync range written as ``LO-HI``, ``LO:HI`` or a single id.

    Bounds are inclusive.
    """
    parts = re.split(r"[-:]", text.strip(), maxsplit=1)
    try:
        lo = int(parts[0])
        hi = int(parts[1]) if len(parts) > 1 else lo
    except ValueError:
        raise ConfigError(f"Invalid sync range: {text!r}")
    if lo > hi:
        raise ConfigError(f"Invalid sync range: {text!r} (low bound above high bound)")
    return lo, hi


class ConfigLoader:
    """Loads and validates YAML/JSON workflow configurations."""

    def __init__(self, step_dir: Union[str, Path] = "."):
        self.step_dir = Path(step_dir)

    def find_default(self) -> Optional[Path]:
        """Return the first default config file present in the step directory."""
        for name in DEFAULT_CONFIG_NAMES:
            candidate = self.step_dir / name
            if candidate.is_file():
                return candidate
        return None

    def load(self, path: Optional[Union[str, Path]] = None) -> WorkflowConfig:
        """
        Load the workflow configuration.

        With no explicit ``path`` the default file in the step directory is
        used; when that does not exist either, defaults apply.
        """
        if path is None:
            path = self.find_default()
            if path is None:
                return WorkflowConfig()
        path = Path(path)

        data = self._load_file(path)
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigError(f"Invalid config: {e.message}", config_path=str(path))
        try:
            return WorkflowConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config: {e}", config_path=str(path))

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content)
            elif path.suffix == ".json":
                data = json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))
        except OSError as e:
            raise ConfigError(f"Cannot read config: {e}", config_path=str(path))

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping", config_path=str(path))
        return data
