"""Startup configuration with YAML and environment support."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_IMAGE = "python-ml:latest"

TBaseSchema = TypeVar("TBaseSchema", bound="BaseSchema")


class BaseSchema(BaseModel):
    def to_dict(self) -> dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_dict(cls: type[TBaseSchema], data: Mapping[str, object]) -> TBaseSchema:
        return cls.model_validate(data)


def _default_install_command() -> list[str]:
    return [sys.executable, "-m", "pip", "install", "--quiet"]


class ConsoleConfig(BaseSchema):
    """Values fixed for the lifetime of the process."""

    # Isolated runner
    container_image: str = DEFAULT_IMAGE
    container_executable: str = "docker"
    container_python: str = "python"
    allow_local_fallback: bool = False
    local_python: str = "python"
    python_flags: list[str] = Field(default_factory=lambda: ["-I", "-"])
    isolated_timeout_s: float | None = None  # None waits for the program indefinitely

    # Embedded sandbox
    sandbox_preload: list[str] = Field(default_factory=lambda: ["numpy"])
    install_command: list[str] = Field(default_factory=_default_install_command)

    # Overrides for the static allow/deny tables
    allowed_modules: dict[str, dict[str, str]] | None = None
    denied_modules: list[str] | None = None

    @field_validator("isolated_timeout_s")
    @classmethod
    def timeout_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("isolated_timeout_s must be positive")
        return value

    def with_env(self, env: Mapping[str, str] | None = None) -> "ConsoleConfig":
        """Overlay the deployment environment variables."""
        env = os.environ if env is None else env
        updates: dict[str, object] = {}
        image = env.get("PY_RUN_IMAGE")
        if image:
            updates["container_image"] = image
        if "ALLOW_LOCAL_PY" in env:
            updates["allow_local_fallback"] = env["ALLOW_LOCAL_PY"] == "1"
        if not updates:
            return self
        return self.model_copy(update=updates)


def load_config(
    yaml_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ConsoleConfig:
    """Load console configuration from a YAML file and the environment.

    Args:
        yaml_path: Optional path to a YAML configuration file
        env: Environment mapping, defaults to os.environ

    Returns:
        ConsoleConfig instance

    Raises:
        FileNotFoundError: If the YAML file doesn't exist
        ValueError: If the YAML is invalid or has bad fields
    """
    if yaml_path is None:
        return ConsoleConfig().with_env(env)

    yaml_path = Path(yaml_path)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data or not isinstance(data, dict):
        raise ValueError(f"Empty or invalid YAML file: {yaml_path}")

    try:
        config = ConsoleConfig.from_dict(data)
    except Exception as e:
        raise ValueError(f"Invalid configuration in {yaml_path}: {e}") from e
    return config.with_env(env)


def dump_config(config: ConsoleConfig) -> str:
    """Render the configuration as YAML that load_config reads back."""
    return yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False, indent=2)


def save_config(config: ConsoleConfig, yaml_path: str | Path) -> None:
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)
    with open(yaml_path, "w", encoding="utf-8") as f:
        f.write(dump_config(config))
