"""Configuration loading for the code runner."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import jsonschema
import yaml
from dotenv import load_dotenv

from agentic_code_runner.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_ENDPOINTS,
    DEFAULT_MODELS,
    DEFAULT_PROMPT_FILE,
    DEFAULT_PROVIDER,
    DEFAULT_TIMEOUT_S,
)


CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "default_provider": {"type": "string"},
        "prompt_file": {"type": "string"},
        "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
        "trace": {"type": "boolean"},
        "providers": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "endpoint": {"type": "string"},
                    "model": {"type": "string"},
                    "api_key": {"type": ["string", "null"]},
                },
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoint/key/model triple for one named provider."""
    endpoint: str
    model: str
    api_key: Optional[str] = None


@dataclass
class Config:
    """Application configuration loaded from YAML and environment."""

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    default_provider: str = DEFAULT_PROVIDER
    prompt_file: Path = Path(DEFAULT_PROMPT_FILE)
    timeout_seconds: float = DEFAULT_TIMEOUT_S
    trace: bool = False

    def provider(self, name: str) -> ProviderConfig:
        """Look up provider settings by name (case-insensitive)."""
        try:
            return self.providers[name.lower()]
        except KeyError:
            raise ConfigError(
                f"No configuration for provider '{name}'. "
                f"Configured: {', '.join(sorted(self.providers)) or '(none)'}"
            )


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


def _read_yaml(path: Path) -> dict:
    """Read and validate the YAML config file."""
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: YAML parse error: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping, got {type(data).__name__}")

    validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in validator.iter_errors(data):
        where = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        errors.append(f"{path}: {error.message} at {where}")
    if errors:
        raise ConfigError("\n".join(errors))
    return data


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_timeout(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}")
    if not seconds > 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return seconds


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from a YAML file, .env and environment variables.

    Args:
        path: Config file. Defaults to $CODERUN_CONFIG or ./providers.yaml.
              When the default file does not exist, built-in endpoints are used.

    Returns:
        Config with one ProviderConfig per known or configured provider.

    Raises:
        ConfigError: If an explicit file is missing or the file is invalid.
    """
    load_dotenv()

    explicit = path is not None or "CODERUN_CONFIG" in os.environ
    config_path = Path(path or os.environ.get("CODERUN_CONFIG", DEFAULT_CONFIG_FILE))

    data: dict = {}
    if config_path.exists():
        data = _read_yaml(config_path)
    elif explicit:
        raise ConfigError(f"Config file not found: {config_path}")

    file_providers = {name.lower(): settings or {} for name, settings in (data.get("providers") or {}).items()}
    providers: Dict[str, ProviderConfig] = {}
    for name in sorted(set(DEFAULT_ENDPOINTS) | set(file_providers)):
        settings = file_providers.get(name, {})
        endpoint = settings.get("endpoint") or DEFAULT_ENDPOINTS.get(name)
        if not endpoint:
            raise ConfigError(f"Provider '{name}' has no endpoint configured")
        providers[name] = ProviderConfig(
            endpoint=endpoint,
            model=settings.get("model") or os.environ.get(f"{name.upper()}_MODEL") or DEFAULT_MODELS.get(name, ""),
            api_key=settings.get("api_key") or os.environ.get(f"{name.upper()}_API_KEY"),
        )

    trace = _env_flag("CODERUN_TRACE")
    return Config(
        providers=providers,
        default_provider=os.environ.get("CODERUN_PROVIDER") or data.get("default_provider") or DEFAULT_PROVIDER,
        prompt_file=Path(os.environ.get("CODERUN_PROMPT_FILE") or data.get("prompt_file") or DEFAULT_PROMPT_FILE),
        timeout_seconds=_env_timeout("CODERUN_TIMEOUT_S") or float(data.get("timeout_seconds") or DEFAULT_TIMEOUT_S),
        trace=trace if trace is not None else bool(data.get("trace", False)),
    )
