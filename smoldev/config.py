"""
Pipeline Configuration Management
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from smoldev.exceptions import ConfigError


MODEL_ALIASES = {
    "haiku": "claude-3-5-haiku-20241022",
    "sonnet": "claude-sonnet-4-20250514",
    "opus": "claude-opus-4-20250514",
}

DEFAULT_CONCURRENCY = 5


@dataclass
class PipelineConfig:
    """Configuration for a single pipeline run"""

    # Output settings
    target_dir: str = ""
    concurrency: int = DEFAULT_CONCURRENCY
    atomic_writes: bool = True
    submit_delay: float = 0.001  # seconds between task hand-offs

    # Override/cache files (YAML)
    files_override: Optional[str] = None
    deps_override: Optional[str] = None

    # Model settings
    model: str = "sonnet"
    max_tokens: int = 8192
    temperature: float = 0.2

    # API settings
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 300.0
    connect_timeout: float = 10.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Output/logging settings
    verbose: bool = False
    debug: bool = False
    log_file: Optional[str] = None
    json_logs: bool = False

    @property
    def model_name(self) -> str:
        """Full model id for the configured alias"""
        return MODEL_ALIASES.get(self.model, self.model)

    def resolve_path(self, relative_path: str) -> Path:
        """Absolute destination of a manifest entry under the target directory"""
        return Path(os.path.abspath(self.target_dir)) / relative_path

    def validate(self) -> None:
        """Raise ConfigError for settings that make a run impossible"""
        if not self.target_dir or not str(self.target_dir).strip():
            raise ConfigError("no target directory specified", field="target_dir")
        target = Path(self.target_dir)
        if target.exists() and not target.is_dir():
            raise ConfigError(f"target directory {target} is not a directory", field="target_dir")
        if not isinstance(self.concurrency, int) or isinstance(self.concurrency, bool) or self.concurrency < 1:
            raise ConfigError(
                f"concurrency must be a positive integer, got {self.concurrency!r}",
                field="concurrency"
            )
        if self.submit_delay < 0:
            raise ConfigError("submit delay cannot be negative", field="submit_delay")
        for field_name in ("files_override", "deps_override"):
            value = getattr(self, field_name)
            if value and Path(value).is_dir():
                raise ConfigError(f"{field_name} {value} is a directory", field=field_name)

    def load_from_file(self, config_path: str) -> None:
        """Load configuration from JSON file"""
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"config file {path} does not exist", field="config")
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"config file {path} is not valid JSON: {e}", field="config") from e
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)

    @classmethod
    def load_default(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """Defaults overlaid with .env and environment variables"""
        load_dotenv(env_file)
        config = cls()
        config._load_from_env()
        return config

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            "SMOLDEV_MODEL": "model",
            "SMOLDEV_TARGET_DIR": "target_dir",
            "SMOLDEV_CONCURRENCY": ("concurrency", int),
            "SMOLDEV_MAX_TOKENS": ("max_tokens", int),
            "SMOLDEV_MAX_RETRIES": ("max_retries", int),
            "SMOLDEV_TIMEOUT": ("timeout", float),
            "SMOLDEV_LOG_FILE": "log_file",
            "SMOLDEV_VERBOSE": ("verbose", lambda x: x.lower() == "true"),
            "SMOLDEV_ATOMIC_WRITES": ("atomic_writes", lambda x: x.lower() != "false"),
            "ANTHROPIC_API_KEY": "api_key",
            "ANTHROPIC_BASE_URL": "base_url",
        }

        for env_var, mapping in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(mapping, tuple):
                    attr, converter = mapping
                    try:
                        setattr(self, attr, converter(value))
                    except ValueError as e:
                        raise ConfigError(f"invalid value for {env_var}: {value!r}", field=attr) from e
                else:
                    setattr(self, mapping, value)


def read_intent(value: Optional[str]) -> str:
    """
    Resolve the intent argument.

    The value is treated as a path when a file by that name exists,
    otherwise as the literal intent text.
    """
    if value is None or not value.strip():
        raise ConfigError("no prompt specified", field="prompt")

    path = Path(value)
    try:
        is_file = path.is_file()
    except (OSError, ValueError):
        # Long literal prompts can exceed the path length limit
        is_file = False

    if is_file:
        try:
            intent = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"failed to read prompt file {path}: {e}", field="prompt") from e
        if not intent.strip():
            raise ConfigError(f"prompt file {path} is empty", field="prompt")
        return intent

    return value
