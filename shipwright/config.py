"""
Configuration management for shipwright.

Loads config.yaml from the shipwright home directory
($SHIPWRIGHT_HOME, default ~/.config/shipwright).
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv


DEFAULT_DATA_ROOT = "~/.local/share/shipwright"


class ConfigError(Exception):
    """Configuration validation error."""
    pass


def get_shipwright_home() -> Path:
    """Return the shipwright home directory."""
    env_home = os.environ.get("SHIPWRIGHT_HOME")
    if env_home:
        return Path(env_home)
    return Path("~/.config/shipwright").expanduser()


@dataclass
class ShipwrightConfig:
    """
    Runtime configuration.

    Attributes:
        max_workers: Concurrency limit for job instances
        tag_prefix: Default release predicate prefix for the trigger ref
        work_root: Root for per-instance workspaces
        artifact_root: Root for file-backed artifact stores (one dir per run)
        release_root: Root for the file release publisher
        run_root: Root for persisted run records
        source_dir: Source tree copied by source.checkout (default: cwd)
        artifact_retention_days: Retention window used by `shipwright prune`
        log_level, log_format, log_console, log_file: Logging setup
        env_file: Optional dotenv file loaded into the environment
    """
    max_workers: int = 4
    tag_prefix: str = "refs/tags/v"
    work_root: str = f"{DEFAULT_DATA_ROOT}/work"
    artifact_root: str = f"{DEFAULT_DATA_ROOT}/artifacts"
    release_root: str = f"{DEFAULT_DATA_ROOT}/releases"
    run_root: str = f"{DEFAULT_DATA_ROOT}/runs"
    source_dir: Optional[str] = None
    artifact_retention_days: int = 90
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_console: bool = True
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def __post_init__(self):
        for name in ("max_workers", "artifact_retention_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {self.max_workers!r}")
        if self.artifact_retention_days < 0:
            raise ConfigError("artifact_retention_days must be >= 0")
        for name in ("tag_prefix", "work_root", "artifact_root", "release_root", "run_root", "log_level"):
            if not isinstance(getattr(self, name), str):
                raise ConfigError(f"{name} must be a string, got {getattr(self, name)!r}")
        if not isinstance(self.log_console, bool):
            raise ConfigError(f"log_console must be true or false, got {self.log_console!r}")
        if self.log_format not in ("structured", "pretty"):
            raise ConfigError(f"log_format must be 'structured' or 'pretty', got {self.log_format!r}")

    def path(self, name: str) -> Path:
        """Return a configured directory as an expanded Path."""
        value = getattr(self, name)
        if value is None:
            raise ConfigError(f"{name} is not configured")
        return Path(value).expanduser()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShipwrightConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**data)


def load_config(config_path: Optional[Path] = None) -> ShipwrightConfig:
    """
    Load configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        ShipwrightConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the file is not valid YAML or has invalid values
    """
    if config_path is None:
        config_path = get_shipwright_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"shipwright config.yaml not found at {config_path}. Run `shipwright init`."
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = ShipwrightConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    return config
