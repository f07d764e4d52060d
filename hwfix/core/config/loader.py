"""
Configuration loader — reads config.yml into the Settings model.

Lookup order:
    --config flag  >  $HWFIX_CONFIG  >  /etc/hwfix/config.yml  >  defaults

A missing default file is not an error (defaults apply). A file that
was asked for explicitly but does not exist, or any invalid file,
raises ConfigError. HWFIX_STATE_DIR and HWFIX_ROOT override the
corresponding keys after the file is loaded.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from hwfix.core.errors import ConfigError
from hwfix.core.models.package import DistroFamily

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/hwfix/config.yml")
DEFAULT_STATE_DIR = Path("/var/lib/hwfix")
CONFIG_ENV = "HWFIX_CONFIG"


class RetrySettings(BaseModel):
    """Backoff policy for retriable steps."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)


class Settings(BaseModel):
    """Validated runtime configuration."""

    state_dir: Path = DEFAULT_STATE_DIR
    root: Path = Path("/")

    retry: RetrySettings = Field(default_factory=RetrySettings)
    service_wait_timeout: float = 10.0
    poll_interval: float = 0.5
    command_timeout: float = 600.0

    # Extra or replacement per-family package names, keyed by set name
    package_sets: dict[str, dict[DistroFamily, list[str]]] = Field(default_factory=dict)

    # fix -> step id -> critical
    critical: dict[str, dict[str, bool]] = Field(default_factory=dict)

    # fix -> directory holding its payload (DKMS sources, helper scripts)
    source_dirs: dict[str, Path] = Field(default_factory=dict)

    ccm_sensor: str = "ov02c10"

    @property
    def stamp_dir(self) -> Path:
        return self.state_dir / "stamps"

    @property
    def backup_dir(self) -> Path:
        return self.state_dir / "backups"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit.ndjson"

    def is_critical(self, fix: str, step_id: str, default: bool) -> bool:
        return self.critical.get(fix, {}).get(step_id, default)


def find_config_file(
    explicit: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[Path | None, bool]:
    """Resolve which config file to read.

    Returns:
        (path, required). ``required`` is True when the path was asked for
        explicitly and must exist.
    """
    env = os.environ if env is None else env
    if explicit is not None:
        return explicit, True
    if env.get(CONFIG_ENV):
        return Path(env[CONFIG_ENV]), True
    if DEFAULT_CONFIG_PATH.is_file():
        return DEFAULT_CONFIG_PATH, False
    return None, False


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit config path (the --config flag).
        env: Environment mapping (default: os.environ).

    Raises:
        ConfigError: If an explicit file is missing or any file is invalid.
    """
    env = os.environ if env is None else env
    config_path, required = find_config_file(path, env)

    data: dict = {}
    if config_path is not None:
        if not config_path.is_file():
            if required:
                raise ConfigError(
                    f"Config file not found: {config_path}",
                    hint="Pass an existing file to --config or unset HWFIX_CONFIG.",
                )
        else:
            data = _read_yaml(config_path)

    if env.get("HWFIX_STATE_DIR"):
        data["state_dir"] = env["HWFIX_STATE_DIR"]
    if env.get("HWFIX_ROOT"):
        data["root"] = env["HWFIX_ROOT"]

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Settings loaded (config=%s, state_dir=%s, root=%s)",
        config_path, settings.state_dir, settings.root,
    )
    return settings


def _read_yaml(path: Path) -> dict:
    logger.debug("Loading config from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data
