"""
Configuration management for the GitHub update service.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (--config path or explicit argument)
3. Environment variables (GH_UPDATE_* prefix, __ for nesting), plus the
   GITHUB_OWNER / GITHUB_REPO / GITHUB_TOKEN conveniences
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
import shlex
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_STATE_DIR = ".gh-update"
DEFAULT_MANIFEST_FILE = "version.json"

# =============================================================================
# Repository Configuration
# =============================================================================


class RepositoryConfig(BaseModel):
    """Identity of the GitHub repository that publishes releases.

    Attributes:
        owner: Repository owner (user or organization).
        repo: Repository name.
        token: Optional personal access token for private repositories.
        api_url: Base URL of the GitHub REST API.
        asset_pattern: Glob selecting the release asset to download.
        timeout_seconds: HTTP timeout for API and download requests.
    """

    owner: str = Field(
        default="",
        description="Repository owner (user or organization)",
    )
    repo: str = Field(
        default="",
        description="Repository name",
    )
    token: str | None = Field(
        default=None,
        description="Personal access token for private repositories",
    )
    api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API",
    )
    asset_pattern: str = Field(
        default="*.zip",
        description="Glob selecting the release asset; falls back to the zipball",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds",
    )

    @field_validator("owner", "repo", "token", mode="before")
    @classmethod
    def coerce_to_string(cls, v: Any) -> Any:
        """Accept numeric-looking values coming from environment variables."""
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API URL."""
        return v.rstrip("/")


# =============================================================================
# Paths Configuration
# =============================================================================


class PathsConfig(BaseModel):
    """Filesystem locations used by the engine.

    Attributes:
        project_root: Root of the application tree being updated.
        state_dir: Internal state directory (downloads, backups, rollback).
            Relative paths are resolved against project_root.
        manifest_file: Manifest file holding the installed version,
            relative to project_root.
    """

    project_root: str = Field(
        default=".",
        description="Root of the application tree being updated",
    )
    state_dir: str = Field(
        default=DEFAULT_STATE_DIR,
        description="Internal state directory, relative to project_root",
    )
    manifest_file: str = Field(
        default=DEFAULT_MANIFEST_FILE,
        description="Manifest file with the installed version",
    )


# =============================================================================
# Dependency Installer Configuration
# =============================================================================


def _default_install_command() -> list[str]:
    """Return the default dependency install command (pip from this interpreter)."""
    return [sys.executable, "-m", "pip", "install", "-r", "requirements.txt"]


class DependencyConfig(BaseModel):
    """Dependency installer settings.

    Attributes:
        enabled: Whether to run the installer after install and rollback.
        command: Command to run inside the project root.
        requirements_file: The installer is skipped when this file is absent.
            None always runs the command.
        timeout_seconds: Optional timeout; None waits indefinitely.
    """

    enabled: bool = Field(
        default=True,
        description="Run the dependency installer after install and rollback",
    )
    command: list[str] = Field(
        default_factory=_default_install_command,
        description="Command to run inside the project root",
    )
    requirements_file: str | None = Field(
        default="requirements.txt",
        description="Skip the installer when this file is absent",
    )
    timeout_seconds: float | None = Field(
        default=None,
        description="Installer timeout in seconds (None disables it)",
    )

    @field_validator("command", mode="before")
    @classmethod
    def split_command_string(cls, v: Any) -> Any:
        """Allow the command to be given as a single shell-style string."""
        if isinstance(v, str):
            return shlex.split(v)
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Emit JSON records instead of plain text.
        debug_mode: Force debug-level logging regardless of `level`.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log records",
    )
    debug_mode: bool = Field(
        default=False,
        description="Force debug-level logging regardless of level",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Configuration
# =============================================================================


def _default_preserve() -> list[str]:
    """Return paths never touched by a clean install or rollback."""
    return [".env", ".git"]


def _default_backup_files() -> list[str]:
    """Return files copied into every pre-install backup (the manifest)."""
    return [DEFAULT_MANIFEST_FILE]


class UpdaterConfig(BaseModel):
    """
    Main configuration model for the update engine.

    Attributes:
        repository: GitHub repository identity and API settings.
        paths: Filesystem locations.
        preserve_on_update: Paths (relative to project_root, glob patterns
            allowed) exempt from deletion during install and rollback. The
            state directory is always added.
        backup_files: Paths copied into the timestamped backup on every install.
            Defaults to the configured manifest file.
        dependencies: Dependency installer settings.
        logging: Logging configuration.
    """

    repository: RepositoryConfig = Field(
        default_factory=RepositoryConfig,
        description="GitHub repository settings",
    )
    paths: PathsConfig = Field(
        default_factory=PathsConfig,
        description="Filesystem locations",
    )
    preserve_on_update: list[str] = Field(
        default_factory=_default_preserve,
        description="Paths exempt from deletion during install and rollback",
    )
    backup_files: list[str] = Field(
        default_factory=_default_backup_files,
        description="Paths backed up before every install",
    )
    dependencies: DependencyConfig = Field(
        default_factory=DependencyConfig,
        description="Dependency installer settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @field_validator("preserve_on_update", "backup_files", mode="before")
    @classmethod
    def wrap_single_path(cls, v: Any) -> Any:
        """Accept a single path where a list is expected."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("preserve_on_update", "backup_files")
    @classmethod
    def normalize_paths(cls, v: list[str]) -> list[str]:
        """Store paths in POSIX form without leading './' or trailing '/'."""
        normalized = []
        for item in v:
            path = item.replace("\\", "/").strip()
            while path.startswith("./"):
                path = path[2:]
            path = path.rstrip("/")
            if not path or path == ".":
                raise ValueError(f"Invalid path entry: {item!r}")
            if path.startswith("/") or ".." in path.split("/"):
                raise ValueError(f"Path must be relative to the project root: {item!r}")
            normalized.append(path)
        return normalized

    @model_validator(mode="after")
    def default_backup_to_manifest(self) -> UpdaterConfig:
        """Back up the configured manifest file unless backup_files was given."""
        if "backup_files" not in self.model_fields_set:
            self.backup_files = [self.paths.manifest_file]
        return self

    @property
    def project_root(self) -> Path:
        """Absolute project root."""
        return Path(self.paths.project_root).expanduser().resolve()

    @property
    def state_dir(self) -> Path:
        """Absolute internal state directory."""
        state_dir = Path(self.paths.state_dir).expanduser()
        if not state_dir.is_absolute():
            state_dir = self.project_root / state_dir
        return state_dir.resolve()

    @property
    def manifest_path(self) -> Path:
        """Absolute path of the project manifest."""
        return self.project_root / self.paths.manifest_file

    def effective_preserve_list(self) -> list[str]:
        """
        Return the preserve list with the state directory included.

        Returns:
            Preserve patterns relative to the project root.
        """
        patterns = list(self.preserve_on_update)
        try:
            state_rel = self.state_dir.relative_to(self.project_root).as_posix()
        except ValueError:
            # State directory lives outside the project tree
            return patterns
        if state_rel not in patterns:
            patterns.append(state_rel)
        return patterns


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = "GH_UPDATE_") -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Rules:
    - Prefix: GH_UPDATE_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: GH_UPDATE_REPOSITORY__OWNER=acme
    - GITHUB_OWNER, GITHUB_REPO and GITHUB_TOKEN fill the repository
      identity when the prefixed variables do not.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    repository = result.setdefault("repository", {})
    for field_name, env_name in (
        ("owner", "GITHUB_OWNER"),
        ("repo", "GITHUB_REPO"),
        ("token", "GITHUB_TOKEN"),
    ):
        env_value = os.environ.get(env_name)
        if env_value and field_name not in repository:
            repository[field_name] = env_value
    if not repository:
        del result["repository"]

    return result


def _parse_cli_args(args: list[str]) -> dict[str, Any]:
    """
    Parse the updater's command-line arguments.

    The arguments usually belong to the host application, so flags the
    updater does not know are ignored and nothing here exits the process.

    Args:
        args: Command-line arguments.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="GitHub release self-update service",
        add_help=False,
        allow_abbrev=False,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        help="Override log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    parsed, _ = parser.parse_known_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})
        result["logging"]["debug_mode"] = True
        result["logging"]["level"] = "debug"

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = "GH_UPDATE_",
    cli_args: list[str] | None = None,
) -> UpdaterConfig:
    """
    Load configuration from all sources with layered precedence.

    Later sources override earlier ones: model defaults, YAML file,
    environment variables, command-line arguments.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument when given.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments to read updater flags from (for
            example sys.argv[1:] of the host). If None, no command-line
            layer is applied; unknown flags are ignored.

    Returns:
        Fully configured UpdaterConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(config_path="updater.yml")
        >>> config.repository.owner
        'acme'
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args) if cli_args is not None else {}

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
    elif isinstance(config_path, str):
        config_path = Path(config_path)
    cli_config.pop("_config_path", None)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return UpdaterConfig(**config_dict)
