"""Service configuration loading and validation.

Handles:
- Reading settings from environment variables.
- Loading an optional YAML config file.
- Merging CLI options over both.
- Validating the final configuration before the service starts.

Precedence, highest first: CLI options, environment variables, config
file, defaults. Any problem is fatal: :func:`load_config` raises
:class:`~prbench.errors.ConfigurationError` listing all of them.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from prbench.errors import ConfigurationError
from prbench.logging import get_logger

log = get_logger("config")

DEFAULT_PORT = 4278

# Field name → environment variable.
ENV_VARS: dict[str, str] = {
    "repo_owner": "REPO_OWNER",
    "repo_name": "REPO_NAME",
    "suite_filename": "SUITE_FILENAME",
    "github_token": "GITHUB_TOKEN",
    "host": "PRBENCH_HOST",
    "port": "PRBENCH_PORT",
    "scratch_dir": "PRBENCH_SCRATCH_DIR",
    "python": "PRBENCH_PYTHON",
    "install_command": "PRBENCH_INSTALL_COMMAND",
    "suite_command": "PRBENCH_SUITE_COMMAND",
    "clone_depth": "PRBENCH_CLONE_DEPTH",
    "clone_timeout": "PRBENCH_CLONE_TIMEOUT",
    "install_timeout": "PRBENCH_INSTALL_TIMEOUT",
    "suite_timeout": "PRBENCH_SUITE_TIMEOUT",
    "api_url": "GITHUB_API_URL",
}

_INT_FIELDS = ("port", "clone_depth", "clone_timeout", "install_timeout", "suite_timeout")
_PATH_FIELDS = ("scratch_dir",)


# ---------------------------------------------------------------------------
# AppConfig
# ---------------------------------------------------------------------------


@dataclass
class AppConfig:
    """Resolved configuration for the prbench service."""

    # Target repository
    repo_owner: str = ""
    repo_name: str = ""
    suite_filename: str = ""
    github_token: str = field(default="", repr=False)
    api_url: str = "https://api.github.com"

    # Listener
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # Workspaces
    scratch_dir: Path = field(default_factory=lambda: Path("tmp"))
    python: str = field(default_factory=lambda: sys.executable)
    install_command: str = "pip install -e ."
    suite_command: str = "python {entry}"
    clone_depth: int | None = None  # None = full clone

    # Per-step timeouts in seconds
    clone_timeout: int = 300
    install_timeout: int = 900
    suite_timeout: int = 1800

    @property
    def repo_slug(self) -> str:
        """``owner/name`` of the target repository."""
        return f"{self.repo_owner}/{self.repo_name}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ConfigProblem:
    """A single configuration validation error."""

    field: str
    message: str


def validate_config(config: AppConfig, *, require_token: bool = True) -> list[ConfigProblem]:
    """Validate a configuration.

    Returns a list of problems.  Empty list means valid.
    """
    problems: list[ConfigProblem] = []

    required = ["repo_owner", "repo_name", "suite_filename"]
    if require_token:
        required.append("github_token")
    for name in required:
        if not str(getattr(config, name) or "").strip():
            problems.append(
                ConfigProblem(
                    field=name,
                    message=(
                        f"Missing required value. Set {ENV_VARS[name]} "
                        f"or '{name}' in the config file."
                    ),
                )
            )

    if config.suite_filename and Path(config.suite_filename).is_absolute():
        problems.append(
            ConfigProblem(
                field="suite_filename",
                message=f"Must be relative to the repository root, got {config.suite_filename}",
            )
        )

    if not 1 <= config.port <= 65535:
        problems.append(
            ConfigProblem(field="port", message=f"Port must be in 1..65535 (got {config.port}).")
        )

    for name in ("clone_timeout", "install_timeout", "suite_timeout"):
        value = getattr(config, name)
        if value <= 0:
            problems.append(
                ConfigProblem(field=name, message=f"Timeout must be positive (got {value}).")
            )

    if config.clone_depth is not None and config.clone_depth < 1:
        problems.append(
            ConfigProblem(
                field="clone_depth",
                message=f"Clone depth must be at least 1 (got {config.clone_depth}).",
            )
        )

    if "{entry}" not in config.suite_command:
        problems.append(
            ConfigProblem(
                field="suite_command",
                message="Suite command must contain the '{entry}' placeholder.",
            )
        )

    if not config.api_url.startswith(("http://", "https://")):
        problems.append(
            ConfigProblem(field="api_url", message=f"Not an HTTP(S) URL: {config.api_url}")
        )

    return problems


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML config file.

    Format::

        repo_owner: icebob
        repo_name: benchmarkify
        suite_filename: benchmark/suite.py
        port: 4278
        suite_timeout: 1200

    Returns:
        The parsed YAML as a dict.

    Raises:
        ConfigurationError: If the file is missing, not valid YAML or not a mapping.
    """
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _coerce(name: str, value: Any, problems: list[ConfigProblem]) -> Any:
    if name in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError):
            problems.append(ConfigProblem(field=name, message=f"Not an integer: {value!r}"))
            return None
    if name in _PATH_FIELDS:
        return Path(value)
    return str(value)


def load_config(
    *,
    config_file: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    require_token: bool = True,
) -> AppConfig:
    """Build and validate the service configuration.

    Args:
        config_file: Optional YAML file with any :class:`AppConfig` field.
        overrides: CLI values; ``None`` entries are ignored.
        environ: Environment to read (defaults to ``os.environ``).
        require_token: Whether ``github_token`` is mandatory.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    env = os.environ if environ is None else environ
    known = {f.name for f in fields(AppConfig)}
    problems: list[ConfigProblem] = []
    values: dict[str, Any] = {}

    if config_file is not None:
        for key, value in load_config_file(config_file).items():
            if key not in known:
                log.warning("Ignoring unknown config key %r in %s", key, config_file)
                continue
            if value is not None:
                values[key] = value

    for name, var in ENV_VARS.items():
        if env.get(var):
            values[name] = env[var]

    for key, value in (overrides or {}).items():
        if value is not None and key in known:
            values[key] = value

    coerced: dict[str, Any] = {}
    for key, value in values.items():
        converted = _coerce(key, value, problems)
        if converted is not None:
            coerced[key] = converted

    config = AppConfig(**coerced)
    problems.extend(validate_config(config, require_token=require_token))

    if problems:
        messages = [f"  {p.field}: {p.message}" for p in problems]
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(messages))

    log.debug("Configuration loaded for %s", config.repo_slug)
    return config
