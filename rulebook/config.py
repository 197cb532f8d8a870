"""Configuration for rulebook.

Two layers:

- ``GlobalConfig``: per-user defaults loaded from
  ``~/.config/rulebook/config.toml`` with profile support via the
  ``RULEBOOK_PROFILE`` environment variable.
- ``ProjectConfig``: per-project settings stored as JSON in the ``.rulebook``
  file at the project root, managed by ``ConfigManager``.
"""

import json
import logging
import os
import sys
import uuid
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from rulebook import __version__
from rulebook.errors import ConfigError
from rulebook.models import PlanCheckpointConfig
from rulebook.utils import utc_now_iso

logger = logging.getLogger(__name__)

CONFIG_FILE = ".rulebook"
SUPPORTED_TOOLS = ("claude", "amp", "gemini")


@dataclass
class GlobalConfig:
    """Global rulebook configuration loaded from ~/.config/rulebook/config.toml."""

    tool: str = "claude"
    max_iterations: int = 10
    max_failures: int = 3
    iteration_timeout_s: int = 1800
    coverage_threshold: float = 95.0
    rulebook_dir: str = "rulebook"
    tool_args: List[str] = field(default_factory=list)
    _profile_name: str = "default"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "GlobalConfig":
        """Load configuration from TOML file.

        Args:
            config_path: Optional path to config file. Defaults to
                ~/.config/rulebook/config.toml

        Returns:
            GlobalConfig instance with loaded or default values.
        """
        if config_path is None:
            config_path = Path.home() / ".config" / "rulebook" / "config.toml"

        if not config_path.exists():
            return cls()

        toml_data = _load_toml(config_path)
        if toml_data is None:
            return cls()

        config_dict: Dict[str, Any] = {}

        if "default" in toml_data:
            config_dict.update(toml_data["default"])

        profile_name = os.environ.get("RULEBOOK_PROFILE", "")
        if profile_name and "profiles" in toml_data:
            if profile_name in toml_data["profiles"]:
                config_dict.update(toml_data["profiles"][profile_name])
                config_dict["_profile_name"] = profile_name
            else:
                logger.warning("Unknown RULEBOOK_PROFILE %r, using defaults", profile_name)

        valid_fields = {f.name for f in fields(cls)}
        filtered_dict = {k: v for k, v in config_dict.items() if k in valid_fields}

        return cls(**filtered_dict)


def _load_toml(path: Path) -> Optional[Dict[str, Any]]:
    """Load a TOML file.

    Args:
        path: Path to the TOML file.

    Returns:
        Parsed TOML data as a dict, or None if parsing failed.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return None


_global_config: Optional[GlobalConfig] = None


def get_global_config() -> GlobalConfig:
    """Get the global configuration singleton.

    Returns:
        The global GlobalConfig instance, loading if necessary.
    """
    global _global_config
    if _global_config is None:
        _global_config = GlobalConfig.load()
    return _global_config


def reload_global_config() -> GlobalConfig:
    """Force reload of global configuration.

    Returns:
        The newly loaded GlobalConfig instance.
    """
    global _global_config
    _global_config = GlobalConfig.load()
    return _global_config


def _typed(
    d: Dict[str, Any],
    key: str,
    default: Any,
    kind: type,
    path: str,
    minimum: Optional[float] = None,
) -> Any:
    """Read ``d[key]`` as ``kind``, raising ConfigError on a bad value.

    Booleans must be real JSON booleans; numbers may be given as numeric
    strings. ``path`` is the dotted key used in the error message.
    """
    value = d.get(key, default)
    if kind is bool:
        if isinstance(value, bool):
            return value
        raise ConfigError(f"Invalid value for {path}: expected true or false, got {value!r}")
    if isinstance(value, bool) or (kind is int and isinstance(value, float) and not value.is_integer()):
        raise ConfigError(f"Invalid value for {path}: expected {kind.__name__}, got {value!r}")
    try:
        converted = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {path}: expected {kind.__name__}, got {value!r}") from e
    if minimum is not None and converted < minimum:
        raise ConfigError(f"Invalid value for {path}: must be at least {minimum:g}, got {converted}")
    return converted


def _string_list(d: Dict[str, Any], key: str) -> List[str]:
    value = d.get(key) or []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid value for {key}: expected a list of names, got {value!r}")
    return list(value)


@dataclass
class RalphSettings:
    """The ``ralph`` section of the project config.

    Attributes:
        enabled: Whether the autonomous loop may run in this project.
        max_iterations: Iteration budget for one ``ralph run``.
        tool: AI CLI tool to drive ('claude', 'amp' or 'gemini').
        max_context_loss: Stop once an iteration reports this many
            context-loss events.
        max_failures: Circuit breaker on consecutive failed iterations.
        iteration_timeout: Seconds before an AI tool run is killed.
        parallel: Max stories run concurrently (1 = sequential).
        plan_checkpoint: Plan approval settings.
    """

    enabled: bool = True
    max_iterations: int = 10
    tool: str = "claude"
    max_context_loss: int = 3
    max_failures: int = 3
    iteration_timeout: int = 1800
    parallel: int = 1
    plan_checkpoint: PlanCheckpointConfig = field(default_factory=PlanCheckpointConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "maxIterations": self.max_iterations,
            "tool": self.tool,
            "maxContextLoss": self.max_context_loss,
            "maxFailures": self.max_failures,
            "iterationTimeout": self.iteration_timeout,
            "parallel": self.parallel,
            "planCheckpoint": self.plan_checkpoint.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RalphSettings":
        """Create settings from the ``ralph`` JSON section.

        Raises:
            ConfigError: If a numeric or boolean field has the wrong type.
        """
        defaults = cls()
        checkpoint = d.get("planCheckpoint") or {}
        if not isinstance(checkpoint, dict):
            raise ConfigError(f"Invalid value for ralph.planCheckpoint: expected an object, got {checkpoint!r}")
        _typed(checkpoint, "enabled", False, bool, "ralph.planCheckpoint.enabled")
        _typed(
            checkpoint, "autoApproveAfterSeconds", 0, int, "ralph.planCheckpoint.autoApproveAfterSeconds", minimum=0
        )
        return cls(
            enabled=_typed(d, "enabled", defaults.enabled, bool, "ralph.enabled"),
            max_iterations=_typed(d, "maxIterations", defaults.max_iterations, int, "ralph.maxIterations", 1),
            tool=str(d.get("tool", defaults.tool)),
            max_context_loss=_typed(d, "maxContextLoss", defaults.max_context_loss, int, "ralph.maxContextLoss", 1),
            max_failures=_typed(d, "maxFailures", defaults.max_failures, int, "ralph.maxFailures", 1),
            iteration_timeout=_typed(
                d, "iterationTimeout", defaults.iteration_timeout, int, "ralph.iterationTimeout", 1
            ),
            parallel=_typed(d, "parallel", defaults.parallel, int, "ralph.parallel", 1),
            plan_checkpoint=PlanCheckpointConfig.from_dict(checkpoint),
        )


@dataclass
class ProjectConfig:
    """Project configuration stored in the ``.rulebook`` JSON file.

    Attributes:
        version: rulebook version that last wrote the file.
        installed_at: ISO timestamp of the first ``rulebook init``.
        updated_at: ISO timestamp of the last save.
        project_id: Random UUID identifying the project.
        project_name: Human-readable project name (defaults to the directory name).
        mode: 'full' or 'minimal' AGENTS.md generation.
        coverage_threshold: Minimum coverage percentage for the coverage gate.
        languages: Languages whose rule blocks go into AGENTS.md.
        modules: Modules (integrations) whose rule blocks go into AGENTS.md.
        rulebook_dir: Directory holding tasks, Ralph state, scripts and logs.
        ralph: Autonomous loop settings.
    """

    version: str = __version__
    installed_at: str = ""
    updated_at: str = ""
    project_id: str = ""
    project_name: str = ""
    mode: str = "full"
    coverage_threshold: float = 95.0
    languages: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    rulebook_dir: str = "rulebook"
    ralph: RalphSettings = field(default_factory=RalphSettings)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to the camelCase JSON layout of the .rulebook file."""
        return {
            "version": self.version,
            "installedAt": self.installed_at,
            "updatedAt": self.updated_at,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "mode": self.mode,
            "coverageThreshold": self.coverage_threshold,
            "languages": list(self.languages),
            "modules": list(self.modules),
            "rulebookDir": self.rulebook_dir,
            "ralph": self.ralph.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ProjectConfig":
        """Create a ProjectConfig from parsed JSON, filling missing keys.

        Raises:
            ConfigError: If a field holds a value of the wrong type.
        """
        defaults = cls()
        ralph = d.get("ralph") or {}
        if not isinstance(ralph, dict):
            raise ConfigError(f"Invalid value for ralph: expected an object, got {ralph!r}")
        return cls(
            version=d.get("version", defaults.version),
            installed_at=d.get("installedAt", ""),
            updated_at=d.get("updatedAt", ""),
            project_id=d.get("projectId", ""),
            project_name=d.get("projectName", ""),
            mode=d.get("mode", defaults.mode),
            coverage_threshold=_typed(
                d, "coverageThreshold", defaults.coverage_threshold, float, "coverageThreshold", 0
            ),
            languages=_string_list(d, "languages"),
            modules=_string_list(d, "modules"),
            rulebook_dir=d.get("rulebookDir") or defaults.rulebook_dir,
            ralph=RalphSettings.from_dict(ralph),
        )


class ConfigManager:
    """Loads, migrates and saves the project's ``.rulebook`` file."""

    def __init__(self, project_root: Path) -> None:
        self.project_root = project_root
        self.config_path = project_root / CONFIG_FILE
        self._config: Optional[ProjectConfig] = None

    def exists(self) -> bool:
        return self.config_path.is_file()

    def load(self) -> ProjectConfig:
        """Load the project config, creating it with defaults if absent.

        Returns:
            The loaded (and migrated) ProjectConfig.

        Raises:
            ConfigError: If the file exists but is not a valid JSON object.
        """
        if self._config is not None:
            return self._config

        if not self.exists():
            return self.initialize()

        try:
            data = json.loads(self.config_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_path} must contain a JSON object")

        config = ProjectConfig.from_dict(data)
        if self._needs_migration(data, config):
            logger.info("Migrating %s from version %s", CONFIG_FILE, data.get("version"))
            config.version = __version__
            self.save(config)
        self._config = config
        return config

    def _needs_migration(self, raw: Dict[str, Any], config: ProjectConfig) -> bool:
        return raw != config.to_dict() and raw.get("version") != __version__

    def initialize(
        self,
        languages: Optional[List[str]] = None,
        modules: Optional[List[str]] = None,
        project_name: Optional[str] = None,
        **overrides: Any,
    ) -> ProjectConfig:
        """Write a fresh config with defaults.

        Args:
            languages: Detected or chosen languages.
            modules: Detected or chosen modules.
            project_name: Project name; defaults to the directory name.
            **overrides: Other ProjectConfig fields to set.

        Returns:
            The newly saved ProjectConfig.
        """
        now = utc_now_iso()
        config = ProjectConfig(
            installed_at=now,
            updated_at=now,
            project_id=str(uuid.uuid4()),
            project_name=project_name or self.project_root.resolve().name,
            languages=list(languages or []),
            modules=list(modules or []),
        )
        valid_fields = {f.name for f in fields(ProjectConfig)}
        for key, value in overrides.items():
            if key not in valid_fields:
                raise ConfigError(f"Unknown config field: {key}")
            setattr(config, key, value)
        self.save(config)
        return config

    def save(self, config: ProjectConfig) -> None:
        """Persist the config, refreshing ``updatedAt``.

        Raises:
            ConfigError: If the file cannot be written.
        """
        config.updated_at = utc_now_iso()
        try:
            self.config_path.write_text(json.dumps(config.to_dict(), indent=2) + "\n")
        except OSError as e:
            raise ConfigError(f"Failed to save config: {e}") from e
        self._config = config

    def get(self, key: str) -> Any:
        """Read a value by dotted camelCase key, e.g. ``ralph.maxIterations``.

        Raises:
            ConfigError: If the key does not exist.
        """
        node: Any = self.load().to_dict()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise ConfigError(f"Unknown config key: {key}")
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> ProjectConfig:
        """Set a value by dotted camelCase key and save.

        String values are decoded as JSON when possible so that
        ``set("ralph.maxIterations", "20")`` stores the integer 20.

        Raises:
            ConfigError: If the key does not exist.
        """
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                pass

        data = self.load().to_dict()
        parts = key.split(".")
        node = data
        for part in parts[:-1]:
            if not isinstance(node.get(part), dict):
                raise ConfigError(f"Unknown config key: {key}")
            node = node[part]
        if parts[-1] not in node:
            raise ConfigError(f"Unknown config key: {key}")
        node[parts[-1]] = value

        config = ProjectConfig.from_dict(data)
        self.save(config)
        return config


def find_project_root(start: Optional[Path] = None) -> Path:
    """Find the project root for a rulebook invocation.

    Walks up from ``start`` (default: cwd) looking for a ``.rulebook`` file,
    then for a ``.git`` directory. Falls back to ``start`` itself.
    """
    cwd = (start or Path.cwd()).resolve()
    candidates = [cwd] + list(cwd.parents)
    for parent in candidates:
        if (parent / CONFIG_FILE).is_file():
            return parent
    for parent in candidates:
        if (parent / ".git").exists():
            return parent
    return cwd


__all__ = [
    "CONFIG_FILE",
    "SUPPORTED_TOOLS",
    "GlobalConfig",
    "get_global_config",
    "reload_global_config",
    "RalphSettings",
    "ProjectConfig",
    "ConfigManager",
    "find_project_root",
]
