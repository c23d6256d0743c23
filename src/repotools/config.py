"""
Configuration management for repotools.

Settings come from dataclass defaults, the first config file found
(JSON or TOML), REPOTOOLS_* environment variables and finally CLI options.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
from rich.console import Console

from .repositories import KNOWN_REPOSITORIES

console = Console(stderr=True)

INVALID_REPOSITORY_POLICIES = ("skip", "abort")


@dataclass
class WorkspaceConfig:
    """Where the product line's repositories live."""

    root: str = "."
    repositories: List[str] = field(default_factory=lambda: list(KNOWN_REPOSITORIES))
    source_dir: str = "source"
    manifest_name: str = "packages.config"
    hooks_dir: str = "hooks"

    @property
    def root_path(self) -> Path:
        return Path(self.root).expanduser().resolve()


@dataclass
class ToolsConfig:
    """External executables."""

    git: str = "git"
    nuget: str = "nuget"
    msbuild: str = "msbuild"
    pull_args: List[str] = field(default_factory=lambda: ["--ff-only"])


@dataclass
class PackagingConfig:
    """Build, pack and publish settings."""

    build_configuration: str = "Release"
    output_dir: str = "artifacts/packages"
    local_feed_dir: str = "~/.repotools/local-feed"
    local_suffix: str = "local"
    feed_url: str = "https://api.nuget.org/v3/index.json"
    flat_container_url: str = "https://api.nuget.org/v3-flatcontainer"
    api_key_env: str = "NUGET_API_KEY"


@dataclass
class HooksConfig:
    """Git hook installation policy."""

    on_invalid_repository: str = "skip"


@dataclass
class NetworkConfig:
    """Package feed HTTP settings."""

    user_agent: str = "repotools/1.0.0"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class LoggingConfig:
    log_level: str = "ERROR"


@dataclass
class RepoToolsConfig:
    """Main configuration containing all subsections."""

    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    packaging: PackagingConfig = field(default_factory=PackagingConfig)
    hooks: HooksConfig = field(default_factory=HooksConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_global_config: Optional[RepoToolsConfig] = None


def validate_config_values(config: RepoToolsConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not config.workspace.repositories:
        errors.append("workspace.repositories must not be empty")
    if len(set(config.workspace.repositories)) != len(config.workspace.repositories):
        errors.append("workspace.repositories contains duplicates")
    if "all" in config.workspace.repositories:
        errors.append("workspace.repositories must not contain the reserved name 'all'")
    if not config.workspace.manifest_name:
        errors.append("workspace.manifest_name must not be empty")

    for tool in ("git", "nuget", "msbuild"):
        if not getattr(config.tools, tool):
            errors.append(f"tools.{tool} must not be empty")

    if not config.packaging.local_suffix.isalnum():
        errors.append("packaging.local_suffix must be alphanumeric")

    if config.hooks.on_invalid_repository not in INVALID_REPOSITORY_POLICIES:
        errors.append(
            "hooks.on_invalid_repository must be one of: "
            + ", ".join(INVALID_REPOSITORY_POLICIES)
        )

    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")

    if config.logging.log_level.upper() not in (
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    ):
        errors.append(f"logging.log_level is not a level name: {config.logging.log_level}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or TOML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() == ".toml":
                return toml.load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".repotools.json",
        Path.cwd() / ".repotools.toml",
        Path.home() / ".config" / "repotools" / "config.json",
        Path.home() / ".config" / "repotools" / "config.toml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: RepoToolsConfig) -> None:
    """Apply REPOTOOLS_* environment variables."""
    if root := os.environ.get("REPOTOOLS_ROOT"):
        config.workspace.root = root
    if log_level := os.environ.get("REPOTOOLS_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()
    if feed_url := os.environ.get("REPOTOOLS_FEED_URL"):
        config.packaging.feed_url = feed_url
    if git := os.environ.get("REPOTOOLS_GIT"):
        config.tools.git = git
    if nuget := os.environ.get("REPOTOOLS_NUGET"):
        config.tools.nuget = nuget
    if msbuild := os.environ.get("REPOTOOLS_MSBUILD"):
        config.tools.msbuild = msbuild


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def apply_config_data(config: RepoToolsConfig, file_config: Dict[str, Any]) -> None:
    for section_name in ("workspace", "tools", "packaging", "hooks", "network", "logging"):
        if section_name in file_config:
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def load_config() -> RepoToolsConfig:
    """Load configuration from file and environment, once per process."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = RepoToolsConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")

    _global_config = config
    return config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample JSON configuration."""
    return json.dumps(RepoToolsConfig().to_dict(), indent=2)
