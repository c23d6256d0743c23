"""
Solution building, package creation and publishing via nuget and msbuild.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

from .error_handling import (
    ConfigurationError,
    ErrorCategory,
    MissingResourceError,
    PackagingError,
    get_error_handler,
)
from .feed_client import FeedClient
from .repositories import Repository
from .structured_logging import get_workflow_logger
from .tools import ToolRunner

_CREATED_PACKAGE = re.compile(r"Successfully created package '(?P<path>[^']+)'")
_PACKAGE_FILE = re.compile(
    r"^(?P<id>.+?)\.(?P<version>\d+(?:\.\d+){2,3}(?:[-+][0-9A-Za-z.+-]*?)?)"
    r"(?P<symbols>\.symbols)?\.nupkg$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class BuildTools:
    """Executables and build settings used by the packaging workflow."""

    nuget: str = "nuget"
    msbuild: str = "msbuild"
    configuration: str = "Release"


def find_solution(repository: Repository) -> Path:
    """
    Locate the repository's solution file.

    Raises:
        MissingResourceError: If the source tree holds no .sln file
    """
    search_root = (
        repository.source_path if repository.source_path.is_dir() else repository.path
    )
    solutions = sorted(search_root.rglob("*.sln")) if search_root.is_dir() else []
    if not solutions:
        get_error_handler().critical(
            ErrorCategory.MISSING_RESOURCE,
            f"No solution file found in {search_root}",
            "packaging",
            "find_solution",
            details={"repository": repository.name},
        )
        raise MissingResourceError(f"No solution file found in {search_root}")
    return solutions[0]


def find_nuspecs(repository: Repository) -> List[Path]:
    if not repository.source_path.is_dir():
        return []
    return sorted(repository.source_path.rglob("*.nuspec"))


def restore_solution(
    solution: Path,
    runner: ToolRunner,
    nuget: str = "nuget",
    sources: Sequence[str] = (),
) -> None:
    command = [nuget, "restore", str(solution), "-NonInteractive"]
    for source in sources:
        command.extend(["-Source", source])
    runner.run(command, cwd=solution.parent)


def build_solution(
    repository: Repository, runner: ToolRunner, tools: BuildTools = BuildTools()
) -> Path:
    """Restore packages and build the repository's solution; returns the .sln path."""
    solution = find_solution(repository)
    get_workflow_logger().info(
        "building_solution", repository=repository.name, solution=solution.name
    )
    restore_solution(solution, runner, tools.nuget)
    runner.run(
        [
            tools.msbuild,
            str(solution),
            f"/p:Configuration={tools.configuration}",
            "/verbosity:minimal",
            "/nologo",
        ],
        cwd=solution.parent,
    )
    return solution


def build_and_package(
    repository: Repository,
    version: str,
    runner: ToolRunner,
    output_dir: Path,
    tools: BuildTools = BuildTools(),
) -> Set[Path]:
    """
    Build the repository and pack every .nuspec at ``version``.

    Returns:
        Set[Path]: Package files reported by ``nuget pack``
    """
    build_solution(repository, runner, tools)

    output_dir = Path(output_dir).expanduser()
    output_dir.mkdir(parents=True, exist_ok=True)

    nuspecs = find_nuspecs(repository)
    if not nuspecs:
        get_error_handler().warning(
            ErrorCategory.MISSING_RESOURCE,
            f"No .nuspec files in {repository.source_path}",
            "packaging",
            "build_and_package",
            details={"repository": repository.name},
        )

    packages: Set[Path] = set()
    for nuspec in nuspecs:
        result = runner.run(
            [
                tools.nuget,
                "pack",
                str(nuspec),
                "-Version",
                version,
                "-OutputDirectory",
                str(output_dir),
                "-Properties",
                f"Configuration={tools.configuration}",
                "-NonInteractive",
            ],
            cwd=nuspec.parent,
        )
        for line in result.lines:
            match = _CREATED_PACKAGE.search(line)
            if match:
                packages.add(Path(match.group("path")))

    get_workflow_logger().info(
        "packages_created", repository=repository.name, version=version, count=len(packages)
    )
    return packages


def _match_package_file(path: Path) -> re.Match:
    name = Path(path).name
    match = _PACKAGE_FILE.match(name)
    if not match:
        message = f"Not a package file name: {name}"
        get_error_handler().error(
            ErrorCategory.PARSING,
            message,
            "packaging",
            "parse_package_filename",
            details={"path": str(path)},
            suggestions=["Package files are named <id>.<version>.nupkg"],
        )
        raise PackagingError(message)
    return match


def parse_package_filename(path: Path) -> Tuple[str, str]:
    """
    Split ``<id>.<version>[.symbols].nupkg`` into id and version.

    Versions have three or four numeric parts and an optional prerelease
    label, e.g. ``Platform.Core.1.4.2-local20260101120000.nupkg``.

    Raises:
        PackagingError: If the name does not follow the NuGet convention
    """
    match = _match_package_file(path)
    return match.group("id"), match.group("version")


def is_symbols_package(path: Path) -> bool:
    """Symbol packages travel with their main package and are never pushed alone."""
    return _match_package_file(path).group("symbols") is not None


@dataclass
class PublishResult:
    pushed: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)


def publish_packages(
    packages: Sequence[Path],
    runner: ToolRunner,
    feed_url: str,
    api_key: Optional[str],
    nuget: str = "nuget",
    feed_client: Optional[FeedClient] = None,
    force: bool = False,
) -> PublishResult:
    """
    Push packages to the feed.

    Packages whose version is already on the feed are skipped unless
    ``force`` is set. ``feed_client`` must already be entered.

    Raises:
        ConfigurationError: If no API key is available
        PackagingError: If a file name is not <id>.<version>.nupkg
        ToolInvocationError: If a push fails; remaining packages are not pushed
    """
    if not api_key:
        raise ConfigurationError("No API key configured for publishing")

    result = PublishResult()
    for package in sorted(packages):
        if is_symbols_package(package):
            continue
        if feed_client is not None and not force:
            package_id, version = parse_package_filename(package)
            if feed_client.is_published(package_id, version):
                get_error_handler().warning(
                    ErrorCategory.CONFIGURATION,
                    f"{package_id} {version} is already published, skipping",
                    "packaging",
                    "publish_packages",
                )
                result.skipped.append(package)
                continue

        runner.run(
            [
                nuget,
                "push",
                str(package),
                "-Source",
                feed_url,
                "-ApiKey",
                api_key,
                "-NonInteractive",
            ],
            cwd=Path(package).parent,
        )
        result.pushed.append(package)

    return result
