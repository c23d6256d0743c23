"""
Local update workflow.

Builds a repository's packages with a local prerelease version, drops them
into a local feed directory and points dependent repositories at them so
the change can be integration-tested before anything is published.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .manifests import aggregate_dependencies, find_manifests, update_manifest_versions
from .packaging import (
    BuildTools,
    build_and_package,
    find_solution,
    is_symbols_package,
    parse_package_filename,
    restore_solution,
)
from .repositories import Repository
from .structured_logging import get_workflow_logger
from .tools import ToolRunner
from .versioning import local_version, resolve_version


@dataclass
class LocalUpdateResult:
    """What a local update built and which manifests it rewrote."""

    source: str
    version: str
    packages: Dict[str, Path] = field(default_factory=dict)
    updated_manifests: Dict[str, List[Path]] = field(default_factory=dict)

    @property
    def updated_repositories(self) -> List[str]:
        return [name for name, paths in self.updated_manifests.items() if paths]


def find_dependents(
    package_ids: Sequence[str],
    candidates: Sequence[Repository],
    manifest_name: str = "packages.config",
) -> List[Repository]:
    """Repositories whose manifests reference any of ``package_ids``."""
    wanted = {package_id.lower() for package_id in package_ids}
    records = aggregate_dependencies(
        [repo for repo in candidates if repo.exists], manifest_name
    )
    referencing = {r.repository for r in records if r.package_id.lower() in wanted}
    return [repo for repo in candidates if repo.name in referencing]


def local_update(
    source: Repository,
    runner: ToolRunner,
    local_feed_dir: Path,
    targets: Optional[Sequence[Repository]] = None,
    candidates: Sequence[Repository] = (),
    tools: BuildTools = BuildTools(),
    git: str = "git",
    suffix: str = "local",
    stamp: Optional[str] = None,
    manifest_name: str = "packages.config",
    restore_sources: Sequence[str] = (),
) -> LocalUpdateResult:
    """
    Build ``source`` locally and substitute its packages into dependents.

    Args:
        source: Repository whose packages are built
        runner: Tool runner
        local_feed_dir: Directory the local packages are written to
        targets: Repositories to update; when None, every repository in
            ``candidates`` that references one of the built packages
        candidates: Repository set searched for dependents
        tools: nuget/msbuild executables and build configuration
        git: git executable used for version resolution
        suffix: Prerelease label for the local version
        stamp: Fixed prerelease stamp, defaults to the current UTC time
        manifest_name: Manifest file name
        restore_sources: Extra package sources used after the local feed

    Raises:
        ToolInvocationError: If any tool step fails; later steps are not run
        PackagingError: If nuget reports a package file that is not
            <id>.<version>.nupkg
    """
    logger = get_workflow_logger()
    local_feed_dir = Path(local_feed_dir).expanduser()

    version = local_version(resolve_version(source, runner, git), suffix, stamp)
    logger.info("local_update_started", repository=source.name, version=version)

    package_files = build_and_package(source, version, runner, local_feed_dir, tools)
    packages: Dict[str, Path] = {}
    for package_file in sorted(package_files):
        if is_symbols_package(package_file):
            continue
        package_id, _ = parse_package_filename(package_file)
        packages[package_id] = package_file

    result = LocalUpdateResult(source=source.name, version=version, packages=packages)

    if targets is None:
        targets = find_dependents(
            list(packages),
            [repo for repo in candidates if repo.name != source.name],
            manifest_name,
        )

    versions = {package_id: version for package_id in packages}
    for target in targets:
        changed = [
            manifest
            for manifest in find_manifests(target.source_path, manifest_name)
            if update_manifest_versions(manifest, versions)
        ]
        result.updated_manifests[target.name] = changed
        if not changed:
            continue

        restore_solution(
            find_solution(target),
            runner,
            tools.nuget,
            [str(local_feed_dir), *restore_sources],
        )
        logger.info(
            "repository_updated",
            repository=target.name,
            manifest_count=len(changed),
            version=version,
        )

    return result
