"""
Git operations across the repository set: status, pull and hook installation.
"""

import re
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from .error_handling import (
    ConfigurationError,
    ErrorCategory,
    FilesystemError,
    MissingResourceError,
    get_error_handler,
)
from .repositories import Repository
from .structured_logging import get_workflow_logger
from .tools import ToolResult, ToolRunner

_BRANCH_LINE = re.compile(
    r"^## (?:No commits yet on |Initial commit on )?(?P<branch>[^.\s]+(?:\.[^.\s]+)*?)"
    r"(?:\.\.\.(?P<upstream>\S+))?"
    r"(?: \[(?P<tracking>[^\]]+)\])?$"
)


@dataclass(frozen=True)
class RepositoryStatus:
    """Summary of ``git status --porcelain --branch``."""

    repository: str
    branch: str
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    changed_files: int = 0
    untracked_files: int = 0

    @property
    def is_clean(self) -> bool:
        return self.changed_files == 0 and self.untracked_files == 0

    @property
    def is_synced(self) -> bool:
        return self.ahead == 0 and self.behind == 0


def parse_status_output(repository: str, output: str) -> RepositoryStatus:
    """Parse porcelain v1 output with the branch header line."""
    branch = "HEAD"
    upstream = None
    ahead = behind = changed = untracked = 0

    for line in output.splitlines():
        if line.startswith("## "):
            match = _BRANCH_LINE.match(line)
            if match:
                branch = match.group("branch")
                upstream = match.group("upstream")
                tracking = match.group("tracking") or ""
                if ahead_match := re.search(r"ahead (\d+)", tracking):
                    ahead = int(ahead_match.group(1))
                if behind_match := re.search(r"behind (\d+)", tracking):
                    behind = int(behind_match.group(1))
        elif line.startswith("??"):
            untracked += 1
        elif line.strip():
            changed += 1

    return RepositoryStatus(
        repository=repository,
        branch=branch,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        changed_files=changed,
        untracked_files=untracked,
    )


def _require_checkout(repository: Repository) -> None:
    if not repository.exists:
        raise MissingResourceError(f"Repository not found: {repository.path}")


def repository_status(
    repository: Repository, runner: ToolRunner, git: str = "git"
) -> RepositoryStatus:
    _require_checkout(repository)
    result = runner.run([git, "status", "--porcelain", "--branch"], cwd=repository.path)
    return parse_status_output(repository.name, result.stdout)


def pull_repository(
    repository: Repository,
    runner: ToolRunner,
    git: str = "git",
    pull_args: Sequence[str] = ("--ff-only",),
) -> ToolResult:
    _require_checkout(repository)
    get_workflow_logger().info("pulling_repository", repository=repository.name)
    return runner.run([git, "pull", *pull_args], cwd=repository.path)


@dataclass
class HookInstallResult:
    """Outcome of installing hooks into a set of repositories."""

    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    hooks: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def git_hooks_directory(repository: Repository) -> Optional[Path]:
    """
    Locate the hooks directory git uses for ``repository``.

    ``.git`` is a directory in an ordinary clone and a ``gitdir: <path>``
    file in linked worktrees and submodules. Worktrees share the hooks of
    the main repository, named by the ``commondir`` file in their git dir.

    Returns:
        Optional[Path]: The hooks directory, or None if ``.git`` does not
        lead to a git directory

    Raises:
        FilesystemError: If the ``.git`` file cannot be read
    """
    dot_git = repository.path / ".git"
    if dot_git.is_dir():
        return dot_git / "hooks"
    if not dot_git.is_file():
        return None

    try:
        pointer = dot_git.read_text(encoding="utf-8", errors="replace").strip()
        if not pointer.startswith("gitdir:"):
            return None
        git_dir = Path(pointer[len("gitdir:"):].strip())
        if not git_dir.is_absolute():
            git_dir = repository.path / git_dir
        if not git_dir.is_dir():
            return None

        common_file = git_dir / "commondir"
        if common_file.is_file():
            common_dir = Path(common_file.read_text(encoding="utf-8").strip())
            git_dir = common_dir if common_dir.is_absolute() else git_dir / common_dir
    except OSError as e:
        raise _filesystem_error(f"Cannot read {dot_git}: {e}", repository, e) from e

    return git_dir / "hooks"


def _filesystem_error(
    message: str, repository: Repository, exception: OSError
) -> FilesystemError:
    get_error_handler().error(
        ErrorCategory.FILESYSTEM,
        message,
        "git_ops",
        "install_hooks",
        exception=exception,
        details={"repository": repository.name},
    )
    return FilesystemError(message)


def _copy_hooks(
    repository: Repository, hook_files: Sequence[Path], target_dir: Path
) -> None:
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        for hook in hook_files:
            target = target_dir / hook.name
            shutil.copyfile(hook, target)
            mode = target.stat().st_mode
            target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as e:
        raise _filesystem_error(
            f"Cannot install hooks into {target_dir}: {e}", repository, e
        ) from e


def install_hooks(
    repositories: Sequence[Repository],
    hooks_dir: Path,
    on_invalid_repository: str = "skip",
) -> HookInstallResult:
    """
    Copy every hook script from ``hooks_dir`` into each repository.

    Args:
        repositories: Target repositories
        hooks_dir: Directory holding hook scripts (pre-commit, commit-msg, ...)
        on_invalid_repository: ``skip`` reports a repository that is not a
            git working copy as an error and continues; ``abort`` raises
            immediately

    Raises:
        MissingResourceError: If ``hooks_dir`` does not exist
        ConfigurationError: On an invalid repository with the ``abort`` policy
        FilesystemError: If a hook cannot be written; later repositories are
            not touched
    """
    error_handler = get_error_handler()
    hooks_dir = Path(hooks_dir)
    if not hooks_dir.is_dir():
        error_handler.critical(
            ErrorCategory.MISSING_RESOURCE,
            f"Hooks directory not found: {hooks_dir}",
            "git_ops",
            "install_hooks",
        )
        raise MissingResourceError(f"Hooks directory not found: {hooks_dir}")

    hook_files = sorted(p for p in hooks_dir.iterdir() if p.is_file())
    result = HookInstallResult(hooks=[p.name for p in hook_files])

    for repository in repositories:
        target_dir = git_hooks_directory(repository)
        if target_dir is None:
            message = f"{repository.name} is not a git working copy ({repository.path})"
            error_handler.error(
                ErrorCategory.CONFIGURATION,
                message,
                "git_ops",
                "install_hooks",
                details={"policy": on_invalid_repository},
            )
            if on_invalid_repository == "abort":
                raise ConfigurationError(message)
            result.skipped.append(repository.name)
            result.errors.append(message)
            continue

        _copy_hooks(repository, hook_files, target_dir)
        result.installed.append(repository.name)
        get_workflow_logger().info(
            "hooks_installed", repository=repository.name, hook_count=len(hook_files)
        )

    return result
