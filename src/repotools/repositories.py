"""
Known repositories of the product line and selector resolution.

KNOWN_REPOSITORIES is the single canonical list every command validates
its repository selector against.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .error_handling import ConfigurationError

ALL_SELECTOR = "all"

KNOWN_REPOSITORIES = (
    "Platform.Core",
    "Platform.Data",
    "Platform.Messaging",
    "Platform.Services",
    "Platform.Web",
    "Platform.Tools",
)


@dataclass(frozen=True)
class Repository:
    """A repository checked out under the workspace root."""

    name: str
    path: Path
    source_dir: str = "source"

    @property
    def source_path(self) -> Path:
        return self.path / self.source_dir

    @property
    def exists(self) -> bool:
        return self.path.is_dir()

    @property
    def is_git_repository(self) -> bool:
        return (self.path / ".git").exists()


def selector_choices(known: Sequence[str] = KNOWN_REPOSITORIES) -> List[str]:
    """Values accepted by a repository selector."""
    return [ALL_SELECTOR, *known]


def resolve_repository_names(
    selectors: Optional[Iterable[str]], known: Sequence[str] = KNOWN_REPOSITORIES
) -> List[str]:
    """
    Expand selectors into concrete repository names.

    An empty selection or the ``all`` selector yields every known
    repository in canonical order. Explicit names keep the caller's order,
    matched case-insensitively and deduplicated.

    Raises:
        ConfigurationError: If a selector names an unknown repository
    """
    selected = [s.strip() for s in (selectors or []) if s and s.strip()]
    if not selected or any(s.lower() == ALL_SELECTOR for s in selected):
        return list(known)

    by_lower = {name.lower(): name for name in known}
    names: List[str] = []
    unknown: List[str] = []
    for selector in selected:
        name = by_lower.get(selector.lower())
        if name is None:
            unknown.append(selector)
        elif name not in names:
            names.append(name)

    if unknown:
        raise ConfigurationError(
            f"Unknown repository: {', '.join(unknown)} "
            f"(expected one of: {', '.join(selector_choices(known))})"
        )

    return names


def resolve_repository_set(
    selectors: Optional[Iterable[str]],
    root: Path,
    known: Sequence[str] = KNOWN_REPOSITORIES,
    source_dir: str = "source",
) -> List[Repository]:
    """Resolve selectors into Repository objects rooted at ``root``."""
    return [
        Repository(name=name, path=Path(root) / name, source_dir=source_dir)
        for name in resolve_repository_names(selectors, known)
    ]


def get_repository(
    name: str,
    root: Path,
    known: Sequence[str] = KNOWN_REPOSITORIES,
    source_dir: str = "source",
) -> Repository:
    """Resolve exactly one named repository; ``all`` is not accepted."""
    if name.strip().lower() == ALL_SELECTOR:
        raise ConfigurationError("Expected a single repository name, not 'all'")
    return resolve_repository_set([name], root, known, source_dir)[0]
