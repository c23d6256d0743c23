# In src/repotools/dependency.py
from dataclasses import dataclass, field
from typing import FrozenSet


@dataclass(frozen=True)
class DependencyRecord:
    """One package reference read from a project manifest."""

    referencing_project: str
    package_id: str
    version: str
    is_dev_dependency: bool = False
    repository: str = field(default="", compare=False)
    manifest_path: str = field(default="", compare=False)


@dataclass(frozen=True)
class PackageNode:
    """A project or package identity in the dependency graph."""

    index: int
    name: str


@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge from a referencing project to a referenced package."""

    source: int
    target: int


@dataclass(frozen=True)
class ConflictGroup:
    """All distinct versions of one package id in use."""

    package_id: str
    versions: FrozenSet[str]

    @property
    def is_conflicting(self) -> bool:
        return len(self.versions) > 1
