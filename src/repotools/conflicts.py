"""
Package version conflict detection across repositories.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Set

from .dependency import ConflictGroup, DependencyRecord
from .structured_logging import get_audit_logger


def filter_dev_dependencies(
    records: Iterable[DependencyRecord], skip_dev_dependencies: bool
) -> List[DependencyRecord]:
    """Drop development-only records when requested, keeping order."""
    if not skip_dev_dependencies:
        return list(records)
    return [record for record in records if not record.is_dev_dependency]


@dataclass(frozen=True)
class ConflictReport:
    """Result of a conflict check over an aggregated record table."""

    records: List[DependencyRecord]
    groups: List[ConflictGroup]

    @property
    def conflicts(self) -> List[ConflictGroup]:
        return [group for group in self.groups if group.is_conflicting]

    @property
    def conflicting_ids(self) -> FrozenSet[str]:
        return frozenset(group.package_id for group in self.conflicts)

    @property
    def has_conflicts(self) -> bool:
        return any(group.is_conflicting for group in self.groups)

    def is_conflicting(self, package_id: str) -> bool:
        return package_id in self.conflicting_ids

    def conflicting_records(self) -> Dict[str, List[DependencyRecord]]:
        """Records of each conflicting id, ordered by version then project."""
        grouped: Dict[str, List[DependencyRecord]] = {}
        for group in self.conflicts:
            grouped[group.package_id] = sorted(
                (r for r in self.records if r.package_id == group.package_id),
                key=lambda r: (r.version, r.referencing_project, r.repository),
            )
        return grouped


def detect_conflicts(
    records: Iterable[DependencyRecord], skip_dev_dependencies: bool = False
) -> ConflictReport:
    """
    Find package ids referenced at more than one distinct version.

    Args:
        records: Aggregated dependency records
        skip_dev_dependencies: Ignore records flagged as development-only

    Returns:
        ConflictReport whose groups are sorted by package id, so the result
        does not depend on the order of ``records``
    """
    table = filter_dev_dependencies(records, skip_dev_dependencies)

    unique_pairs = {(record.package_id, record.version) for record in table}
    versions_by_id: Dict[str, Set[str]] = defaultdict(set)
    for package_id, version in unique_pairs:
        versions_by_id[package_id].add(version)

    groups = [
        ConflictGroup(package_id=package_id, versions=frozenset(versions))
        for package_id, versions in sorted(versions_by_id.items())
    ]
    report = ConflictReport(records=table, groups=groups)

    get_audit_logger().info(
        "conflicts_detected",
        record_count=len(table),
        package_count=len(groups),
        conflict_count=len(report.conflicts),
        skip_dev_dependencies=skip_dev_dependencies,
    )
    return report
