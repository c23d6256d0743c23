"""
Dependency graph builder.

Emits the graph as an indexed edge list: one ``<index> <name>`` line per
node, a line holding ``#``, then one ``<from> <to>`` line per edge.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, TextIO

from .conflicts import filter_dev_dependencies
from .dependency import DependencyEdge, DependencyRecord, PackageNode
from .structured_logging import get_audit_logger

SEPARATOR = "#"


@dataclass
class DependencyGraph:
    """Nodes in first-seen order and edges in discovery order."""

    nodes: List[PackageNode] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)
    _index: Dict[str, int] = field(default_factory=dict, repr=False)

    def node_index(self, name: str) -> int:
        """Return the index of ``name``, assigning the next one on first sight."""
        index = self._index.get(name)
        if index is None:
            index = len(self.nodes) + 1
            self._index[name] = index
            self.nodes.append(PackageNode(index=index, name=name))
        return index

    def add_record(self, record: DependencyRecord) -> DependencyEdge:
        source = self.node_index(record.referencing_project)
        target = self.node_index(record.package_id)
        edge = DependencyEdge(source=source, target=target)
        self.edges.append(edge)
        return edge

    def lines(self) -> List[str]:
        output = [f"{node.index} {node.name}" for node in self.nodes]
        output.append(SEPARATOR)
        output.extend(f"{edge.source} {edge.target}" for edge in self.edges)
        return output

    def render(self) -> str:
        return "\n".join(self.lines()) + "\n"

    def write(self, stream: TextIO) -> None:
        stream.write(self.render())


def build_dependency_graph(
    records: Iterable[DependencyRecord], skip_dev_dependencies: bool = False
) -> DependencyGraph:
    """
    Build the project -> package graph from aggregated records.

    Every record becomes one edge, duplicates included. Node indices follow
    the order identities are first met, so identical input order always
    reproduces identical output.
    """
    graph = DependencyGraph()
    for record in filter_dev_dependencies(records, skip_dev_dependencies):
        graph.add_record(record)

    get_audit_logger().info(
        "graph_built", node_count=len(graph.nodes), edge_count=len(graph.edges)
    )
    return graph
