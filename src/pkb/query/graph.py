"""Relationship graph traversal."""

from collections import deque

from ..models import GraphEdge, GraphNode, KnowledgeGraph, Relationship
from ..storage.metadata import DOCUMENT_SOURCE, MetadataStore


def build_adjacency(relationships: list[Relationship]) -> dict[str, list[Relationship]]:
    """Undirected adjacency: every relationship is reachable from both endpoints."""
    graph: dict[str, list[Relationship]] = {}
    for rel in relationships:
        graph.setdefault(rel.source_id, []).append(rel)
        graph.setdefault(rel.target_id, []).append(rel)
    return graph


def find_related(start_id: str, adjacency: dict[str, list[Relationship]], depth: int = 2, max_nodes: int = 100) -> list[str]:
    """Breadth-first walk from ``start_id``.

    Args:
        start_id: Node to start from.
        adjacency: Output of ``build_adjacency``.
        depth: How many hops to traverse.
        max_nodes: Stop once this many nodes have been collected.

    Returns:
        Node ids in visit order, ``start_id`` first.
    """
    visited = [start_id]
    seen = {start_id}
    queue = deque([(start_id, 0)])

    while queue and len(visited) < max_nodes:
        node, level = queue.popleft()
        if level >= depth:
            continue
        for rel in adjacency.get(node, []):
            other = rel.target_id if rel.source_id == node else rel.source_id
            if other in seen:
                continue
            seen.add(other)
            visited.append(other)
            if len(visited) >= max_nodes:
                break
            queue.append((other, level + 1))

    return visited


def build_knowledge_graph(
    store: MetadataStore,
    *,
    document_id: str | None = None,
    concept_id: str | None = None,
    depth: int = 2,
    min_weight: float = 0.5,
    max_nodes: int = 100,
) -> KnowledgeGraph:
    """Subgraph around a document or concept, or the heaviest edges overall."""
    start = document_id or concept_id

    if start:
        relationships = store.list_relationships(min_weight)
        adjacency = build_adjacency(relationships)
        node_ids = find_related(start, adjacency, depth, max_nodes)
    else:
        relationships = store.top_relationships(min_weight, max_nodes)
        node_ids = []
        for rel in relationships:
            for nid in (rel.source_id, rel.target_id):
                if nid not in node_ids and len(node_ids) < max_nodes:
                    node_ids.append(nid)

    document_ids = {r.source_id for r in relationships if r.source_type == DOCUMENT_SOURCE}
    if document_id:
        document_ids.add(document_id)
    documents = store.get_documents([n for n in node_ids if n in document_ids])
    concepts = store.get_concepts([n for n in node_ids if n not in document_ids])

    nodes: list[GraphNode] = []
    for nid in node_ids:
        if nid in documents:
            nodes.append(GraphNode(id=nid, label=documents[nid].title, type="document", weight=1.0))
        elif nid in concepts:
            concept = concepts[nid]
            nodes.append(
                GraphNode(id=nid, label=concept.name, type=concept.type.value.lower(), weight=float(concept.frequency))
            )

    present = {n.id for n in nodes}
    edges = [
        GraphEdge(source=r.source_id, target=r.target_id, label=r.relationship_type.value, weight=r.weight)
        for r in relationships
        if r.source_id in present and r.target_id in present
    ]
    return KnowledgeGraph(nodes=nodes, edges=edges)
