# src/neoquery/orm/results.py
"""
Result reconstitution.

Turns driver rows into records: nodes become GraphNode (or a registered
GraphEntity), relationships become GraphEdge, and multi-column rows become
dicts keyed by placeholder or property name.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from neo4j.graph import Node, Path, Relationship

from neoquery.core.graph_edge import GraphEdge
from neoquery.core.graph_node import GraphNode
from neoquery.orm.entities import GraphEntity, get_entity_by_labels


RowSet = List[Dict[str, Any]]


def parse_identity(element_id: Any) -> Optional[int]:
    """
    Extract the integer identity from a driver element id.

    Element ids look like ``4:0d1f...:42``; the trailing segment is the
    integer identity ``id(n)`` returns.
    """
    if element_id is None:
        return None
    if isinstance(element_id, int):
        return element_id
    tail = str(element_id).rsplit(":", 1)[-1]
    return int(tail) if tail.lstrip("-").isdigit() else None


def _driver_identity(entity: Any) -> Optional[int]:
    identity = parse_identity(getattr(entity, "element_id", None))
    if identity is None:
        # Older drivers only expose the integer id.
        identity = getattr(entity, "id", None)
    return identity


def entity_identity(value: Any) -> Optional[int]:
    """Identity of a driver node, a GraphNode or a GraphEntity."""
    if value is None:
        return None
    if isinstance(value, (Node, Relationship)):
        return _driver_identity(value)
    return getattr(value, "id", None)


def node_to_record(node: Node) -> GraphNode:
    return GraphNode(
        id=_driver_identity(node),
        labels=node.labels,
        properties=dict(node.items()),
    )


def relationship_to_record(relationship: Relationship) -> GraphEdge:
    return GraphEdge(
        id=_driver_identity(relationship),
        start_id=_driver_identity(relationship.start_node) if relationship.start_node is not None else None,
        end_id=_driver_identity(relationship.end_node) if relationship.end_node is not None else None,
        relationship_type=relationship.type,
        properties=dict(relationship.items()),
    )


def to_record(value: Any) -> Any:
    """Convert one driver value, recursing into lists, maps and paths."""
    if isinstance(value, Node):
        return node_to_record(value)
    if isinstance(value, Relationship):
        return relationship_to_record(value)
    if isinstance(value, Path):
        return {
            "nodes": [node_to_record(node) for node in value.nodes],
            "relationships": [relationship_to_record(rel) for rel in value.relationships],
        }
    if isinstance(value, (list, tuple)):
        return [to_record(item) for item in value]
    if isinstance(value, Mapping):
        return {key: to_record(item) for key, item in value.items()}
    return value


def hydrate(value: Any, entity: Optional[type] = None) -> Any:
    """
    Turn a GraphNode into an entity instance.

    Without an explicit entity class the node's labels are looked up in the
    entity registry; unknown labels leave the GraphNode as is.
    """
    if not isinstance(value, GraphNode):
        return value
    entity = entity or get_entity_by_labels(value.labels)
    return entity.from_node(value) if entity is not None else value


def _column_name(key: str, alias: Optional[str]) -> str:
    if alias and key.startswith(f"{alias}."):
        return key[len(alias) + 1:]
    return key


def rows_to_records(rows: Iterable[Mapping[str, Any]], alias: Optional[str] = None, entity: Optional[type] = None) -> List[Any]:
    """
    Reconstitute a row set.

    Rows holding a single node become one record each. Any other row becomes
    a dict: keys prefixed with the primary ``alias`` lose the prefix, nodes
    under ``alias`` are hydrated into ``entity``, and other nodes are
    hydrated from the registry by their labels.
    """
    records: List[Any] = []
    for row in rows:
        if len(row) == 1:
            value = to_record(next(iter(row.values())))
            if isinstance(value, GraphNode):
                records.append(hydrate(value, entity))
                continue

        record: Dict[str, Any] = {}
        for key, value in row.items():
            value = to_record(value)
            record[_column_name(key, alias)] = hydrate(value, entity if key == alias else None)
        records.append(record)
    return records


def get_records_by_placeholders(rows: Iterable[Mapping[str, Any]]) -> Dict[str, List[Any]]:
    """Group every column of a row set by its placeholder, in row order."""
    grouped: Dict[str, List[Any]] = {}
    for row in rows:
        for key, value in row.items():
            grouped.setdefault(key, []).append(to_record(value))
    return grouped


def relation_pairs(rows: Iterable[Mapping[str, Any]], parent_alias: str, related_alias: str) -> List[Tuple[Any, Any]]:
    """
    ``(parent, related)`` pairs from rows returned by a relation match.

    The related side is None when an optional match found nothing.
    """
    pairs = []
    for row in rows:
        if parent_alias not in row:
            continue
        parent = hydrate(to_record(row[parent_alias]))
        related = row.get(related_alias)
        pairs.append((parent, hydrate(to_record(related)) if related is not None else None))
    return pairs


def match_eager(
    parents: Sequence[Any],
    rows: Iterable[Mapping[str, Any]],
    relation: str,
    parent_alias: str,
    related_alias: str,
    many: bool = True,
) -> Sequence[Any]:
    """
    Attach related records to their parents by identity.

    Parents are indexed by identity once, so each row is attached in
    constant time. ``many=False`` keeps a single related record per parent.
    """
    index: Dict[Any, Any] = {}
    for parent in parents:
        identity = entity_identity(parent)
        if identity is not None:
            index[identity] = parent
            _set_relation(parent, relation, [] if many else None)

    for parent_record, related in relation_pairs(rows, parent_alias, related_alias):
        owner = index.get(entity_identity(parent_record))
        if owner is None or related is None:
            continue
        if many:
            current = _get_relation(owner, relation) or []
            if not any(entity_identity(item) == entity_identity(related) for item in current):
                current.append(related)
            _set_relation(owner, relation, current)
        else:
            _set_relation(owner, relation, related)
    return parents


def _set_relation(record: Any, name: str, value: Any) -> None:
    if isinstance(record, (GraphNode, GraphEntity)):
        record.set_relation(name, value)
    else:
        record[name] = value


def _get_relation(record: Any, name: str) -> Any:
    if isinstance(record, (GraphNode, GraphEntity)):
        return record.get_relation(name)
    return record.get(name)
