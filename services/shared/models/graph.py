"""
Graph and retrieval data types shared across services.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    """Closed set of searchable entity types."""

    DRUG = "Drug"
    DISEASE = "Disease"
    CLINICAL_DISEASE = "ClinicalDisease"
    PROTEIN = "Protein"


# Inference priority; the first entry is also the fallback type
ENTITY_TYPE_PRIORITY: tuple[EntityType, ...] = (
    EntityType.DRUG,
    EntityType.DISEASE,
    EntityType.CLINICAL_DISEASE,
    EntityType.PROTEIN,
)

VECTOR_INDEX_NAMES: dict[EntityType, str] = {
    EntityType.DRUG: "drug_embeddings",
    EntityType.DISEASE: "disease_embeddings",
    EntityType.CLINICAL_DISEASE: "clinical_disease_embeddings",
    EntityType.PROTEIN: "protein_embeddings",
}


class QueryType(str, Enum):
    """Search mode resolved for a query."""

    SEMANTIC = "semantic"
    STRUCTURAL = "structural"
    EXACT = "exact"
    HYBRID = "hybrid"


class MatchReason(str, Enum):
    """Why an entity appears in the ranked list."""

    SEMANTIC_MATCH = "semantic_match"
    SEMANTIC_AND_STRUCTURAL = "semantic_and_structural"
    STRUCTURAL_RELEVANCE = "structural_relevance"


def infer_entity_type(labels: tuple[str, ...] | list[str]) -> EntityType:
    """Pick the highest-priority entity type among node labels, defaulting to Drug."""
    for entity_type in ENTITY_TYPE_PRIORITY:
        if entity_type.value in labels:
            return entity_type
    return ENTITY_TYPE_PRIORITY[0]


@dataclass(frozen=True)
class GraphNode:
    """A node returned by the graph backend."""

    id: str
    labels: tuple[str, ...] = ()
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str | None:
        return self.properties.get("name")


@dataclass(frozen=True)
class GraphRelationship:
    """A relationship returned by the graph backend."""

    id: str
    type: str
    start_node_id: str
    end_node_id: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GraphData:
    """Deduplicated subgraph: nodes and relationships keyed by identity."""

    nodes: tuple[GraphNode, ...] = ()
    relationships: tuple[GraphRelationship, ...] = ()

    @classmethod
    def from_items(
        cls,
        nodes: list[GraphNode],
        relationships: list[GraphRelationship],
    ) -> "GraphData":
        """Build a subgraph, keeping the first occurrence of each id."""
        unique_nodes: dict[str, GraphNode] = {}
        for node in nodes:
            unique_nodes.setdefault(node.id, node)

        unique_rels: dict[str, GraphRelationship] = {}
        for rel in relationships:
            unique_rels.setdefault(rel.id, rel)

        return cls(
            nodes=tuple(unique_nodes.values()),
            relationships=tuple(unique_rels.values()),
        )

    @property
    def is_empty(self) -> bool:
        return not self.nodes and not self.relationships

    def node_index(self) -> dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}


@dataclass(frozen=True)
class VectorHit:
    """A single similarity-index match, tagged with the index's entity type."""

    id: str
    type: EntityType
    name: str
    properties: dict[str, Any]
    score: float


@dataclass
class RankedEntity:
    """An entity surfaced by retrieval with its fused relevance score."""

    id: str
    type: EntityType
    name: str
    properties: dict[str, Any]
    relevance_score: float
    match_reason: MatchReason


@dataclass(frozen=True)
class Source:
    """Citation unit returned with an answer."""

    entity_type: EntityType
    entity_name: str
    node_id: str
    relevance_score: float
    excerpt: str
    properties: dict[str, Any] = field(default_factory=dict)
