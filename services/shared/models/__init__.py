"""
Domain models for the Biomedical Graph Assistant.
"""

from services.shared.models.graph import (
    EntityType,
    ENTITY_TYPE_PRIORITY,
    VECTOR_INDEX_NAMES,
    QueryType,
    MatchReason,
    GraphNode,
    GraphRelationship,
    GraphData,
    VectorHit,
    RankedEntity,
    Source,
    infer_entity_type,
)
from services.shared.models.entities import (
    DrugFacts,
    DiseaseFacts,
    ProteinFacts,
    EntityFacts,
    entity_facts,
    build_excerpt,
    compose_embedding_text,
    describe_entity,
)

__all__ = [
    "EntityType",
    "ENTITY_TYPE_PRIORITY",
    "VECTOR_INDEX_NAMES",
    "QueryType",
    "MatchReason",
    "GraphNode",
    "GraphRelationship",
    "GraphData",
    "VectorHit",
    "RankedEntity",
    "Source",
    "infer_entity_type",
    "DrugFacts",
    "DiseaseFacts",
    "ProteinFacts",
    "EntityFacts",
    "entity_facts",
    "build_excerpt",
    "compose_embedding_text",
    "describe_entity",
]
