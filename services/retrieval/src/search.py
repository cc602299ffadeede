"""
Hybrid search service for the Biomedical Graph Assistant.

Combines per-type vector similarity search with bounded graph expansion
and fuses similarity and degree centrality into one ranking.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from services.shared.config import Settings, get_settings
from services.shared.exceptions import (
    GraphBackendError,
    ProviderError,
    RetrievalError,
    ValidationError,
)
from services.shared.logging import get_logger
from services.shared.models.graph import (
    ENTITY_TYPE_PRIORITY,
    VECTOR_INDEX_NAMES,
    EntityType,
    GraphData,
    MatchReason,
    QueryType,
    RankedEntity,
    VectorHit,
    infer_entity_type,
)

logger = get_logger(__name__)

# Score fusion weights
SEMANTIC_WEIGHT = 0.7
STRUCTURAL_WEIGHT = 0.3
STRUCTURAL_ONLY_WEIGHT = 0.5
MIN_STRUCTURAL_CENTRALITY = 0.1

# Keyword routing, checked in order
ROUTING_KEYWORDS: tuple[tuple[QueryType, tuple[str, ...]], ...] = (
    (QueryType.SEMANTIC, ("similar", "like")),
    (QueryType.STRUCTURAL, ("pathway", "mechanism")),
    (QueryType.EXACT, ("list all", "show all")),
)


class GraphBackend(Protocol):
    async def vector_search(
        self, index_name: str, k: int, embedding: list[float]
    ) -> list[dict[str, Any]]: ...

    async def expand(
        self, seed_ids: list[str], max_hops: int, path_limit: int = 50
    ) -> GraphData: ...


class QueryEmbedder(Protocol):
    async def embed_query(self, query: str) -> list[float]: ...


@dataclass
class SearchOptions:
    """Options for a hybrid search."""

    mode: QueryType | None = None
    entity_types: list[EntityType] | None = None
    limit: int | None = None
    max_hops: int | None = None


@dataclass
class SearchResult:
    """Ranked entities, the expanded subgraph and the resolved mode."""

    entities: list[RankedEntity]
    graph_data: GraphData = field(default_factory=GraphData)
    query_type: QueryType = QueryType.HYBRID
    took_ms: float = 0.0


def route_query(query: str, mode: QueryType | str | None = None) -> QueryType:
    """
    Resolve the search mode for a query.

    A caller-supplied mode wins. Otherwise keywords are checked in order:
    similarity phrasing, then mechanism/pathway phrasing, then exhaustive
    listing phrasing; anything else is hybrid.

    The resolved mode is reported with the results but does not select a
    different retrieval strategy: every mode runs the same vector search
    and expansion. Changing that is a product decision.
    """
    if mode:
        return QueryType(mode)

    lower_query = query.lower()
    for query_type, keywords in ROUTING_KEYWORDS:
        if any(keyword in lower_query for keyword in keywords):
            return query_type

    return QueryType.HYBRID


def calculate_centrality(graph_data: GraphData) -> dict[str, float]:
    """Degree of each node within the subgraph, normalised by the max degree."""
    connections: dict[str, int] = {}
    for rel in graph_data.relationships:
        connections[rel.start_node_id] = connections.get(rel.start_node_id, 0) + 1
        connections[rel.end_node_id] = connections.get(rel.end_node_id, 0) + 1

    max_connections = max(connections.values(), default=0)
    max_connections = max(max_connections, 1)

    return {node_id: count / max_connections for node_id, count in connections.items()}


def rank_results(vector_hits: list[VectorHit], graph_data: GraphData) -> list[RankedEntity]:
    """
    Fuse similarity scores with subgraph centrality.

    Vector hits seed the ranking with their similarity. Subgraph nodes that
    were also hits are blended 0.7/0.3 with their centrality; nodes found
    only by expansion are added at half their centrality when it exceeds
    0.1. Sorting is stable, so equal scores keep insertion order.
    """
    ranked: dict[str, RankedEntity] = {}

    for hit in vector_hits:
        if hit.id in ranked:
            continue
        ranked[hit.id] = RankedEntity(
            id=hit.id,
            type=hit.type,
            name=hit.name,
            properties=hit.properties,
            relevance_score=min(max(hit.score, 0.0), 1.0),
            match_reason=MatchReason.SEMANTIC_MATCH,
        )

    centrality_scores = calculate_centrality(graph_data)

    for node in graph_data.nodes:
        centrality = centrality_scores.get(node.id, 0.0)
        existing = ranked.get(node.id)

        if existing is not None:
            existing.relevance_score = (
                existing.relevance_score * SEMANTIC_WEIGHT + centrality * STRUCTURAL_WEIGHT
            )
            existing.match_reason = MatchReason.SEMANTIC_AND_STRUCTURAL
        elif centrality > MIN_STRUCTURAL_CENTRALITY:
            ranked[node.id] = RankedEntity(
                id=node.id,
                type=infer_entity_type(node.labels),
                name=node.properties.get("name") or "Unknown",
                properties=node.properties,
                relevance_score=centrality * STRUCTURAL_ONLY_WEIGHT,
                match_reason=MatchReason.STRUCTURAL_RELEVANCE,
            )

    return sorted(ranked.values(), key=lambda e: e.relevance_score, reverse=True)


class HybridSearchService:
    """
    Search service combining vector similarity and graph structure.

    Pipeline for every query: embed, per-type vector search, expand the
    neighbourhood of the hits, rank.
    """

    # Maximum query length to prevent abuse
    MAX_QUERY_LENGTH = 10000

    def __init__(
        self,
        graph: GraphBackend,
        embedder: QueryEmbedder | None = None,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.settings = settings or get_settings()
        self._embedder = embedder

    @property
    def embedder(self) -> QueryEmbedder:
        """Lazy initialization of embedder."""
        if self._embedder is None:
            from services.ingestion.src.embedder import get_embedder

            self._embedder = get_embedder(self.settings)
        return self._embedder

    def _resolve_options(self, options: SearchOptions) -> tuple[int, int, list[EntityType]]:
        limit = (
            options.limit if options.limit is not None else self.settings.retrieval_default_limit
        )
        max_hops = (
            options.max_hops
            if options.max_hops is not None
            else self.settings.retrieval_default_max_hops
        )

        if not 1 <= limit <= self.settings.retrieval_max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.retrieval_max_limit}"
            )
        if not 1 <= max_hops <= self.settings.retrieval_max_hops_limit:
            raise ValidationError(
                f"max_hops must be between 1 and {self.settings.retrieval_max_hops_limit}"
            )

        try:
            entity_types = [EntityType(t) for t in (options.entity_types or ENTITY_TYPE_PRIORITY)]
        except ValueError as e:
            raise ValidationError(f"Unknown entity type: {e}") from e

        return limit, max_hops, entity_types

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResult:
        """
        Execute a hybrid search.

        Args:
            query: Natural-language question
            options: Mode, entity types, limit and hop bound

        Returns:
            SearchResult with ranked entities, subgraph and resolved mode

        Raises:
            ValidationError: If the query or options are malformed
            RetrievalError: If the embedding provider or graph backend fails
        """
        options = options or SearchOptions()

        if not query or not query.strip():
            raise ValidationError("Query cannot be empty")
        if len(query) > self.MAX_QUERY_LENGTH:
            raise ValidationError(
                f"Query exceeds maximum length of {self.MAX_QUERY_LENGTH} characters"
            )
        try:
            query_type = route_query(query, options.mode)
        except ValueError as e:
            raise ValidationError(f"Unknown search mode: {options.mode}") from e
        limit, max_hops, entity_types = self._resolve_options(options)

        start_time = time.time()

        try:
            embedding = await self.embedder.embed_query(query)
            vector_hits = await self.vector_search(embedding, entity_types, limit)
            graph_data = await self.expand_graph([hit.id for hit in vector_hits], max_hops)
        except (ProviderError, GraphBackendError) as e:
            logger.error(
                "search_failed",
                query=query[:100],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalError(
                f"Retrieval failed: {e.message}",
                details={"cause": type(e).__name__},
            ) from e

        entities = rank_results(vector_hits, graph_data)
        took_ms = (time.time() - start_time) * 1000

        logger.info(
            "search_completed",
            query=query[:100],
            query_type=query_type.value,
            vector_hits=len(vector_hits),
            nodes=len(graph_data.nodes),
            relationships=len(graph_data.relationships),
            results=len(entities),
            took_ms=took_ms,
        )

        return SearchResult(
            entities=entities,
            graph_data=graph_data,
            query_type=query_type,
            took_ms=took_ms,
        )

    async def vector_search(
        self,
        embedding: list[float],
        entity_types: list[EntityType] | None = None,
        limit: int = 10,
    ) -> list[VectorHit]:
        """
        Search each entity type's vector index and merge the hits.

        Hits are merged in type order then index order and stably sorted by
        descending score, so ties always resolve the same way.
        """
        hits: list[VectorHit] = []

        for entity_type in entity_types or ENTITY_TYPE_PRIORITY:
            entity_type = EntityType(entity_type)
            rows = await self.graph.vector_search(
                VECTOR_INDEX_NAMES[entity_type], limit, embedding
            )
            for row in rows:
                hits.append(
                    VectorHit(
                        id=row["id"],
                        type=entity_type,
                        name=row.get("name") or "Unknown",
                        properties=row.get("properties") or {},
                        score=float(row["score"]),
                    )
                )

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def expand_graph(self, seed_ids: list[str], max_hops: int = 2) -> GraphData:
        """Bounded-hop neighbourhood around the seeds. Empty seeds issue no query."""
        if not seed_ids:
            return GraphData()

        graph_data = await self.graph.expand(
            list(dict.fromkeys(seed_ids)),
            max_hops,
            path_limit=self.settings.retrieval_path_limit,
        )
        return GraphData.from_items(list(graph_data.nodes), list(graph_data.relationships))


def get_search_service(
    graph: GraphBackend | None = None,
    settings: Settings | None = None,
) -> HybridSearchService:
    """Factory function to get a configured search service."""
    if graph is None:
        from services.shared.graph import get_graph_client

        graph = get_graph_client(settings)
    return HybridSearchService(graph=graph, settings=settings)
