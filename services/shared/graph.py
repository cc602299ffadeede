"""
Neo4j graph backend access for the Biomedical Graph Assistant.

Wraps the async Neo4j driver behind the few operations the core needs:
similarity search over a named vector index, bounded neighbourhood
expansion, and the reads/writes used by the embedding job.
"""

from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from services.shared.config import Settings, get_settings
from services.shared.exceptions import GraphBackendError
from services.shared.logging import get_logger
from services.shared.models.graph import (
    ENTITY_TYPE_PRIORITY,
    VECTOR_INDEX_NAMES,
    EntityType,
    GraphData,
    GraphNode,
    GraphRelationship,
)

logger = get_logger(__name__)

EMBEDDING_PROPERTY = "embedding"
EMBEDDING_DIMENSIONS = 1536

VECTOR_QUERY = """
CALL db.index.vector.queryNodes($index_name, $k, $embedding)
YIELD node, score
RETURN elementId(node) AS id,
       labels(node) AS labels,
       node.name AS name,
       properties(node) AS properties,
       score
ORDER BY score DESC
"""

# max_hops is interpolated (variable-length bounds cannot be parameters);
# it is validated as a bounded int before use.
EXPAND_QUERY_TEMPLATE = """
MATCH (start)
WHERE elementId(start) IN $seed_ids
CALL {{
  WITH start
  MATCH path = (start)-[*1..{max_hops}]-(connected)
  RETURN path
  LIMIT $path_limit
}}
WITH collect(path) AS paths
UNWIND paths AS path
UNWIND nodes(path) AS node
WITH collect(DISTINCT node) AS allNodes, paths
UNWIND paths AS path
UNWIND relationships(path) AS rel
WITH allNodes, collect(DISTINCT rel) AS allRels
RETURN allNodes AS nodes, allRels AS relationships
"""

STORE_EMBEDDINGS_TEMPLATE = """
UNWIND $updates AS update
MATCH (n:`{label}`)
WHERE elementId(n) = update.id
SET n.{prop} = update.embedding
"""

VECTOR_INDEX_TEMPLATE = """
CREATE VECTOR INDEX {index_name} IF NOT EXISTS
FOR (n:`{label}`) ON (n.{prop})
OPTIONS {{indexConfig: {{
  `vector.dimensions`: {dimensions},
  `vector.similarity_function`: 'cosine'
}}}}
"""


def _to_graph_node(node: Any) -> GraphNode:
    """Convert a driver Node into a GraphNode."""
    properties = dict(node.items())
    properties.pop(EMBEDDING_PROPERTY, None)
    return GraphNode(
        id=node.element_id,
        labels=tuple(sorted(node.labels)),
        properties=properties,
    )


def _to_graph_relationship(rel: Any) -> GraphRelationship:
    """Convert a driver Relationship into a GraphRelationship."""
    return GraphRelationship(
        id=rel.element_id,
        type=rel.type,
        start_node_id=rel.start_node.element_id,
        end_node_id=rel.end_node.element_id,
        properties=dict(rel.items()),
    )


class Neo4jGraphClient:
    """Async graph backend client."""

    def __init__(self, driver: AsyncDriver, database: str | None = None):
        self._driver = driver
        self._database = database

    async def _run(self, query: str, parameters: dict[str, Any] | None = None) -> list[Any]:
        """Run a query and return all records, translating driver errors."""
        try:
            async with self._driver.session(database=self._database) as session:
                result = await session.run(query, parameters or {})
                return [record async for record in result]
        except (Neo4jError, DriverError) as e:
            logger.error("graph_query_failed", error=str(e), error_type=type(e).__name__)
            raise GraphBackendError(
                f"Graph query failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e

    async def vector_search(
        self,
        index_name: str,
        k: int,
        embedding: list[float],
    ) -> list[dict[str, Any]]:
        """
        Query a vector index for the top-k most similar nodes.

        Returns:
            Rows with id, labels, name, properties and score, in the order
            returned by the index (descending score).
        """
        records = await self._run(
            VECTOR_QUERY,
            {"index_name": index_name, "k": k, "embedding": embedding},
        )

        rows = []
        for record in records:
            properties = dict(record["properties"] or {})
            properties.pop(EMBEDDING_PROPERTY, None)
            rows.append(
                {
                    "id": record["id"],
                    "labels": list(record["labels"] or []),
                    "name": record["name"],
                    "properties": properties,
                    "score": float(record["score"]),
                }
            )
        return rows

    async def expand(
        self,
        seed_ids: list[str],
        max_hops: int,
        path_limit: int = 50,
    ) -> GraphData:
        """Collect nodes and relationships within max_hops of the seeds."""
        if not seed_ids:
            return GraphData()
        if not isinstance(max_hops, int) or max_hops < 1:
            raise ValueError(f"max_hops must be a positive int, got {max_hops!r}")

        records = await self._run(
            EXPAND_QUERY_TEMPLATE.format(max_hops=max_hops),
            {"seed_ids": list(seed_ids), "path_limit": path_limit},
        )
        if not records:
            return GraphData()

        record = records[0]
        return GraphData.from_items(
            [_to_graph_node(n) for n in record["nodes"] or []],
            [_to_graph_relationship(r) for r in record["relationships"] or []],
        )

    async def fetch_entities(
        self,
        entity_type: EntityType,
        limit: int = 100_000,
    ) -> list[GraphNode]:
        """Fetch all nodes carrying an entity type label."""
        records = await self._run(
            f"MATCH (n:`{EntityType(entity_type).value}`) RETURN n LIMIT $limit",
            {"limit": limit},
        )
        return [_to_graph_node(record["n"]) for record in records]

    async def store_embeddings(
        self,
        entity_type: EntityType,
        updates: list[tuple[str, list[float]]],
    ) -> None:
        """Write embedding vectors back onto nodes."""
        if not updates:
            return
        query = STORE_EMBEDDINGS_TEMPLATE.format(
            label=EntityType(entity_type).value, prop=EMBEDDING_PROPERTY
        )
        await self._run(
            query,
            {"updates": [{"id": node_id, "embedding": vector} for node_id, vector in updates]},
        )

    async def ensure_vector_indexes(
        self,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        """Create the per-type vector indexes when missing."""
        for entity_type in ENTITY_TYPE_PRIORITY:
            query = VECTOR_INDEX_TEMPLATE.format(
                index_name=VECTOR_INDEX_NAMES[entity_type],
                label=entity_type.value,
                prop=EMBEDDING_PROPERTY,
                dimensions=int(dimensions),
            )
            await self._run(query)
            logger.info(
                "vector_index_ensured",
                index=VECTOR_INDEX_NAMES[entity_type],
                label=entity_type.value,
            )

    async def health_check(self) -> dict[str, Any]:
        """
        Perform graph backend health check.

        Returns:
            Health check result with status. Error details are logged
            but not returned.
        """
        try:
            await self._run("RETURN 1 AS ok")
            return {"status": "healthy", "database": self._database}
        except GraphBackendError:
            return {
                "status": "unhealthy",
                "error": "Graph connection failed. Check server logs for details.",
            }

    async def close(self) -> None:
        await self._driver.close()


# Process-wide client (initialized lazily)
_client: Neo4jGraphClient | None = None


def get_graph_client(settings: Settings | None = None) -> Neo4jGraphClient:
    """
    Get or create the shared graph client.

    Args:
        settings: Optional settings override

    Returns:
        Graph client bound to a pooled async driver
    """
    global _client

    if _client is None:
        if settings is None:
            settings = get_settings()

        driver = AsyncGraphDatabase.driver(
            settings.neo4j_uri,
            auth=(settings.neo4j_username, settings.neo4j_password),
            max_connection_pool_size=settings.neo4j_max_pool_size,
            connection_timeout=settings.neo4j_connection_timeout,
        )
        _client = Neo4jGraphClient(driver, database=settings.neo4j_database)

    return _client


async def init_graph(settings: Settings | None = None) -> Neo4jGraphClient:
    """
    Initialize the graph client and verify connectivity.

    Raises:
        GraphBackendError: If the database cannot be reached
    """
    client = get_graph_client(settings)
    try:
        await client._driver.verify_connectivity()
    except (Neo4jError, DriverError, OSError) as e:
        logger.error("graph_connect_failed", error=str(e))
        raise GraphBackendError(f"Could not connect to Neo4j: {e}") from e

    logger.info("graph_connected")
    return client


async def close_graph() -> None:
    """Close the shared driver."""
    global _client

    if _client is not None:
        await _client.close()
        logger.info("graph_disconnected")
        _client = None
