"""
Entity embedding job.

Populates the per-type vector indexes: composes a text per entity, embeds
it in batches and writes the vector back onto the node.

Usage:
    python -m services.ingestion.src.indexer
    python -m services.ingestion.src.indexer --entity-type Drug --batch-size 50
"""

import argparse
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Protocol

from services.ingestion.src.embedder import Embedder, get_embedder
from services.shared.config import Settings, get_settings
from services.shared.exceptions import KnowledgeGraphChatError, ValidationError
from services.shared.graph import close_graph, init_graph
from services.shared.logging import bound_correlation_id, configure_logging, get_logger
from services.shared.models.entities import compose_embedding_text, entity_facts
from services.shared.models.graph import ENTITY_TYPE_PRIORITY, EntityType, GraphNode

logger = get_logger(__name__)


class EntityGraph(Protocol):
    async def ensure_vector_indexes(self, dimensions: int = ...) -> None: ...

    async def fetch_entities(self, entity_type: EntityType, limit: int = ...) -> list[GraphNode]: ...

    async def store_embeddings(
        self, entity_type: EntityType, updates: list[tuple[str, list[float]]]
    ) -> None: ...


def estimate_tokens(text: str) -> int:
    """Rough token count, about four characters per token."""
    return math.ceil(len(text) / 4)


@dataclass
class EmbeddingStats:
    """Outcome of an embedding run."""

    total: int = 0
    processed: int = 0
    failed: int = 0
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    duration_seconds: float = 0.0


class EntityEmbeddingJob:
    """Embeds graph entities and stores the vectors on their nodes."""

    def __init__(
        self,
        graph: EntityGraph,
        embedder: Embedder | None = None,
        settings: Settings | None = None,
    ):
        self.graph = graph
        self.settings = settings or get_settings()
        self.embedder = embedder or get_embedder(self.settings)

    async def run(
        self,
        entity_type: EntityType | str | None = None,
        batch_size: int | None = None,
    ) -> EmbeddingStats:
        """
        Embed every entity of one type, or of all types in priority order.

        A batch that fails is logged and counted as failed; the remaining
        batches still run.

        Args:
            entity_type: Restrict the run to one type
            batch_size: Entities per embedding batch

        Returns:
            EmbeddingStats for the run
        """
        if batch_size is None:
            batch_size = self.settings.embedding_batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")

        entity_types = [EntityType(entity_type)] if entity_type else list(ENTITY_TYPE_PRIORITY)
        stats = EmbeddingStats()
        start_time = time.time()

        await self.graph.ensure_vector_indexes(self.embedder.dimensions)

        for current_type in entity_types:
            await self._embed_type(current_type, batch_size, stats)

        stats.estimated_cost = (
            stats.estimated_tokens / 1_000_000 * self.settings.embedding_cost_per_million_tokens
        )
        stats.duration_seconds = time.time() - start_time

        logger.info(
            "embedding_job_completed",
            total=stats.total,
            processed=stats.processed,
            failed=stats.failed,
            estimated_tokens=stats.estimated_tokens,
            estimated_cost=round(stats.estimated_cost, 6),
            duration_seconds=round(stats.duration_seconds, 2),
        )
        return stats

    async def _embed_type(
        self,
        entity_type: EntityType,
        batch_size: int,
        stats: EmbeddingStats,
    ) -> None:
        nodes = await self.graph.fetch_entities(entity_type)
        stats.total += len(nodes)

        logger.info("embedding_type_started", entity_type=entity_type.value, entities=len(nodes))

        for i in range(0, len(nodes), batch_size):
            if i > 0 and self.settings.embedding_batch_pause_seconds > 0:
                await asyncio.sleep(self.settings.embedding_batch_pause_seconds)

            batch = nodes[i : i + batch_size]
            texts = [
                compose_embedding_text(entity_facts(entity_type, node.properties))
                for node in batch
            ]
            try:
                # One call per batch; pacing between batches happens here
                embeddings = await self.embedder.embed_texts(
                    texts, batch_size=len(texts), pause_seconds=0
                )
                await self.graph.store_embeddings(
                    entity_type,
                    [(node.id, vector) for node, vector in zip(batch, embeddings)],
                )
            except KnowledgeGraphChatError as e:
                stats.failed += len(batch)
                logger.error(
                    "embedding_batch_failed",
                    entity_type=entity_type.value,
                    batch_start=i,
                    batch_size=len(batch),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            stats.processed += len(batch)
            stats.estimated_tokens += sum(estimate_tokens(text) for text in texts)

            logger.info(
                "embedding_batch_stored",
                entity_type=entity_type.value,
                processed=min(i + batch_size, len(nodes)),
                total=len(nodes),
            )


async def main(argv: list[str] | None = None) -> EmbeddingStats:
    parser = argparse.ArgumentParser(
        description="Generate and store embeddings for graph entities"
    )
    parser.add_argument(
        "--entity-type",
        choices=[t.value for t in EntityType],
        help="Only embed entities of this type (default: all types)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Entities per embedding batch",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings, service_name="embedding-indexer")

    with bound_correlation_id():
        graph = await init_graph(settings)
        try:
            job = EntityEmbeddingJob(graph, settings=settings)
            return await job.run(entity_type=args.entity_type, batch_size=args.batch_size)
        finally:
            await close_graph()


def run() -> None:
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
