"""
Tests for the entity embedding job.
"""

import pytest

from services.ingestion.src.embedder import Embedder
from services.ingestion.src.indexer import EntityEmbeddingJob, estimate_tokens
from services.shared.exceptions import ValidationError
from services.shared.models.entities import DrugFacts, compose_embedding_text
from services.shared.models.graph import EntityType


class TestEstimateTokens:
    def test_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


class TestEntityEmbeddingJob:
    """Tests for EntityEmbeddingJob.run."""

    @pytest.mark.asyncio
    async def test_embeds_all_types(self, entity_graph, fake_provider, test_settings):
        job = EntityEmbeddingJob(entity_graph, Embedder(fake_provider, test_settings), test_settings)

        stats = await job.run(batch_size=2)

        assert stats.total == 5
        assert stats.processed == 5
        assert stats.failed == 0
        assert set(entity_graph.stored) == {
            "drug-0",
            "drug-1",
            "drug-2",
            "disease-1",
            "protein-1",
        }
        assert entity_graph.index_dimensions == [1536]
        # Drugs are split into batches of two
        assert [len(b) for b in fake_provider.batches] == [2, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_embeds_composed_text(self, entity_graph, fake_provider, test_settings):
        job = EntityEmbeddingJob(entity_graph, Embedder(fake_provider, test_settings), test_settings)

        await job.run(entity_type=EntityType.DRUG)

        expected = compose_embedding_text(DrugFacts(name="Drug 0"))
        assert fake_provider.batches[0][0] == expected
        assert expected.startswith("Drug: Drug 0\nIndication: N/A")
        assert entity_graph.stored["drug-0"] == [float(len(expected))] * 1536

    @pytest.mark.asyncio
    async def test_single_type(self, entity_graph, fake_provider, test_settings):
        job = EntityEmbeddingJob(entity_graph, Embedder(fake_provider, test_settings), test_settings)

        stats = await job.run(entity_type="Disease")

        assert stats.total == 1
        assert set(entity_graph.stored) == {"disease-1"}

    @pytest.mark.asyncio
    async def test_failed_batch_counted_and_skipped(self, entity_graph, make_provider, test_settings):
        provider = make_provider(fail_on="Drug 1")
        job = EntityEmbeddingJob(entity_graph, Embedder(provider, test_settings), test_settings)

        stats = await job.run(entity_type=EntityType.DRUG, batch_size=1)

        assert stats.total == 3
        assert stats.processed == 2
        assert stats.failed == 1
        assert "drug-1" not in entity_graph.stored
        assert {"drug-0", "drug-2"} <= set(entity_graph.stored)

    @pytest.mark.asyncio
    async def test_token_and_cost_estimates(self, entity_graph, fake_provider, test_settings):
        job = EntityEmbeddingJob(entity_graph, Embedder(fake_provider, test_settings), test_settings)

        stats = await job.run(entity_type=EntityType.PROTEIN)

        text = "Protein: PTGS2\nSynonyms: N/A"
        assert stats.estimated_tokens == estimate_tokens(text)
        assert stats.estimated_cost == pytest.approx(
            stats.estimated_tokens / 1_000_000 * test_settings.embedding_cost_per_million_tokens
        )
        assert stats.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_empty_graph(self, make_entity_graph, fake_provider, test_settings):
        graph = make_entity_graph()
        job = EntityEmbeddingJob(graph, Embedder(fake_provider, test_settings), test_settings)

        stats = await job.run()

        assert stats.total == 0
        assert stats.processed == 0
        assert fake_provider.batches == []
        assert graph.index_dimensions == [1536]

    @pytest.mark.asyncio
    async def test_zero_batch_size_rejected(self, entity_graph, fake_provider, test_settings):
        job = EntityEmbeddingJob(entity_graph, Embedder(fake_provider, test_settings), test_settings)

        with pytest.raises(ValidationError):
            await job.run(batch_size=0)
        assert fake_provider.batches == []
