"""
Pytest configuration and fixtures for ingestion service tests.
"""

import pytest

from services.ingestion.src.embedder import EmbeddingProvider
from services.shared.config import Settings
from services.shared.exceptions import ProviderError
from services.shared.models.graph import EntityType, GraphNode


class FakeProvider(EmbeddingProvider):
    """Deterministic provider: each vector encodes its text length."""

    def __init__(self, dimensions: int = 1536, fail_on: str | None = None):
        self._dimensions = dimensions
        self.fail_on = fail_on
        self.batches: list[list[str]] = []

    @property
    def model_id(self) -> str:
        return "fake-embedder"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        if self.fail_on and any(self.fail_on in text for text in texts):
            raise ProviderError("embedding failed", status_code=400)
        return [[float(len(text))] * self._dimensions for text in texts]


class FakeEntityGraph:
    """In-memory entity store for the embedding job."""

    def __init__(self, entities: dict[EntityType, list[GraphNode]] | None = None):
        self.entities = entities or {}
        self.stored: dict[str, list[float]] = {}
        self.index_dimensions: list[int] = []

    async def ensure_vector_indexes(self, dimensions: int = 1536) -> None:
        self.index_dimensions.append(dimensions)

    async def fetch_entities(self, entity_type: EntityType, limit: int = 100_000) -> list[GraphNode]:
        return list(self.entities.get(entity_type, []))[:limit]

    async def store_embeddings(
        self, entity_type: EntityType, updates: list[tuple[str, list[float]]]
    ) -> None:
        for node_id, vector in updates:
            self.stored[node_id] = vector


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment="development",
        aws_access_key_id="test-key",
        aws_secret_access_key="test-secret",
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        embedding_batch_pause_seconds=0.0,
        log_format="text",
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def entity_graph() -> FakeEntityGraph:
    """Three drugs, one disease, one protein."""
    return FakeEntityGraph(
        {
            EntityType.DRUG: [
                GraphNode(id=f"drug-{i}", labels=("Drug",), properties={"name": f"Drug {i}"})
                for i in range(3)
            ],
            EntityType.DISEASE: [
                GraphNode(id="disease-1", labels=("Disease",), properties={"name": "Gout"}),
            ],
            EntityType.PROTEIN: [
                GraphNode(id="protein-1", labels=("Protein",), properties={"name": "PTGS2"}),
            ],
        }
    )


@pytest.fixture
def make_entity_graph() -> type[FakeEntityGraph]:
    return FakeEntityGraph
