"""
Pytest configuration and fixtures for retrieval service tests.
"""

from typing import Any

import pytest

from services.conversation.src.store import ConversationStore
from services.shared.config import Settings
from services.shared.models.graph import (
    VECTOR_INDEX_NAMES,
    EntityType,
    GraphData,
    GraphNode,
    GraphRelationship,
)

INDEX_TYPES = {index: entity_type for entity_type, index in VECTOR_INDEX_NAMES.items()}


class FakeGraphClient:
    """In-memory graph backend recording every call."""

    def __init__(
        self,
        hits: dict[EntityType, list[dict[str, Any]]] | None = None,
        subgraph: GraphData | None = None,
        error: Exception | None = None,
    ):
        self.hits = hits or {}
        self.subgraph = subgraph or GraphData()
        self.error = error
        self.vector_calls: list[tuple[str, int]] = []
        self.expand_calls: list[tuple[list[str], int, int]] = []

    async def vector_search(
        self, index_name: str, k: int, embedding: list[float]
    ) -> list[dict[str, Any]]:
        self.vector_calls.append((index_name, k))
        if self.error:
            raise self.error
        return list(self.hits.get(INDEX_TYPES[index_name], []))[:k]

    async def expand(
        self, seed_ids: list[str], max_hops: int, path_limit: int = 50
    ) -> GraphData:
        self.expand_calls.append((list(seed_ids), max_hops, path_limit))
        if self.error:
            raise self.error
        return self.subgraph


class FakeEmbedder:
    """Query embedder returning a constant vector."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.queries: list[str] = []

    async def embed_query(self, query: str) -> list[float]:
        self.queries.append(query)
        if self.error:
            raise self.error
        return [0.1] * 1536


class FakeLLM:
    """Completion client returning a canned answer."""

    model_id = "fake-llm"

    def __init__(self, answer: str = "Aspirin is used for pain relief.", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        return self.answer


def hit(node_id: str, name: str, score: float, **properties: Any) -> dict[str, Any]:
    """Vector index row as returned by the graph client."""
    return {
        "id": node_id,
        "name": name,
        "score": score,
        "properties": {"name": name, **properties},
    }


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with fast retries and no pauses."""
    return Settings(
        environment="development",
        retry_max_attempts=3,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        embedding_batch_pause_seconds=0.0,
        chat_request_timeout_seconds=5.0,
        log_format="text",
    )


@pytest.fixture
def aspirin_graph() -> FakeGraphClient:
    """Graph with one aspirin drug hit and no neighbourhood."""
    return FakeGraphClient(
        hits={
            EntityType.DRUG: [
                hit("drug-1", "Aspirin", 0.95, indication="pain relief"),
            ]
        }
    )


@pytest.fixture
def connected_graph() -> FakeGraphClient:
    """Graph where a drug hit treats a disease found only by expansion."""
    aspirin = GraphNode(
        id="drug-1",
        labels=("Drug",),
        properties={"name": "Aspirin", "indication": "pain relief"},
    )
    headache = GraphNode(
        id="disease-1",
        labels=("Disease",),
        properties={"name": "Headache", "mondo_definition": "Pain in the head."},
    )
    return FakeGraphClient(
        hits={EntityType.DRUG: [hit("drug-1", "Aspirin", 0.9, indication="pain relief")]},
        subgraph=GraphData.from_items(
            [aspirin, headache],
            [GraphRelationship(id="rel-1", type="TREATS", start_node_id="drug-1", end_node_id="disease-1")],
        ),
    )


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def conversation_store(test_settings: Settings) -> ConversationStore:
    return ConversationStore(max_conversations=10, ttl_seconds=3600, settings=test_settings)


@pytest.fixture
def make_graph() -> type[FakeGraphClient]:
    """Factory for graph fakes with custom hits, subgraph or error."""
    return FakeGraphClient


@pytest.fixture
def make_hit():
    return hit


@pytest.fixture
def make_embedder() -> type[FakeEmbedder]:
    return FakeEmbedder


@pytest.fixture
def make_llm() -> type[FakeLLM]:
    return FakeLLM
