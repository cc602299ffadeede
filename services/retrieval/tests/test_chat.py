"""
Tests for chat turn orchestration.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from services.conversation.src.store import ConversationStore
from services.retrieval.src.chat import ChatService
from services.retrieval.src.rag import RAGService
from services.retrieval.src.search import HybridSearchService
from services.shared.exceptions import (
    GraphBackendError,
    NotFoundError,
    RequestTimeoutError,
    RetrievalError,
    ValidationError,
)
from services.shared.models.graph import QueryType


class FakeClock:
    """Manually advanced clock."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def build_chat(test_settings, conversation_store, fake_embedder, fake_llm):
    """Wire a chat service around a given graph fake."""

    def _build(graph, llm=None):
        return ChatService(
            store=conversation_store,
            search_service=HybridSearchService(graph, fake_embedder, test_settings),
            rag_service=RAGService(test_settings, llm_client=llm or fake_llm),
            settings=test_settings,
        )

    return _build


class TestSendMessage:
    """Tests for ChatService.send_message."""

    @pytest.mark.asyncio
    async def test_new_conversation(self, build_chat, aspirin_graph, conversation_store, fake_llm):
        chat = build_chat(aspirin_graph)

        reply = await chat.send_message("Tell me about aspirin")

        assert reply.conversation_id in conversation_store
        assert reply.answer == "**Aspirin** is used for pain relief."
        assert len(reply.sources) == 1
        assert reply.query_type == QueryType.HYBRID
        assert reply.graph_data is None
        assert len(fake_llm.calls) == 1

        conversation = chat.get_conversation(reply.conversation_id)
        assert [m.role for m in conversation.messages] == ["user", "assistant"]
        assert conversation.messages[1].sources == tuple(reply.sources)
        assert conversation.context.mentioned_entities == {"drug-1"}
        assert conversation.context.last_query == "Tell me about aspirin"

    @pytest.mark.asyncio
    async def test_follow_up_uses_context(self, build_chat, aspirin_graph, fake_llm):
        chat = build_chat(aspirin_graph)

        first = await chat.send_message("What is aspirin?")
        second = await chat.send_message("What are its side effects?", first.conversation_id)

        assert second.conversation_id == first.conversation_id
        _, prompt = fake_llm.calls[1]
        assert "Last question: What are its side effects?" in prompt
        assert len(chat.get_conversation(first.conversation_id).messages) == 4

    @pytest.mark.asyncio
    async def test_unknown_conversation_starts_new(self, build_chat, aspirin_graph):
        chat = build_chat(aspirin_graph)

        reply = await chat.send_message("aspirin", conversation_id="missing")

        assert reply.conversation_id != "missing"

    @pytest.mark.asyncio
    async def test_expired_conversation_starts_new(
        self, test_settings, aspirin_graph, fake_embedder, fake_llm
    ):
        clock = FakeClock()
        store = ConversationStore(max_conversations=5, ttl_seconds=60, clock=clock)
        chat = ChatService(
            store=store,
            search_service=HybridSearchService(aspirin_graph, fake_embedder, test_settings),
            rag_service=RAGService(test_settings, llm_client=fake_llm),
            settings=test_settings,
        )
        first = await chat.send_message("What is aspirin?")

        clock.advance(120)
        second = await chat.send_message("And its side effects?", first.conversation_id)

        assert second.conversation_id != first.conversation_id
        assert first.conversation_id not in store
        messages = chat.get_conversation(second.conversation_id).messages
        assert [m.content for m in messages if m.role == "user"] == ["And its side effects?"]

    @pytest.mark.asyncio
    async def test_turn_binds_correlation_id(
        self, test_settings, conversation_store, fake_embedder, aspirin_graph
    ):
        class RecordingLLM:
            def __init__(self):
                self.correlation_ids = []

            async def complete(self, system_prompt, user_prompt):
                context = structlog.contextvars.get_contextvars()
                self.correlation_ids.append(context.get("correlation_id"))
                return "Aspirin is used for pain relief."

        llm = RecordingLLM()
        chat = ChatService(
            store=conversation_store,
            search_service=HybridSearchService(aspirin_graph, fake_embedder, test_settings),
            rag_service=RAGService(test_settings, llm_client=llm),
            settings=test_settings,
        )

        first = await chat.send_message("aspirin")
        second = await chat.send_message("aspirin", first.conversation_id)

        assert llm.correlation_ids == [first.correlation_id, second.correlation_id]
        assert first.correlation_id != second.correlation_id
        assert "correlation_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_include_graph(self, build_chat, connected_graph):
        chat = build_chat(connected_graph)

        reply = await chat.send_message("What does aspirin treat?", include_graph=True)

        assert reply.graph_data is not None
        assert [r.type for r in reply.graph_data.relationships] == ["TREATS"]
        conversation = chat.get_conversation(reply.conversation_id)
        assert conversation.context.explored_relationships == {"rel-1"}

    @pytest.mark.asyncio
    async def test_no_results(self, build_chat, make_graph, fake_llm):
        chat = build_chat(make_graph())

        reply = await chat.send_message("xyzzy")

        assert reply.sources == []
        assert reply.confidence == 0.0
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_invalid_message(self, build_chat, aspirin_graph, conversation_store):
        chat = build_chat(aspirin_graph)

        with pytest.raises(ValidationError):
            await chat.send_message("  ")
        with pytest.raises(ValidationError):
            await chat.send_message("x" * 2001)
        assert len(conversation_store) == 0

    @pytest.mark.asyncio
    async def test_retrieval_failure_keeps_conversation(
        self, build_chat, aspirin_graph, make_graph
    ):
        chat = build_chat(aspirin_graph)
        first = await chat.send_message("aspirin")

        broken = build_chat(make_graph(error=GraphBackendError("down")))
        with pytest.raises(RetrievalError):
            await broken.send_message("aspirin again", first.conversation_id)

        # The user message was recorded; the conversation is still usable
        messages = chat.get_conversation(first.conversation_id).messages
        assert [m.role for m in messages] == ["user", "assistant", "user"]
        reply = await chat.send_message("and ibuprofen?", first.conversation_id)
        assert reply.conversation_id == first.conversation_id

    @pytest.mark.asyncio
    async def test_turn_deadline(self, test_settings, conversation_store, fake_embedder, aspirin_graph):
        class SlowLLM:
            async def complete(self, system_prompt, user_prompt):
                await asyncio.sleep(10)
                return "too late"

        settings = test_settings.model_copy(update={"chat_request_timeout_seconds": 0.05})
        chat = ChatService(
            store=conversation_store,
            search_service=HybridSearchService(aspirin_graph, fake_embedder, settings),
            rag_service=RAGService(settings, llm_client=SlowLLM()),
            settings=settings,
        )

        with pytest.raises(RequestTimeoutError):
            await chat.send_message("aspirin")


class TestConstruction:
    """Tests for ChatService wiring."""

    def test_empty_injected_store_is_kept(self, test_settings, aspirin_graph, fake_embedder, fake_llm):
        store = ConversationStore(max_conversations=2, ttl_seconds=30, settings=test_settings)
        search_service = HybridSearchService(aspirin_graph, fake_embedder, test_settings)
        rag_service = RAGService(test_settings, llm_client=fake_llm)

        chat = ChatService(
            store=store,
            search_service=search_service,
            rag_service=rag_service,
            settings=test_settings,
        )

        assert len(store) == 0
        assert chat.store is store
        assert chat.search_service is search_service
        assert chat.rag_service is rag_service


class TestConversationManagement:
    """Tests for get_conversation and clear_conversation."""

    @pytest.mark.asyncio
    async def test_clear_conversation(self, build_chat, aspirin_graph):
        chat = build_chat(aspirin_graph)
        reply = await chat.send_message("aspirin")

        chat.clear_conversation(reply.conversation_id)

        with pytest.raises(NotFoundError):
            chat.get_conversation(reply.conversation_id)
        with pytest.raises(NotFoundError):
            chat.clear_conversation(reply.conversation_id)

    def test_get_missing_conversation(self, build_chat, aspirin_graph):
        chat = build_chat(aspirin_graph)

        with pytest.raises(NotFoundError):
            chat.get_conversation("nope")
