"""
Chat turn orchestration.

One turn: record the user message, search, generate, record the answer.
Failures abort the turn but leave the conversation usable.
"""

import asyncio
import time
from dataclasses import dataclass

from services.conversation.src.store import (
    Conversation,
    ConversationStore,
    Message,
    get_conversation_store,
)
from services.retrieval.src.rag import RAGService, get_rag_service
from services.retrieval.src.search import HybridSearchService, SearchOptions, get_search_service
from services.shared.config import Settings, get_settings
from services.shared.exceptions import NotFoundError, RequestTimeoutError, ValidationError
from services.shared.logging import bound_correlation_id, get_logger
from services.shared.models.graph import GraphData, QueryType, Source

logger = get_logger(__name__)


@dataclass
class ChatReply:
    """Result of a chat turn."""

    answer: str
    sources: list[Source]
    confidence: float
    conversation_id: str
    query_type: QueryType
    graph_data: GraphData | None = None
    took_ms: float = 0.0
    correlation_id: str | None = None


class ChatService:
    """Runs chat turns against the conversation store and the RAG pipeline."""

    def __init__(
        self,
        store: ConversationStore | None = None,
        search_service: HybridSearchService | None = None,
        rag_service: RAGService | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else get_conversation_store(self.settings)
        self.search_service = (
            search_service
            if search_service is not None
            else get_search_service(settings=self.settings)
        )
        self.rag_service = rag_service if rag_service is not None else get_rag_service(self.settings)

    async def send_message(
        self,
        message: str,
        conversation_id: str | None = None,
        include_graph: bool = False,
    ) -> ChatReply:
        """
        Answer a user message within a conversation.

        Args:
            message: The user's question
            conversation_id: Existing conversation; a new one is started when
                omitted or no longer known
            include_graph: Return the expanded subgraph with the reply

        Returns:
            ChatReply for the turn

        Raises:
            ValidationError: If the message is blank or too long
            RequestTimeoutError: If the turn exceeds the request deadline
            RetrievalError: If search fails
            ProviderError: If answer generation fails
        """
        max_length = self.settings.chat_max_message_length
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")
        if len(message) > max_length:
            raise ValidationError(f"Message exceeds maximum length of {max_length} characters")

        timeout = self.settings.chat_request_timeout_seconds

        with bound_correlation_id() as correlation_id:
            try:
                reply = await asyncio.wait_for(
                    self._run_turn(message, conversation_id, include_graph),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    "chat_turn_timeout",
                    conversation_id=conversation_id,
                    timeout_seconds=timeout,
                )
                raise RequestTimeoutError(
                    f"Chat turn exceeded {timeout}s deadline",
                    details={"conversation_id": conversation_id, "correlation_id": correlation_id},
                ) from e

        reply.correlation_id = correlation_id
        return reply

    async def _run_turn(
        self,
        message: str,
        conversation_id: str | None,
        include_graph: bool,
    ) -> ChatReply:
        start_time = time.time()
        conversation_id = self._record_user_message(conversation_id, message)

        result = await self.search_service.search(
            message,
            SearchOptions(
                limit=self.settings.retrieval_default_limit,
                max_hops=self.settings.retrieval_default_max_hops,
            ),
        )
        context = self.store.get_context(conversation_id)
        response = await self.rag_service.generate_answer(message, result, context)

        self.store.append(
            conversation_id,
            Message(
                role="assistant",
                content=response.answer,
                sources=response.sources,
                graph_data=result.graph_data,
            ),
        )

        took_ms = (time.time() - start_time) * 1000
        logger.info(
            "chat_turn_completed",
            conversation_id=conversation_id,
            query_type=result.query_type.value,
            sources=len(response.sources),
            confidence=response.confidence,
            took_ms=took_ms,
        )

        return ChatReply(
            answer=response.answer,
            sources=response.sources,
            confidence=response.confidence,
            conversation_id=conversation_id,
            query_type=result.query_type,
            graph_data=result.graph_data if include_graph else None,
            took_ms=took_ms,
        )

    def _record_user_message(self, conversation_id: str | None, message: str) -> str:
        """Append the user message, starting a new conversation if the id is unknown or expired."""
        user_message = Message(role="user", content=message)

        if conversation_id:
            try:
                self.store.append(conversation_id, user_message)
                return conversation_id
            except NotFoundError:
                logger.info("conversation_not_found_starting_new", conversation_id=conversation_id)

        conversation_id = self.store.create().id
        self.store.append(conversation_id, user_message)
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Conversation:
        """
        Fetch a conversation with its messages.

        Raises:
            NotFoundError: If the conversation is absent or evicted
        """
        conversation = self.store.get(conversation_id)
        if conversation is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                details={"conversation_id": conversation_id},
            )
        return conversation

    def clear_conversation(self, conversation_id: str) -> None:
        """
        Delete a conversation.

        Raises:
            NotFoundError: If the conversation is absent
        """
        if not self.store.remove(conversation_id):
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                details={"conversation_id": conversation_id},
            )


def get_chat_service(settings: Settings | None = None) -> ChatService:
    """Factory function to get a configured chat service."""
    return ChatService(settings=settings)
