"""
In-memory conversation store with LRU and TTL eviction.

Holds recent chat sessions and the context derived from their messages
(mentioned entities, explored relationships, current entity-type focus,
last user question) used to resolve follow-up questions.
"""

import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from services.shared.config import Settings, get_settings
from services.shared.exceptions import NotFoundError, ValidationError
from services.shared.logging import get_logger
from services.shared.models.graph import EntityType, GraphData, Source

logger = get_logger(__name__)

Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A single chat message. Immutable once appended."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    sources: tuple[Source, ...] = ()
    graph_data: GraphData | None = None

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValidationError(f"Invalid message role: {self.role!r}")
        # Accept any iterable of sources but store a tuple
        object.__setattr__(self, "sources", tuple(self.sources))


@dataclass
class ConversationContext:
    """Session memory derived from a conversation's messages."""

    mentioned_entities: set[str] = field(default_factory=set)
    explored_relationships: set[str] = field(default_factory=set)
    current_focus: EntityType | None = None
    last_query: str | None = None

    def copy(self) -> "ConversationContext":
        return ConversationContext(
            mentioned_entities=set(self.mentioned_entities),
            explored_relationships=set(self.explored_relationships),
            current_focus=self.current_focus,
            last_query=self.last_query,
        )

    def apply(self, message: Message) -> None:
        """Fold a newly appended message into the context."""
        for source in message.sources:
            self.mentioned_entities.add(source.node_id)
            self.current_focus = source.entity_type

        if message.graph_data is not None:
            for rel in message.graph_data.relationships:
                self.explored_relationships.add(rel.id)

        if message.role == "user":
            self.last_query = message.content


@dataclass
class Conversation:
    """A chat session."""

    id: str
    messages: list[Message] = field(default_factory=list)
    context: ConversationContext = field(default_factory=ConversationContext)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def snapshot(self) -> "Conversation":
        """Detached copy safe to hand to callers."""
        return replace(self, messages=list(self.messages), context=self.context.copy())


class ConversationStore:
    """
    Bounded store of recent conversations.

    Eviction runs on every create and append: conversations not updated
    within the TTL are dropped first, then least-recently-used ones until
    the count is within capacity. Recency is refreshed by create, append
    and get_context. A single lock serializes all access.
    """

    def __init__(
        self,
        max_conversations: int | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
        settings: Settings | None = None,
    ):
        if max_conversations is None or ttl_seconds is None:
            settings = settings or get_settings()
            if max_conversations is None:
                max_conversations = settings.conversation_max_count
            if ttl_seconds is None:
                ttl_seconds = settings.conversation_ttl_seconds

        if max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.max_conversations = max_conversations
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # Ordered least- to most-recently used
        self._conversations: OrderedDict[str, Conversation] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return conversation is not None and not self._is_expired(conversation)

    def create(self) -> Conversation:
        """Create and register a new, empty conversation."""
        with self._lock:
            conversation_id = str(uuid4())
            while conversation_id in self._conversations:
                conversation_id = str(uuid4())

            now = self._clock()
            conversation = Conversation(
                id=conversation_id,
                created_at=now,
                updated_at=now,
            )
            self._conversations[conversation_id] = conversation
            self._evict()

            logger.info(
                "conversation_created",
                conversation_id=conversation_id,
                active_conversations=len(self._conversations),
            )
            return conversation.snapshot()

    def append(self, conversation_id: str, message: Message) -> None:
        """
        Append a message and update the derived context.

        Raises:
            NotFoundError: If the conversation is absent or has expired
        """
        with self._lock:
            self._evict_expired()
            conversation = self._require(conversation_id)

            conversation.messages.append(message)
            conversation.updated_at = self._clock()
            conversation.context.apply(message)
            self._touch(conversation_id)
            self._evict()

            logger.debug(
                "conversation_message_appended",
                conversation_id=conversation_id,
                role=message.role,
                sources=len(message.sources),
                message_count=len(conversation.messages),
            )

    def get_context(self, conversation_id: str) -> ConversationContext:
        """
        Return a copy of the conversation's context and mark it recently used.

        Raises:
            NotFoundError: If the conversation is absent
        """
        with self._lock:
            conversation = self._require(conversation_id)
            self._touch(conversation_id)
            return conversation.context.copy()

    def get(self, conversation_id: str) -> Conversation | None:
        """Read-only lookup. Does not affect recency; expired entries read as absent."""
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None or self._is_expired(conversation):
                return None
            return conversation.snapshot()

    def remove(self, conversation_id: str) -> bool:
        """Delete a conversation. Returns whether it existed."""
        with self._lock:
            removed = self._conversations.pop(conversation_id, None) is not None
            if removed:
                logger.info("conversation_removed", conversation_id=conversation_id)
            return removed

    def remove_all(self) -> None:
        """Delete every conversation."""
        with self._lock:
            self._conversations.clear()

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(
                f"Conversation {conversation_id} not found",
                details={"conversation_id": conversation_id},
            )
        return conversation

    def _touch(self, conversation_id: str) -> None:
        self._conversations.move_to_end(conversation_id)

    def _evict(self) -> None:
        self._evict_expired()

        while len(self._conversations) > self.max_conversations:
            lru_id, _ = self._conversations.popitem(last=False)
            logger.info("conversation_evicted", conversation_id=lru_id, reason="capacity")

    def _is_expired(self, conversation: Conversation) -> bool:
        return (self._clock() - conversation.updated_at).total_seconds() > self.ttl_seconds

    def _evict_expired(self) -> None:
        expired = [
            cid for cid, conversation in self._conversations.items() if self._is_expired(conversation)
        ]
        for cid in expired:
            del self._conversations[cid]
            logger.info("conversation_evicted", conversation_id=cid, reason="ttl")


def get_conversation_store(settings: Settings | None = None) -> ConversationStore:
    """Factory function to get a configured conversation store."""
    return ConversationStore(settings=settings)
