"""
RAG (Retrieval-Augmented Generation) service for the Biomedical Graph Assistant.

Turns ranked graph entities into a cited answer with a single Claude call
on AWS Bedrock. The pipeline is fixed: retrieve and expand happen in the
search service; this module only generates. Empty retrieval short-circuits
without contacting the model.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from services.conversation.src.store import ConversationContext
from services.retrieval.src.search import SearchResult
from services.shared.bedrock import create_bedrock_client, invoke_model
from services.shared.config import Settings, get_settings
from services.shared.exceptions import ProviderError
from services.shared.logging import get_logger
from services.shared.models.entities import build_excerpt, describe_entity, entity_facts
from services.shared.models.graph import RankedEntity, Source
from services.shared.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

HIGH_QUALITY_THRESHOLD = 0.7
HIGH_QUALITY_BOOST = 0.05
MAX_HIGH_QUALITY_BOOST = 0.2
GRAPH_BOOST = 0.1

# Existing bold spans are left untouched when highlighting
_BOLD_SPAN = re.compile(r"(\*\*.+?\*\*)", re.DOTALL)


@dataclass
class RAGResponse:
    """Response from answer generation."""

    answer: str
    sources: list[Source]
    confidence: float
    took_ms: float = 0.0
    model: str | None = None
    completion_calls: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


class CompletionClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


class BedrockClaudeClient:
    """Client for Anthropic Claude models on AWS Bedrock."""

    def __init__(
        self,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._client = None

    @property
    def model_id(self) -> str:
        return self.settings.bedrock_llm_model_id

    def _get_client(self) -> Any:
        """Lazy initialization of Bedrock client."""
        if self._client is None:
            self._client = create_bedrock_client(self.settings)
        return self._client

    def build_request(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        """
        Build the messages API request body.

        The body never carries tools or tool_choice: answers are produced in
        one pass over the supplied context.
        """
        return {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.settings.llm_max_tokens,
            "temperature": self.settings.llm_temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Generate a response using Claude.

        Rate-limit and transient server errors are retried with exponential
        backoff; everything else fails immediately.

        Args:
            system_prompt: System instructions
            user_prompt: User prompt with retrieved context

        Returns:
            Generated text response
        """
        client = self._get_client()
        body = self.build_request(system_prompt, user_prompt)

        async def call() -> str:
            response_body = await invoke_model(
                client,
                model_id=self.model_id,
                body=body,
                operation="bedrock_completion",
            )
            content = response_body.get("content") or []
            text = "".join(
                block.get("text", "") for block in content if block.get("type", "text") == "text"
            )
            if not text:
                raise ProviderError("No response generated from Bedrock", status_code=500)
            return text

        return await retry_async(call, self.retry_policy, operation="bedrock_completion")


def format_entity_mentions(answer: str, names: list[str]) -> str:
    """
    Wrap entity names in bold markdown.

    Matching is case-insensitive on whole words, longest name first so a
    name contained in a longer one is never wrapped separately. Text that
    is already bold is left as is.
    """
    unique_names = sorted({n for n in names if n and n.strip()}, key=len, reverse=True)
    if not unique_names:
        return answer

    pattern = re.compile(
        r"(?<!\w)(" + "|".join(re.escape(n) for n in unique_names) + r")(?!\w)",
        re.IGNORECASE,
    )

    segments = _BOLD_SPAN.split(answer)
    for i, segment in enumerate(segments):
        # Odd indexes are the captured bold spans
        if i % 2 == 0 and segment:
            segments[i] = pattern.sub(lambda m: f"**{m.group(1)}**", segment)
    return "".join(segments)


def calculate_confidence(result: SearchResult) -> float:
    """
    Confidence from top relevance, corroborating hits and graph grounding.

    top score + 0.05 per entity above 0.7 (capped at 0.2) + 0.1 when the
    subgraph has relationships, capped at 1.0 and rounded to 2 decimals.
    """
    if not result.entities:
        return 0.0

    top_score = max(e.relevance_score for e in result.entities)
    high_quality = sum(1 for e in result.entities if e.relevance_score > HIGH_QUALITY_THRESHOLD)
    boost = min(high_quality * HIGH_QUALITY_BOOST, MAX_HIGH_QUALITY_BOOST)
    graph_boost = GRAPH_BOOST if result.graph_data.relationships else 0.0

    return round(min(top_score + boost + graph_boost, 1.0), 2)


def extract_sources(entities: list[RankedEntity]) -> list[Source]:
    """One source per ranked entity, highest relevance first."""
    sources = [
        Source(
            entity_type=entity.type,
            entity_name=entity.name,
            node_id=entity.id,
            relevance_score=entity.relevance_score,
            excerpt=build_excerpt(entity_facts(entity.type, entity.properties)),
            properties=entity.properties,
        )
        for entity in entities
    ]
    sources.sort(key=lambda s: s.relevance_score, reverse=True)
    return sources


class RAGService:
    """
    Answer generation over hybrid search results.

    Makes exactly one completion call per non-empty result and none at all
    when nothing was retrieved.
    """

    SYSTEM_PROMPT = """You are a biomedical knowledge assistant. Your role is to answer questions about drugs, diseases, proteins, and their relationships based on the provided context.

Guidelines:
1. Answer concisely and accurately based on the context
2. Cite specific entities when making claims
3. If the context doesn't contain enough information, say so
4. Use scientific terminology appropriately
5. Format entity names in bold (e.g., **Aspirin**)
6. Keep answers under 200 words unless more detail is requested
7. When multiple sources are available, synthesize information from all relevant sources
8. Focus on factual information from the provided context"""

    NO_RESULTS_TEMPLATE = """I couldn't find any entities matching "{query}". Try:
- Using different keywords
- Checking spelling
- Asking about drugs, diseases, or proteins
- Being more specific (e.g., "diabetes drugs" instead of "diabetes")"""

    def __init__(
        self,
        settings: Settings | None = None,
        llm_client: CompletionClient | None = None,
    ):
        self.settings = settings or get_settings()
        self._llm_client = llm_client

    @property
    def llm_client(self) -> CompletionClient:
        """Lazy initialization of LLM client."""
        if self._llm_client is None:
            self._llm_client = BedrockClaudeClient(self.settings)
        return self._llm_client

    async def generate_answer(
        self,
        query: str,
        result: SearchResult,
        context: ConversationContext | None = None,
    ) -> RAGResponse:
        """
        Answer a question from retrieved graph context.

        Args:
            query: User's question
            result: Output of the hybrid search service
            context: Optional conversation context for follow-up questions

        Returns:
            RAGResponse with answer, sources and confidence
        """
        start_time = time.time()

        logger.info(
            "rag_pipeline_started",
            query=query[:100],
            query_type=result.query_type.value,
            entities=len(result.entities),
        )

        if not result.entities:
            logger.info("rag_no_results", query=query[:100])
            return RAGResponse(
                answer=self.NO_RESULTS_TEMPLATE.format(query=query),
                sources=[],
                confidence=0.0,
                took_ms=(time.time() - start_time) * 1000,
                completion_calls=0,
            )

        context_text = self._build_context(result)
        history = self._build_conversation_history(context) if context else ""
        prompt = self._build_prompt(query, context_text, history)

        try:
            raw_answer = await self.llm_client.complete(self.SYSTEM_PROMPT, prompt)
        except ProviderError as e:
            logger.error("rag_generation_error", error=str(e), query=query[:100])
            raise

        answer = format_entity_mentions(raw_answer, [e.name for e in result.entities])
        sources = extract_sources(result.entities)
        confidence = calculate_confidence(result)
        took_ms = (time.time() - start_time) * 1000
        model = getattr(self.llm_client, "model_id", None)

        logger.info(
            "rag_query_completed",
            query=query[:100],
            sources=len(sources),
            confidence=confidence,
            took_ms=took_ms,
            model=model,
        )

        return RAGResponse(
            answer=answer,
            sources=sources,
            confidence=confidence,
            took_ms=took_ms,
            model=model,
            completion_calls=1,
            metadata={"query_type": result.query_type.value},
        )

    def _build_context(self, result: SearchResult) -> str:
        """
        Describe ranked entities and subgraph relationships as text.

        Args:
            result: Search result to describe

        Returns:
            Context block for the prompt
        """
        lines = ["Relevant entities:", ""]

        for i, entity in enumerate(result.entities, start=1):
            lines.append(f"{i}. {entity.type.value}: {entity.name}")
            for label, value in describe_entity(entity_facts(entity.type, entity.properties)):
                lines.append(f"   {label}: {value}")
            lines.append("")

        if result.graph_data.relationships:
            nodes = result.graph_data.node_index()
            relationship_lines: dict[str, None] = {}

            for rel in result.graph_data.relationships:
                start = nodes.get(rel.start_node_id)
                end = nodes.get(rel.end_node_id)
                if start is None or end is None:
                    continue
                relationship_lines[f"- {start.name} -[{rel.type}]-> {end.name}"] = None

            if relationship_lines:
                lines.append("Relationships:")
                lines.extend(relationship_lines)

        return "\n".join(lines)

    def _build_conversation_history(self, context: ConversationContext) -> str:
        """Summarise prior turns for reference resolution."""
        if not context.last_query:
            return ""

        parts = ["Previous conversation:", f"Last question: {context.last_query}"]
        if context.mentioned_entities:
            parts.append(
                "Previously mentioned entity ids: "
                + ", ".join(sorted(context.mentioned_entities))
            )
        if context.current_focus:
            parts.append(f"Current focus: {context.current_focus.value}")
        return "\n".join(parts)

    def _build_prompt(self, query: str, context_text: str, history: str = "") -> str:
        """
        Build the user prompt with context and optional conversation history.

        Args:
            query: User's question
            context_text: Retrieved context
            history: Conversation summary, possibly empty

        Returns:
            Formatted prompt string
        """
        prompt_parts = ["Context:", context_text, ""]

        if history:
            prompt_parts.append(history)
            prompt_parts.append("")

        prompt_parts.append(f"Question: {query}")

        return "\n".join(prompt_parts)


def get_rag_service(settings: Settings | None = None) -> RAGService:
    """Factory function to get configured RAG service."""
    return RAGService(settings=settings)
