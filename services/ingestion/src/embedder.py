"""
Embedding generation for queries and graph entities.

Supports multiple embedding backends:
- AWS Bedrock Titan Embeddings (production)
- Local sentence-transformers padded to 1536 dimensions (development/testing)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from services.shared.bedrock import create_bedrock_client, invoke_model
from services.shared.config import Settings, get_settings
from services.shared.exceptions import (
    ProviderError,
    ProviderUnavailableError,
    ValidationError,
)
from services.shared.logging import get_logger
from services.shared.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

EMBEDDING_DIMENSIONS = 1536


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Return the model identifier."""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return the embedding dimensions."""
        pass

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        pass

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        return (await self.embed([text]))[0]


class BedrockTitanEmbedder(EmbeddingProvider):
    """
    AWS Bedrock Titan Embeddings provider.

    Uses amazon.titan-embed-text-v1 model (1536 dimensions). Titan embeds one
    text per request, so batches are issued sequentially, each call under the
    shared retry policy.
    """

    MODEL_ID = "amazon.titan-embed-text-v1"
    DIMENSIONS = EMBEDDING_DIMENSIONS
    MAX_CHARS = 30000  # Rough char estimate for Titan's 8K token limit

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
        return self.settings.bedrock_embedding_model_id or self.MODEL_ID

    @property
    def dimensions(self) -> int:
        return self.DIMENSIONS

    def _get_client(self) -> Any:
        """Lazy initialization of Bedrock client."""
        if self._client is None:
            self._client = create_bedrock_client(self.settings)
        return self._client

    async def _embed_one(self, text: str) -> list[float]:
        client = self._get_client()
        if len(text) > self.MAX_CHARS:
            text = text[: self.MAX_CHARS]

        async def call() -> list[float]:
            response_body = await invoke_model(
                client,
                model_id=self.model_id,
                body={"inputText": text},
                operation="bedrock_embedding",
            )
            embedding = response_body.get("embedding")
            if not embedding:
                raise ProviderError("No embedding returned from Bedrock", status_code=500)
            return embedding

        return await retry_async(call, self.retry_policy, operation="bedrock_embedding")

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings using Bedrock Titan."""
        embeddings = []
        for text in texts:
            embeddings.append(await self._embed_one(text))

        logger.info(
            "embeddings_generated",
            provider="bedrock",
            count=len(embeddings),
            model=self.model_id,
        )

        return embeddings


class LocalEmbedder(EmbeddingProvider):
    """
    Local embedding provider using sentence-transformers.

    Uses all-MiniLM-L6-v2 by default (384 dimensions).
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    DIMENSIONS_MAP = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "multi-qa-mpnet-base-dot-v1": 768,
    }

    def __init__(self, model_name: str | None = None):
        self._model_name = model_name or self.DEFAULT_MODEL
        self._model = None
        self._dimensions = self.DIMENSIONS_MAP.get(self._model_name, 384)

    @property
    def model_id(self) -> str:
        return f"sentence-transformers/{self._model_name}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_model(self) -> Any:
        """Lazy initialization of sentence-transformers model."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise RuntimeError(
                    "sentence-transformers not installed. "
                    "Install with: pip install 'biograph-assistant[local]'"
                ) from e

            self._model = SentenceTransformer(self._model_name)
            self._dimensions = self._model.get_sentence_embedding_dimension()
            logger.info(
                "local_model_loaded",
                model=self._model_name,
                dimensions=self._dimensions,
            )

        return self._model

    def _encode(self, texts: list[str]) -> np.ndarray:
        return self._get_model().encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=True,  # Normalize for cosine similarity
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings using local sentence-transformers."""
        embeddings = await asyncio.to_thread(self._encode, texts)
        result = [emb.tolist() for emb in embeddings]

        logger.info(
            "embeddings_generated",
            provider="local",
            count=len(result),
            model=self._model_name,
        )

        return result


class PaddedLocalEmbedder(LocalEmbedder):
    """
    Local embedder that pads embeddings to 1536 dimensions.

    Lets development setups without AWS credentials query the same
    1536-dimension vector indexes as Bedrock Titan.
    """

    TARGET_DIMENSIONS = EMBEDDING_DIMENSIONS

    @property
    def dimensions(self) -> int:
        return self.TARGET_DIMENSIONS

    def _encode(self, texts: list[str]) -> np.ndarray:
        base = super()._encode(texts)[:, : self.TARGET_DIMENSIONS]
        return np.pad(base, ((0, 0), (0, self.TARGET_DIMENSIONS - base.shape[1])))


class Embedder:
    """
    Main embedder class that manages embedding generation.

    Automatically selects the appropriate provider based on configuration,
    validates inputs and output dimensions, and batches large workloads.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()

        if provider:
            self._provider = provider
        elif self.settings.is_development and not self.settings.aws_access_key_id:
            # Use padded local embedder in development without AWS credentials
            logger.info("using_local_embedder", reason="no_aws_credentials")
            self._provider = PaddedLocalEmbedder()
        else:
            # Use Bedrock in production or when AWS is configured
            self._provider = BedrockTitanEmbedder(self.settings)

    @property
    def model_id(self) -> str:
        """Get the current model ID."""
        return self._provider.model_id

    @property
    def dimensions(self) -> int:
        """Get the embedding dimensions."""
        return self._provider.dimensions

    def _check_dimensions(self, embeddings: list[list[float]]) -> None:
        for idx, embedding in enumerate(embeddings):
            if len(embedding) != self.dimensions:
                raise ProviderError(
                    f"Embedding {idx}: expected {self.dimensions} dimensions, "
                    f"got {len(embedding)}",
                    status_code=500,
                )

    async def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Args:
            query: Search query text

        Returns:
            Embedding vector

        Raises:
            ValidationError: If the query is blank
        """
        if not query or not query.strip():
            raise ValidationError("Text cannot be empty")

        embedding = await self._provider.embed_single(query)
        self._check_dimensions([embedding])
        return embedding

    async def embed_texts(
        self,
        texts: list[str],
        batch_size: int | None = None,
        pause_seconds: float | None = None,
    ) -> list[list[float]]:
        """
        Generate embeddings for a list of texts, preserving order.

        Batches run sequentially, each under the batch timeout, with a pause
        between batches to stay under provider rate limits.

        Args:
            texts: List of text strings
            batch_size: Number of texts to process at once
            pause_seconds: Sleep between consecutive batches

        Returns:
            List of embedding vectors

        Raises:
            ValidationError: If the list is empty or contains blank text
        """
        if not texts:
            raise ValidationError("Texts array cannot be empty")
        blank = [i for i, text in enumerate(texts) if not text or not text.strip()]
        if blank:
            raise ValidationError(
                "Texts cannot be empty",
                details={"blank_indexes": blank[:10]},
            )

        batch_size = batch_size or self.settings.embedding_batch_size
        if pause_seconds is None:
            pause_seconds = self.settings.embedding_batch_pause_seconds
        timeout = self.settings.embedding_batch_timeout_seconds

        all_embeddings: list[list[float]] = []

        # Process in batches
        for i in range(0, len(texts), batch_size):
            if i > 0 and pause_seconds > 0:
                await asyncio.sleep(pause_seconds)

            batch = texts[i : i + batch_size]
            try:
                batch_embeddings = await asyncio.wait_for(
                    self._provider.embed(batch), timeout=timeout
                )
            except asyncio.TimeoutError as e:
                raise ProviderUnavailableError(
                    f"Batch embedding timed out after {timeout}s",
                    status_code=504,
                    details={"batch_start": i, "batch_size": len(batch)},
                ) from e

            if len(batch_embeddings) != len(batch):
                raise ProviderError(
                    f"Expected {len(batch)} embeddings, got {len(batch_embeddings)}",
                    status_code=500,
                )
            self._check_dimensions(batch_embeddings)
            all_embeddings.extend(batch_embeddings)

            logger.debug(
                "embedding_batch_complete",
                batch_start=i,
                batch_size=len(batch),
                total=len(texts),
            )

        return all_embeddings


def get_embedder(settings: Settings | None = None) -> Embedder:
    """Factory function to get configured embedder."""
    return Embedder(settings=settings)
