"""
Embedding Provider Abstraction

The engine never computes embeddings itself; it calls an external provider
through this interface. Every vector that enters the system (stored content
or query) comes from the same provider at the same dimensionality.

Provides:
- EmbeddingProvider: abstract async interface
- OpenAIEmbeddingProvider: text-embedding-3-small via AsyncOpenAI
- create_embedding_provider: factory from EmbeddingConfig

Failures are mapped onto the engine's error taxonomy:
- rate limits, timeouts, connection problems, 5xx -> ProviderUnavailableError
  (retried with exponential backoff)
- bad credentials -> ConfigurationError (never retried)
- anything else -> TransientProviderError (not retried, caller skips the item)

Usage:
    from core.embedding_provider import create_embedding_provider
    from core.config import load_config

    provider = create_embedding_provider(load_config().embedding)
    vector = await provider.embed("how do we deploy the billing service?")
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, List

import numpy as np
import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from .config import EmbeddingConfig
from .errors import (
    RetrievalError,
    TransientProviderError,
    ProviderUnavailableError,
    ConfigurationError
)
from .metrics import MetricsCollector, get_metrics_collector

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
DEFAULT_MAX_INPUT_CHARS = 8000


# =============================================================================
# Abstract Provider
# =============================================================================

class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding providers.

    Implementations must return float vectors of exactly `dimensions` length.
    """

    dimensions: int = DEFAULT_DIMENSIONS
    max_input_chars: int = DEFAULT_MAX_INPUT_CHARS

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging and error reporting."""
        pass

    @abstractmethod
    async def embed(self, text: str, max_input_chars: Optional[int] = None) -> np.ndarray:
        """
        Embed a single text.

        Args:
            text: Text to embed; truncated to max_input_chars
            max_input_chars: Override the provider's input limit

        Returns:
            float64 vector of length `dimensions`

        Raises:
            TransientProviderError: The call failed; caller may skip the item
            ConfigurationError: Credentials or input are invalid
        """
        pass

    async def embed_batch(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """
        Embed several texts. A failed text yields None instead of failing
        the whole batch; configuration errors still propagate.
        """
        async def _one(text: str) -> Optional[np.ndarray]:
            try:
                return await self.embed(text)
            except TransientProviderError as e:
                logger.warning(f"Embedding failed for batch item, skipping: {e}")
                return None

        return list(await asyncio.gather(*(_one(t) for t in texts)))

    def _truncate(self, text: str, max_input_chars: Optional[int]) -> str:
        limit = max_input_chars or self.max_input_chars
        return text[:limit]

    def _to_vector(self, values) -> np.ndarray:
        """Convert provider output to a validated vector."""
        vector = np.asarray(values, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != self.dimensions:
            raise TransientProviderError(
                f"Expected {self.dimensions}-dimensional embedding, got shape {vector.shape}",
                provider=self.name
            )
        return vector


# =============================================================================
# OpenAI Provider
# =============================================================================

# OpenAI exceptions worth another attempt
_UNAVAILABLE_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

_CREDENTIAL_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI embeddings via the async client.

    The client is created lazily so a provider can be constructed (and
    configuration validated) without network access.
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        client: Optional[AsyncOpenAI] = None,
        metrics: Optional[MetricsCollector] = None,
        retry_wait_seconds: float = 1.0
    ):
        config = config or EmbeddingConfig()
        self.model = config.model
        self.dimensions = config.dimensions
        self.max_input_chars = config.max_input_chars
        self.timeout_seconds = config.timeout_seconds
        self.max_retries = max(1, config.max_retries)
        self.batch_size = max(1, config.batch_size)
        self.retry_wait_seconds = retry_wait_seconds

        self._api_key = config.api_key
        self._client = client
        self.metrics = metrics or get_metrics_collector()

    @property
    def name(self) -> str:
        return "openai"

    def _get_client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError(
                    "OpenAI API key not configured. Set OPENAI_API_KEY or embedding.api_key",
                    field="embedding.api_key"
                )
            # Retries are handled here, not inside the SDK
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self.timeout_seconds,
                max_retries=0
            )
        return self._client

    def _map_error(self, error: Exception) -> RetrievalError:
        """Translate SDK and asyncio errors into the engine's taxonomy."""
        if isinstance(error, RetrievalError):
            return error
        if isinstance(error, _CREDENTIAL_ERRORS):
            return ConfigurationError(f"OpenAI rejected credentials: {error}", field="embedding.api_key")
        if isinstance(error, asyncio.TimeoutError):
            return ProviderUnavailableError(
                f"Embedding request timed out after {self.timeout_seconds}s",
                provider=self.name,
                original_error=error
            )
        if isinstance(error, _UNAVAILABLE_ERRORS):
            retry_after = None
            response = getattr(error, "response", None)
            if response is not None:
                header = response.headers.get("retry-after")
                if header:
                    try:
                        retry_after = float(header)
                    except ValueError:
                        retry_after = None
            return ProviderUnavailableError(
                str(error),
                provider=self.name,
                retry_after=retry_after,
                original_error=error
            )
        return TransientProviderError(str(error), provider=self.name, original_error=error)

    async def _request(self, inputs) -> List[List[float]]:
        """One embeddings API call, with retries for unavailable errors."""
        client = self._get_client()

        params = {"model": self.model, "input": inputs}
        if self.model.startswith("text-embedding-3"):
            params["dimensions"] = self.dimensions

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
            retry=retry_if_exception_type((ProviderUnavailableError,)),
            reraise=True
        )

        async for attempt in retrying:
            with attempt:
                start_time = time.time()
                try:
                    response = await asyncio.wait_for(
                        client.embeddings.create(**params),
                        timeout=self.timeout_seconds
                    )
                except Exception as e:
                    mapped = self._map_error(e)
                    latency_ms = (time.time() - start_time) * 1000
                    self.metrics.record_embedding_call(latency_ms, success=False, error_type=mapped.error_type)
                    logger.debug(f"Embedding call failed (attempt {attempt.retry_state.attempt_number}): {mapped}")
                    raise mapped from e

                latency_ms = (time.time() - start_time) * 1000
                self.metrics.record_embedding_call(latency_ms, success=True)
                return [item.embedding for item in response.data]

    async def embed(self, text: str, max_input_chars: Optional[int] = None) -> np.ndarray:
        """Embed a single text."""
        if not text or not text.strip():
            raise ConfigurationError("Cannot embed empty text", field="text")

        vectors = await self._request(self._truncate(text, max_input_chars))
        if not vectors:
            raise TransientProviderError("Provider returned no embedding", provider=self.name)
        return self._to_vector(vectors[0])

    async def embed_batch(self, texts: List[str]) -> List[Optional[np.ndarray]]:
        """
        Embed texts in batches of `batch_size` per request.

        A failed batch falls back to one request per text so a single bad
        input only loses itself.
        """
        results: List[Optional[np.ndarray]] = [None] * len(texts)

        for start in range(0, len(texts), self.batch_size):
            indices = [
                i for i in range(start, min(start + self.batch_size, len(texts)))
                if texts[i] and texts[i].strip()
            ]
            if not indices:
                continue

            try:
                vectors = await self._request([self._truncate(texts[i], None) for i in indices])
                if len(vectors) != len(indices):
                    raise TransientProviderError(
                        f"Provider returned {len(vectors)} embeddings for {len(indices)} inputs",
                        provider=self.name
                    )
                for i, values in zip(indices, vectors):
                    results[i] = self._to_vector(values)
            except TransientProviderError as e:
                logger.warning(f"Batch embedding failed, retrying items individually: {e}")
                for i in indices:
                    try:
                        results[i] = await self.embed(texts[i])
                    except TransientProviderError as item_error:
                        logger.warning(f"Skipping text {i} after embedding failure: {item_error}")

        return results


# =============================================================================
# Factory
# =============================================================================

def create_embedding_provider(
    config: Optional[EmbeddingConfig] = None,
    metrics: Optional[MetricsCollector] = None
) -> EmbeddingProvider:
    """
    Create an embedding provider from configuration.

    When the query-embedding memo is enabled the provider is wrapped in
    search.embeddings.CachedEmbeddingProvider.
    """
    config = config or EmbeddingConfig()

    if config.provider == "openai":
        provider: EmbeddingProvider = OpenAIEmbeddingProvider(config, metrics=metrics)
    else:
        raise ConfigurationError(f"Unknown embedding provider: {config.provider}", field="embedding.provider")

    if config.memo_enabled:
        from search.embeddings import CachedEmbeddingProvider
        provider = CachedEmbeddingProvider(
            provider,
            max_entries=config.memo_max_entries,
            ttl_seconds=config.memo_ttl_seconds
        )

    logger.info(f"Embedding provider ready: {config.provider}/{config.model} ({config.dimensions}d)")
    return provider
