"""
Core infrastructure for the retrieval engine.

Configuration, errors, logging, metrics and the embedding provider.
"""

from .errors import (
    RetrievalError,
    TransientProviderError,
    ProviderUnavailableError,
    ConfigurationError,
    QueryEmbeddingError,
)
from .config import RetrievalConfig, load_config
from .metrics import MetricsCollector, get_metrics_collector
from .embedding_provider import EmbeddingProvider, OpenAIEmbeddingProvider, create_embedding_provider

__all__ = [
    'RetrievalError',
    'TransientProviderError',
    'ProviderUnavailableError',
    'ConfigurationError',
    'QueryEmbeddingError',
    'RetrievalConfig',
    'load_config',
    'MetricsCollector',
    'get_metrics_collector',
    'EmbeddingProvider',
    'OpenAIEmbeddingProvider',
    'create_embedding_provider',
]
