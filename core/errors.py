"""
Error taxonomy for the retrieval engine.

Every failure that crosses a component boundary is one of these types so
callers can tell a skippable item from a failed request without string
matching.

- TransientProviderError: an external call (embedding provider, repository)
  failed in a way that may succeed on retry. Recovered locally where a single
  item is affected.
- ProviderUnavailableError: rate limits, timeouts and outages. The only
  errors the embedding provider retries.
- ConfigurationError: missing credentials, malformed filters, invalid config.
  Never retried.
- QueryEmbeddingError: the query itself could not be embedded, so a search
  cannot run at all.

Data-integrity problems (dimension mismatch, empty vectors) are NOT errors:
they are logged, counted and scored as zero similarity.

Usage:
    from core.errors import TransientProviderError

    try:
        vector = await provider.embed(text)
    except TransientProviderError as e:
        logger.warning(f"Skipping item: {e}")
"""

from typing import Optional, Dict, Any


class RetrievalError(Exception):
    """Base exception for the retrieval engine."""

    error_type = 'retrieval_error'

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.original_error = original_error
        self.details = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serializable dictionary."""
        result = {
            'error': self.error_type,
            'message': self.message,
            'retryable': self.retryable,
        }
        if self.details:
            result['details'] = self.details
        return result


class TransientProviderError(RetrievalError):
    """An external call failed but may succeed if retried."""

    error_type = 'transient_provider_error'

    def __init__(
        self,
        message: str,
        provider: str = 'unknown',
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(
            message,
            retryable=True,
            original_error=original_error,
            provider=provider,
            **kwargs
        )
        self.provider = provider


class ProviderUnavailableError(TransientProviderError):
    """Rate limited, timed out or temporarily down. Worth retrying the call."""

    error_type = 'provider_unavailable'

    def __init__(
        self,
        message: str,
        provider: str = 'unknown',
        retry_after: Optional[float] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, provider=provider, original_error=original_error)
        self.retry_after = retry_after


class ConfigurationError(RetrievalError):
    """Invalid configuration, credentials or request parameters."""

    error_type = 'configuration_error'

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        if field:
            kwargs['field'] = field
        super().__init__(message, retryable=False, **kwargs)
        self.field = field


class QueryEmbeddingError(RetrievalError):
    """The query could not be embedded; the search fails explicitly."""

    error_type = 'query_embedding_error'

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        retryable = bool(getattr(original_error, 'retryable', False))
        super().__init__(message, retryable=retryable, original_error=original_error)
