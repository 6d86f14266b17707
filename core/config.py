"""
Configuration for the retrieval engine.

Settings come from three layers, later layers winning:

1. Built-in defaults on the dataclasses below
2. config/retrieval_config.yaml (or an explicit path)
3. Environment variables (a .env file at the repo root is loaded first)

Environment overrides:
    OPENAI_API_KEY               -> embedding.api_key
    RETRIEVAL_EMBEDDING_MODEL    -> embedding.model
    RETRIEVAL_CACHE_TTL_SECONDS  -> cache.ttl_seconds
    RETRIEVAL_CACHE_MAX_ENTRIES  -> cache.max_entries
    RETRIEVAL_LOG_LEVEL          -> logging.level

Usage:
    from core.config import load_config

    config = load_config()
    print(config.cache.ttl_seconds)
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "retrieval_config.yaml"
DEFAULT_ENV_PATH = Path(__file__).parent.parent / ".env"


# =============================================================================
# Config Sections
# =============================================================================

@dataclass
class EmbeddingConfig:
    """Embedding provider settings."""
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    max_input_chars: int = 8000
    timeout_seconds: float = 30.0
    max_retries: int = 3
    batch_size: int = 16
    api_key: Optional[str] = None
    # Query-embedding memo
    memo_enabled: bool = True
    memo_max_entries: int = 1000
    memo_ttl_seconds: float = 24 * 60 * 60


@dataclass
class CacheConfig:
    """Vector cache settings."""
    ttl_seconds: float = 30 * 60
    max_entries: int = 100
    fetch_concurrency: int = 10
    fetch_timeout_seconds: float = 10.0


@dataclass
class SearchConfig:
    """Defaults for RAG queries and project-aware search."""
    default_max_tokens: int = 2000
    default_threshold: float = 0.6
    default_limit: int = 10
    project_search_threshold: float = 0.3
    project_search_limit: int = 20
    related_content_limit: int = 50


@dataclass
class RelevanceConfig:
    """Project relevance weighting."""
    project_boost: float = 1.3
    temporal_weighting: bool = False
    decay_days: float = 30.0


@dataclass
class ContextConfig:
    """Context assembly budget."""
    budget_fraction: float = 0.6
    chars_per_token: int = 4
    max_item_chars: int = 800


@dataclass
class ChunkingConfig:
    """Document chunking for ingestion."""
    max_chunk_size: int = 600
    min_chunk_chars: int = 50


@dataclass
class IngestionConfig:
    """Importance weights and thresholds used when storing content."""
    document_importance: float = 0.9
    conversation_importance: float = 0.8
    assistant_message_importance: float = 0.7
    user_message_importance: float = 0.6
    min_assistant_message_chars: int = 100
    min_user_message_chars: int = 50
    embed_concurrency: int = 5


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_format: bool = False


@dataclass
class RetrievalConfig:
    """Complete engine configuration."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    relevance: RelevanceConfig = field(default_factory=RelevanceConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    _SECTIONS = {
        "embedding": EmbeddingConfig,
        "cache": CacheConfig,
        "search": SearchConfig,
        "relevance": RelevanceConfig,
        "context": ContextConfig,
        "chunking": ChunkingConfig,
        "ingestion": IngestionConfig,
        "logging": LoggingConfig,
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RetrievalConfig':
        """
        Build a config from a nested dictionary.

        Unknown sections are ignored with a warning; unknown keys inside a
        known section raise ConfigurationError.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        sections = {}
        for name, section_cls in cls._SECTIONS.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{name}' must be a mapping", field=name)
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigurationError(f"Invalid keys in section '{name}': {e}", field=name)

        for name in data:
            if name not in cls._SECTIONS:
                logger.warning(f"Ignoring unknown config section: {name}")

        config = cls(**sections)
        config.validate()
        return config

    def validate(self):
        """Check value ranges. Raises ConfigurationError."""
        if self.embedding.dimensions <= 0:
            raise ConfigurationError("embedding.dimensions must be positive", field="embedding.dimensions")
        if self.cache.ttl_seconds <= 0:
            raise ConfigurationError("cache.ttl_seconds must be positive", field="cache.ttl_seconds")
        if self.cache.max_entries <= 0:
            raise ConfigurationError("cache.max_entries must be positive", field="cache.max_entries")
        if self.cache.fetch_concurrency <= 0:
            raise ConfigurationError("cache.fetch_concurrency must be positive", field="cache.fetch_concurrency")
        if not 0 < self.context.budget_fraction <= 1:
            raise ConfigurationError("context.budget_fraction must be in (0, 1]", field="context.budget_fraction")
        if self.context.chars_per_token <= 0:
            raise ConfigurationError("context.chars_per_token must be positive", field="context.chars_per_token")
        if self.chunking.max_chunk_size <= 0:
            raise ConfigurationError("chunking.max_chunk_size must be positive", field="chunking.max_chunk_size")
        if self.relevance.project_boost <= 0:
            raise ConfigurationError("relevance.project_boost must be positive", field="relevance.project_boost")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, masking the API key."""
        data = {name: asdict(getattr(self, name)) for name in self._SECTIONS}
        if data["embedding"].get("api_key"):
            data["embedding"]["api_key"] = "***"
        return data


# =============================================================================
# Loading
# =============================================================================

def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay environment variables onto raw config data."""
    overrides = [
        ("OPENAI_API_KEY", "embedding", "api_key", str),
        ("RETRIEVAL_EMBEDDING_MODEL", "embedding", "model", str),
        ("RETRIEVAL_CACHE_TTL_SECONDS", "cache", "ttl_seconds", float),
        ("RETRIEVAL_CACHE_MAX_ENTRIES", "cache", "max_entries", int),
        ("RETRIEVAL_LOG_LEVEL", "logging", "level", str),
    ]

    for env_name, section, key, cast in overrides:
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        try:
            data.setdefault(section, {})[key] = cast(value)
        except ValueError:
            raise ConfigurationError(f"Invalid value for {env_name}: {value!r}", field=f"{section}.{key}")

    return data


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    use_env: bool = True
) -> RetrievalConfig:
    """
    Load configuration from YAML and the environment.

    Args:
        config_path: YAML file to read (default: config/retrieval_config.yaml).
            A missing default file yields built-in defaults; a missing
            explicit file is an error.
        env_path: .env file to load before reading the environment
        use_env: Apply environment overrides

    Returns:
        Validated RetrievalConfig
    """
    explicit = config_path is not None
    config_path = Path(config_path) if explicit else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {config_path}: {e}")
        logger.debug(f"Loaded config from {config_path}")
    elif explicit:
        raise ConfigurationError(f"Config file not found: {config_path}")

    # Config files may nest everything under a top-level "retrieval" key
    if isinstance(data, dict) and "retrieval" in data:
        data = data["retrieval"] or {}

    if use_env:
        load_dotenv(env_path or DEFAULT_ENV_PATH)
        data = _apply_env_overrides(data)

    return RetrievalConfig.from_dict(data)
