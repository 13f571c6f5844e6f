"""
Configuration management for the cause-discovery pipeline.

Every heuristic constant used by the embedding, reduction, clustering and
labeling stages lives here so it can be calibrated from the environment
(or a .env file) without code changes.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Runtime ──
    mock_mode: bool = Field(default=False, alias="MOCK_MODE")
    database_url: str = Field(default="sqlite:///./causemap.db", alias="DATABASE_URL")

    # ── Embedding service ──
    # "openai" (OpenAI-compatible /embeddings) or "ollama" (local /api/embeddings)
    embedding_provider: str = Field(default="openai", alias="EMBEDDING_PROVIDER")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    embedding_model: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL")
    embedding_dimensions: int = Field(default=1536, alias="EMBEDDING_DIMENSIONS")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    ollama_embedding_model: str = Field(default="nomic-embed-text", alias="OLLAMA_EMBEDDING_MODEL")
    embedding_timeout: float = Field(default=30.0, alias="EMBEDDING_TIMEOUT")

    # Batching: items per batch, items in flight, and the pause between batches.
    # The pause is a hard rate-limit requirement of hosted embedding APIs.
    embedding_batch_size: int = Field(default=10, alias="EMBEDDING_BATCH_SIZE")
    embedding_concurrency: int = Field(default=10, alias="EMBEDDING_CONCURRENCY")
    embedding_batch_delay: float = Field(default=1.0, alias="EMBEDDING_BATCH_DELAY")
    # Canonical text longer than this is truncated (with a warning) before submission.
    # ~8000 chars ≈ 2000 tokens, well inside the 8191-token model limit.
    embedding_max_chars: int = Field(default=8000, alias="EMBEDDING_MAX_CHARS")

    # ── Language model (cause labeling) ──
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    llm_base_url: str = Field(default="", alias="LLM_BASE_URL")
    llm_temperature: float = Field(default=0.2, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=300, alias="LLM_MAX_TOKENS")
    llm_label_concurrency: int = Field(default=3, alias="LLM_LABEL_CONCURRENCY")
    # Subclusters at or below this size are labeled from metadata only
    llm_label_min_size: int = Field(default=10, alias="LLM_LABEL_MIN_SIZE")
    label_sample_size: int = Field(default=8, alias="LABEL_SAMPLE_SIZE")
    # Fraction of the sample taken from the most-starred members
    label_sample_popular_share: float = Field(default=0.6, alias="LABEL_SAMPLE_POPULAR_SHARE")

    # ── Label confidence constants ──
    llm_default_confidence: float = Field(default=0.8, alias="LLM_DEFAULT_CONFIDENCE")
    metadata_label_confidence: float = Field(default=0.6, alias="METADATA_LABEL_CONFIDENCE")
    fallback_label_confidence: float = Field(default=0.3, alias="FALLBACK_LABEL_CONFIDENCE")

    # ── Cause maturity thresholds (average stars) ──
    maturity_growing_stars: float = Field(default=100.0, alias="MATURITY_GROWING_STARS")
    maturity_mature_stars: float = Field(default=1000.0, alias="MATURITY_MATURE_STARS")

    # ── Discovery (hierarchical k-means) ──
    max_top_level_causes: int = Field(default=8, alias="MAX_TOP_LEVEL_CAUSES")
    max_sub_causes: int = Field(default=3, alias="MAX_SUB_CAUSES")
    min_projects_per_cause: int = Field(default=5, alias="MIN_PROJECTS_PER_CAUSE")
    load_batch_size: int = Field(default=1000, alias="LOAD_BATCH_SIZE")
    # Top-level k-means runs on at most this many PCA components (0 = no cap)
    clustering_max_dims: int = Field(default=50, alias="CLUSTERING_MAX_DIMS")
    kmeans_top_level_iterations: int = Field(default=50, alias="KMEANS_TOP_LEVEL_ITERATIONS")
    kmeans_sub_iterations: int = Field(default=30, alias="KMEANS_SUB_ITERATIONS")
    kmeans_restarts: int = Field(default=4, alias="KMEANS_RESTARTS")
    random_seed: int = Field(default=42, alias="RANDOM_SEED")
    # Metadata-feature fallback when no project has an embedding
    metadata_fallback_max_k: int = Field(default=6, alias="METADATA_FALLBACK_MAX_K")
    metadata_fallback_iterations: int = Field(default=30, alias="METADATA_FALLBACK_ITERATIONS")

    # ── Projection / layout ──
    pca_storage_width: int = Field(default=16, alias="PCA_STORAGE_WIDTH")
    display_dimensions: int = Field(default=3, alias="DISPLAY_DIMENSIONS")
    # Non-outlier points are rescaled to span this many display units
    target_visual_range: float = Field(default=200.0, alias="TARGET_VISUAL_RANGE")
    default_spread_factor: float = Field(default=50.0, alias="DEFAULT_SPREAD_FACTOR")
    # 2.5 is deliberately looser than Tukey's 1.5 for already-centered PCA output
    outlier_iqr_multiplier: float = Field(default=2.5, alias="OUTLIER_IQR_MULTIPLIER")
    outlier_dampening: float = Field(default=0.3, alias="OUTLIER_DAMPENING")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
