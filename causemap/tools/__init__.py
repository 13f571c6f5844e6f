"""
External-service clients and helpers.

- embeddings.py: EmbeddingTool (canonical text, batching, similarity)
- embedding_clients.py: OpenAI / Ollama / mock embedding clients
- llm_service.py: LLMService (pydantic-ai) for cause labeling
- json_repair.py: JSON extraction from model output
- mock_responses.py: canned model responses for mock mode
"""

from causemap.tools.embedding_clients import (
    EmbeddingClient,
    HashEmbeddingClient,
    OllamaEmbeddingClient,
    OpenAIEmbeddingClient,
    build_embedding_client,
)
from causemap.tools.embeddings import (
    EmbeddingTool,
    canonical_text,
    cosine_similarity,
    find_similar,
    similarity_matrix,
)
from causemap.tools.llm_service import LLMService
