"""
Embedding service clients.

Each client exposes ``async embed(text) -> List[float]`` and raises the
pipeline's error taxonomy on failure:
  - TransientServiceError: timeout, transport failure, HTTP 429 or 5xx
  - ServiceError: any other HTTP error or an unreadable response body

Providers:
  - OpenAIEmbeddingClient: OpenAI-compatible POST /embeddings
  - OllamaEmbeddingClient: local Ollama POST /api/embeddings
  - HashEmbeddingClient: deterministic feature-hashing vectors (mock mode)
"""

import hashlib
import logging
import re
from typing import List, Optional

import httpx
import numpy as np

from ..config import Settings, get_settings
from ..errors import ConfigurationError, ServiceError, TransientServiceError

logger = logging.getLogger(__name__)


def _raise_for_status(response: httpx.Response, service: str) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = response.text[:200]
    if status == 429 or status >= 500:
        raise TransientServiceError(f"{service} HTTP {status}: {detail}")
    raise ServiceError(f"{service} HTTP {status}: {detail}")


class EmbeddingClient:
    """Base class for embedding service clients (async context manager)."""

    model: str = ""

    async def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> "EmbeddingClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


class _HTTPEmbeddingClient(EmbeddingClient):
    service_name = "embedding service"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise TransientServiceError(f"{self.service_name} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientServiceError(f"{self.service_name} unreachable: {e}") from e
        _raise_for_status(response, self.service_name)
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{self.service_name} returned non-JSON body") from e

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIEmbeddingClient(_HTTPEmbeddingClient):
    """OpenAI (or compatible) /embeddings endpoint."""

    service_name = "OpenAI embeddings"

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )
        self.model = model
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self.model, "input": text}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        data = await self._post("/embeddings", payload)
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceError(f"{self.service_name}: unexpected response shape") from e
        return [float(v) for v in vector]


class OllamaEmbeddingClient(_HTTPEmbeddingClient):
    """Ollama /api/embeddings endpoint (no API key)."""

    service_name = "Ollama embeddings"

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.model = model

    async def embed(self, text: str) -> List[float]:
        data = await self._post("/api/embeddings", {"model": self.model, "prompt": text})
        vector = data.get("embedding") if isinstance(data, dict) else None
        if not vector:
            raise ServiceError(f"{self.service_name}: response has no embedding")
        return [float(v) for v in vector]


class HashEmbeddingClient(EmbeddingClient):
    """Deterministic offline embeddings via signed feature hashing.

    Texts sharing words share dimensions, so clusters in mock mode still
    follow topical overlap.
    """

    _TOKEN = re.compile(r"[a-z0-9]+")

    def __init__(self, dimensions: int = 256, model: str = "mock-feature-hash"):
        self.dimensions = dimensions
        self.model = model

    async def embed(self, text: str) -> List[float]:
        vector = np.zeros(self.dimensions)
        for token in self._TOKEN.findall(text.lower()):
            if len(token) < 3:
                continue
            digest = int(hashlib.md5(token.encode()).hexdigest()[:12], 16)
            sign = 1.0 if digest & 1 else -1.0
            vector[(digest >> 1) % self.dimensions] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


def build_embedding_client(settings: Optional[Settings] = None) -> EmbeddingClient:
    """Create the configured embedding client.

    Raises ConfigurationError when the selected provider lacks credentials.
    """
    settings = settings or get_settings()
    if settings.mock_mode:
        logger.info("Embeddings: MOCK mode (feature hashing)")
        return HashEmbeddingClient()
    provider = settings.embedding_provider.lower()
    if provider == "ollama":
        logger.info(f"Embeddings: Ollama ({settings.ollama_embedding_model})")
        return OllamaEmbeddingClient(
            model=settings.ollama_embedding_model,
            base_url=settings.ollama_base_url,
            timeout=settings.embedding_timeout,
        )
    if provider == "openai":
        logger.info(f"Embeddings: OpenAI ({settings.embedding_model}, dim={settings.embedding_dimensions})")
        return OpenAIEmbeddingClient(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            base_url=settings.openai_base_url,
            dimensions=settings.embedding_dimensions,
            timeout=settings.embedding_timeout,
        )
    raise ConfigurationError(f"Unknown EMBEDDING_PROVIDER: {settings.embedding_provider}")
