"""
Embedding generator: entity records → canonical text → embedding vectors.

Canonical text is a deterministic, newline-joined list of labeled fields
(name, description, numeric signals, tag lists). The same record always
produces the same text, and the text hash is stored next to the vector so
an embedding is regenerated only when the text changes.

FAILURE POLICY (degrades silently):
  A service failure for one item never escapes the batch loop. The item
  comes back as an EmbeddingResult with ``failed=True`` and no vector, the
  failure is logged, and the rest of the batch continues. Callers needing
  strict completeness must check ``result.ok``. Failed items are never
  stored, so they are excluded from reduction and clustering rather than
  pulled toward the origin as zero vectors.

RATE LIMITING:
  Items are sent in fixed-size batches. Within a batch up to
  ``concurrency`` requests are in flight; between batches there is a
  mandatory pause of ``batch_delay`` seconds.

IMPORTANT: the first successful vector locks the dimensionality. A later
vector of a different length is treated as a failed item, because vectors
compared together must come from the same model.
"""

import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..config import Settings, get_settings
from ..errors import DegenerateInputError, ServiceError
from ..schemas.base import EntityKind
from ..schemas.projects import CauseRecord, ContributorRecord, EmbeddingResult, ProjectRecord
from .embedding_clients import EmbeddingClient

logger = logging.getLogger(__name__)

Entity = Union[ProjectRecord, ContributorRecord, CauseRecord]

_KINDS = {
    ProjectRecord: EntityKind.PROJECT,
    ContributorRecord: EntityKind.CONTRIBUTOR,
    CauseRecord: EntityKind.CAUSE,
}


def entity_kind(entity: Entity) -> EntityKind:
    try:
        return _KINDS[type(entity)]
    except KeyError:
        raise TypeError(f"Cannot embed {type(entity).__name__}") from None


# Rough chars-per-token ratio for English text, used only for log messages
_CHARS_PER_TOKEN = 4


# ══════════════════════════════════════════════════════════════════════════════
# CANONICAL TEXT
# ══════════════════════════════════════════════════════════════════════════════

def project_text(project: ProjectRecord) -> str:
    parts = [f"Project: {project.name}"]
    if project.description:
        parts.append(f"Description: {project.description}")
    parts.append(f"Platform: {project.platform}")
    parts.append(f"Stars: {project.stars}")
    parts.append(f"Forks: {project.forks}")
    if project.languages:
        parts.append(f"Languages: {', '.join(project.languages)}")
    if project.topics:
        parts.append(f"Topics: {', '.join(project.topics)}")
    if project.tags:
        parts.append(f"Tags: {', '.join(project.tags)}")
    return "\n".join(parts)


def contributor_text(contributor: ContributorRecord) -> str:
    parts = [f"Contributor: {contributor.name or 'Unknown'}"]
    if contributor.bio:
        parts.append(f"Bio: {contributor.bio}")
    if contributor.location:
        parts.append(f"Location: {contributor.location}")
    if contributor.skills:
        parts.append(f"Skills: {', '.join(contributor.skills)}")
    if contributor.causes:
        parts.append(f"Causes: {', '.join(contributor.causes)}")
    return "\n".join(parts)


def cause_text(cause: CauseRecord) -> str:
    parts = [f"Cause: {cause.name}"]
    if cause.description:
        parts.append(f"Description: {cause.description}")
    if cause.impact_score is not None:
        parts.append(f"Impact Score: {cause.impact_score}")
    if cause.keywords:
        parts.append(f"Keywords: {', '.join(cause.keywords)}")
    if cause.urgency is not None:
        parts.append(f"Urgency: {cause.urgency}")
    if cause.tractability is not None:
        parts.append(f"Tractability: {cause.tractability}")
    if cause.geographic_scope:
        parts.append(f"Geographic Scope: {cause.geographic_scope}")
    return "\n".join(parts)


def canonical_text(entity: Entity) -> str:
    """Deterministic text encoding of any embeddable record.

    Raises DegenerateInputError when the record has no descriptive text
    (neither a name nor a description/bio).
    """
    if isinstance(entity, ProjectRecord):
        descriptive = (entity.name, entity.description)
        text = project_text(entity)
    elif isinstance(entity, ContributorRecord):
        descriptive = (entity.name, entity.bio)
        text = contributor_text(entity)
    elif isinstance(entity, CauseRecord):
        descriptive = (entity.name, entity.description)
        text = cause_text(entity)
    else:
        raise TypeError(f"Cannot embed {type(entity).__name__}")

    if not any(d and d.strip() for d in descriptive):
        raise DegenerateInputError(f"{entity.id}: no name or description to embed")
    return text


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


# ══════════════════════════════════════════════════════════════════════════════
# GENERATOR
# ══════════════════════════════════════════════════════════════════════════════

class EmbeddingTool:
    """
    Batch embedding generator over an injected EmbeddingClient.

    Usage:
        async with OpenAIEmbeddingClient(api_key=...) as client:
            tool = EmbeddingTool(client)
            results = await tool.embed_batch(projects)
    """

    def __init__(
        self,
        client: EmbeddingClient,
        settings: Optional[Settings] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        concurrency: Optional[int] = None,
        max_chars: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.batch_size = max(1, batch_size or self.settings.embedding_batch_size)
        self.batch_delay = self.settings.embedding_batch_delay if batch_delay is None else batch_delay
        self.concurrency = max(1, concurrency or self.settings.embedding_concurrency)
        self.max_chars = max_chars or self.settings.embedding_max_chars
        self._embedding_dim = getattr(client, "dimensions", None) or self.settings.embedding_dimensions
        self._dim_locked = False

    @property
    def model(self) -> str:
        return getattr(self.client, "model", "") or ""

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    def needs_embedding(self, project: ProjectRecord) -> bool:
        """True when the stored vector is missing or was built from different text/model."""
        if not project.has_embedding:
            return True
        if project.embedding_model and project.embedding_model != self.model:
            return True
        try:
            current = text_hash(canonical_text(project))
        except DegenerateInputError:
            return False
        return project.embedding_text_hash != current

    def prepare_text(self, entity: Entity) -> Tuple[str, bool]:
        """Canonical text for an entity, truncated to max_chars. Returns (text, truncated)."""
        text = canonical_text(entity)
        if len(text) <= self.max_chars:
            return text, False
        logger.warning(
            f"{entity.id}: canonical text is {len(text)} chars "
            f"(~{len(text) // _CHARS_PER_TOKEN} tokens), truncating to {self.max_chars}"
        )
        return text[:self.max_chars], True

    def _failure(self, entity: Entity, error: str, digest: str = "") -> EmbeddingResult:
        return EmbeddingResult(
            entity_id=entity.id,
            kind=_KINDS.get(type(entity)),
            embedding=None,
            dimensions=self._embedding_dim,
            model=self.model,
            text_hash=digest,
            failed=True,
            error=error,
        )

    def _accept_dim(self, vector: List[float]) -> bool:
        if not self._dim_locked:
            self._embedding_dim = len(vector)
            self._dim_locked = True
            return True
        return len(vector) == self._embedding_dim

    async def embed_entity(self, entity: Entity) -> EmbeddingResult:
        """Embed one record. Never raises for service or input failures."""
        try:
            text, truncated = self.prepare_text(entity)
        except DegenerateInputError as e:
            logger.warning(f"Skipping embedding: {e}")
            return self._failure(entity, str(e))

        digest = text_hash(text)
        try:
            vector = await self.client.embed(text)
        except ServiceError as e:
            logger.error(f"Embedding failed for {entity.id}: {type(e).__name__}: {e}")
            return self._failure(entity, str(e), digest)

        if not vector:
            logger.error(f"Embedding service returned an empty vector for {entity.id}")
            return self._failure(entity, "empty vector", digest)
        if not self._accept_dim(vector):
            logger.error(
                f"DIMENSION MISMATCH for {entity.id}: got {len(vector)}-dim, "
                f"locked to {self._embedding_dim}-dim"
            )
            return self._failure(entity, f"dimension mismatch ({len(vector)})", digest)

        return EmbeddingResult(
            entity_id=entity.id,
            kind=entity_kind(entity),
            embedding=vector,
            dimensions=len(vector),
            model=self.model,
            text_hash=digest,
            truncated=truncated,
        )

    async def embed_batch(self, entities: Sequence[Entity]) -> List[EmbeddingResult]:
        """
        Embed many records in rate-limited batches.

        Returns one EmbeddingResult per input, in input order. Results are
        matched to inputs by position of submission, not completion order.
        """
        if not entities:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(idx: int, entity: Entity) -> Tuple[int, EmbeddingResult]:
            async with semaphore:
                return idx, await self.embed_entity(entity)

        results: Dict[int, EmbeddingResult] = {}
        batches = [
            list(range(start, min(start + self.batch_size, len(entities))))
            for start in range(0, len(entities), self.batch_size)
        ]

        for batch_no, indices in enumerate(batches):
            if batch_no > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            outcomes = await asyncio.gather(
                *[_one(i, entities[i]) for i in indices],
                return_exceptions=True,
            )
            for i, outcome in zip(indices, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Embedding task for {entities[i].id} crashed: {outcome}")
                    results[i] = self._failure(entities[i], repr(outcome))
                else:
                    results[outcome[0]] = outcome[1]

            ok = sum(1 for i in indices if results[i].ok)
            logger.info(
                f"Embedding batch {batch_no + 1}/{len(batches)}: "
                f"{ok}/{len(indices)} succeeded"
            )

        ordered = [results[i] for i in range(len(entities))]
        failed = sum(1 for r in ordered if not r.ok)
        if failed:
            logger.warning(f"Embeddings: {failed}/{len(ordered)} items failed and were skipped")
        return ordered


# ══════════════════════════════════════════════════════════════════════════════
# SIMILARITY
# ══════════════════════════════════════════════════════════════════════════════

def cosine_similarity(embedding1: Sequence[float], embedding2: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1].

    Raises ValueError when the vectors differ in length. A zero vector has
    similarity 0.0 with everything.
    """
    if len(embedding1) != len(embedding2):
        raise ValueError(
            f"Cannot compare vectors of different length ({len(embedding1)} vs {len(embedding2)})"
        )
    vec1 = np.asarray(embedding1, dtype=float)
    vec2 = np.asarray(embedding2, dtype=float)
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.clip(np.dot(vec1, vec2) / (norm1 * norm2), -1.0, 1.0))


def similarity_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarity matrix (zero rows stay zero)."""
    if len(embeddings) == 0:
        return np.array([])
    matrix = np.asarray(embeddings, dtype=float)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1
    normalized = matrix / norms
    return np.clip(normalized @ normalized.T, -1.0, 1.0)


def find_similar(
    query_embedding: Sequence[float],
    candidate_embeddings: Sequence[Sequence[float]],
    top_k: int = 5,
    threshold: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Top-k nearest candidates by cosine similarity, most similar first.

    Returns ``[{"index": i, "similarity": s}, ...]``; candidates below
    ``threshold`` (when given) are omitted.
    """
    if len(query_embedding) == 0 or len(candidate_embeddings) == 0 or top_k <= 0:
        return []

    query = np.asarray(query_embedding, dtype=float)
    candidates = np.asarray(candidate_embeddings, dtype=float)
    if candidates.ndim != 2 or candidates.shape[1] != query.shape[0]:
        raise ValueError(
            f"Query has {query.shape[0]} dims but candidates have shape {candidates.shape}"
        )

    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        similarities = np.zeros(len(candidates))
    else:
        cand_norms = np.linalg.norm(candidates, axis=1)
        cand_norms[cand_norms == 0] = 1
        similarities = np.clip((candidates @ query) / (cand_norms * query_norm), -1.0, 1.0)

    # Stable sort keeps earlier candidates first on ties
    ranked = np.argsort(-similarities, kind="stable")
    results = []
    for idx in ranked[:top_k]:
        sim = float(similarities[idx])
        if threshold is not None and sim < threshold:
            continue
        results.append({"index": int(idx), "similarity": sim})
    return results
