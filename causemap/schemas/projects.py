"""
Entity records and embedding results.

Tags, topics and embeddings are plain typed lists here. Serialization to
the storage format happens only in causemap.database.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from causemap.schemas.base import EntityKind


class ProjectRecord(BaseModel):
    """An open-source project as seen by the discovery pipeline."""
    id: str
    name: str
    description: str = ""
    platform: str = "github"
    url: str = ""
    stars: int = 0
    forks: int = 0
    languages: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    embedding: Optional[List[float]] = None
    embedding_model: Optional[str] = None
    # Hash of the canonical text the embedding was computed from
    embedding_text_hash: Optional[str] = None

    cause_id: Optional[str] = None

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class ContributorRecord(BaseModel):
    """A contributor profile."""
    id: str
    name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    causes: List[str] = Field(default_factory=list)


class CauseRecord(BaseModel):
    """A curated or previously discovered cause, embedded for similarity search."""
    id: str
    name: str
    description: str = ""
    impact_score: Optional[float] = None
    keywords: List[str] = Field(default_factory=list)
    urgency: Optional[float] = None
    tractability: Optional[float] = None
    geographic_scope: Optional[str] = None


class EmbeddingResult(BaseModel):
    """Outcome of embedding one entity.

    A failed item carries ``embedding=None`` and ``failed=True``; it is never
    persisted and therefore never reaches reduction or clustering. ``vector``
    gives the zero-vector form for callers that want a fixed-length value
    regardless of outcome.
    """
    entity_id: str
    kind: Optional[EntityKind] = EntityKind.PROJECT
    embedding: Optional[List[float]] = None
    dimensions: int = 0
    model: str = ""
    text_hash: str = ""
    truncated: bool = False
    failed: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.embedding is not None

    @property
    def vector(self) -> List[float]:
        if self.ok:
            return list(self.embedding)
        return [0.0] * self.dimensions
