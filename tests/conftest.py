"""Shared fixtures: isolated settings, a temp database, and service fakes."""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from causemap.config import Settings
from causemap.database import Database
from causemap.errors import TransientServiceError
from causemap.schemas.projects import ProjectRecord
from causemap.tools.embedding_clients import EmbeddingClient


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Offline settings with no inter-batch pause and a throwaway database."""
    return Settings(_env_file=None).model_copy(update={
        "mock_mode": True,
        "openai_api_key": "",
        "database_url": f"sqlite:///{tmp_path / 'causemap-test.db'}",
        "embedding_batch_delay": 0.0,
    })


@pytest.fixture
def db(settings) -> Database:
    database = Database(settings.database_url)
    database.create_tables()
    return database


def make_project(
    pid: str,
    topics: Sequence[str] = (),
    stars: int = 10,
    embedding: Optional[List[float]] = None,
    **kwargs,
) -> ProjectRecord:
    return ProjectRecord(
        id=pid,
        name=kwargs.pop("name", f"project-{pid}"),
        description=kwargs.pop("description", f"Description of {pid}"),
        stars=stars,
        topics=list(topics),
        embedding=embedding,
        **kwargs,
    )


def blob(center: Sequence[float], n: int, spread: float = 0.1, seed: int = 0) -> List[List[float]]:
    """n points scattered around center."""
    rng = np.random.default_rng(seed)
    c = np.asarray(center, dtype=float)
    return (c + rng.normal(scale=spread, size=(n, len(c)))).tolist()


class FakeEmbeddingClient(EmbeddingClient):
    """Returns canned vectors keyed by project name; fails for names in ``fail``."""

    model = "fake-embed"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, fail: Sequence[str] = (), dimensions: int = 4):
        self.vectors = vectors or {}
        self.fail = set(fail)
        self.dimensions = dimensions
        self.calls: List[str] = []
        self.closed = False

    async def embed(self, text: str) -> List[float]:
        name = text.split("\n", 1)[0].split(": ", 1)[1]
        self.calls.append(name)
        if name in self.fail:
            raise TransientServiceError(f"rate limited on {name}")
        if name in self.vectors:
            return list(self.vectors[name])
        return [float(len(name))] + [1.0] * (self.dimensions - 1)

    async def aclose(self) -> None:
        self.closed = True
