"""
CausePipeline — wires clients, storage and discovery together.

Stages (each callable on its own):
  embed_projects()       new or changed projects → embedding service → DB
  discover()             cached embeddings → causes (+ subcauses) → DB
  compute_projections()  global scope + one scope per top-level cause → DB
  build_layout()         cached projection → presentation nodes

Clients are built at construction, so missing credentials fail fast with
ConfigurationError. Use as an async context manager to close them.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from causemap.config import Settings, get_settings
from causemap.database import Database, get_database
from causemap.discovery.engine import CauseDiscoveryEngine, embedded_projects
from causemap.discovery.labeling import CauseLabeler
from causemap.discovery.layout import build_layout, layout_from_embeddings
from causemap.discovery.reduction import project_scope
from causemap.schemas.causes import DiscoveredCause, DiscoveryResult, ScopeProjection
from causemap.schemas.projects import ProjectRecord
from causemap.schemas.visualization import LayoutResult
from causemap.tools.embedding_clients import EmbeddingClient, build_embedding_client
from causemap.tools.embeddings import EmbeddingTool
from causemap.tools.llm_service import LLMService

logger = logging.getLogger(__name__)


class CausePipeline:
    """End-to-end cause discovery over the project database."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        database: Optional[Database] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        llm: Optional[Any] = None,
        use_llm: bool = True,
    ):
        self.settings = settings or get_settings()
        if database is None:
            if settings is None:
                database = get_database()
            else:
                database = Database(self.settings.database_url)
                database.create_tables()
        self.db = database

        self.embedding_client = embedding_client or build_embedding_client(self.settings)
        self.embedder = EmbeddingTool(self.embedding_client, settings=self.settings)
        if llm is None and use_llm:
            llm = LLMService(settings=self.settings)
        self.llm = llm

        self.engine = CauseDiscoveryEngine(
            store=self.db,
            labeler=CauseLabeler(llm=self.llm, settings=self.settings),
            settings=self.settings,
        )

    async def aclose(self) -> None:
        await self.embedding_client.aclose()
        if self.llm is not None and hasattr(self.llm, "aclose"):
            await self.llm.aclose()

    async def __aenter__(self) -> "CausePipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ── Embeddings ────────────────────────────────────────────────────

    async def embed_projects(self, force: bool = False) -> Dict[str, int]:
        """Embed projects whose canonical text (or model) changed since the last run."""
        projects = await self.engine.load_projects(use_cache=False)
        pending = projects if force else [p for p in projects if self.embedder.needs_embedding(p)]
        logger.info(
            f"Embedding {len(pending)}/{len(projects)} projects "
            f"({'forced' if force else 'new or changed only'})"
        )
        results = await self.embedder.embed_batch(pending)
        saved = await asyncio.to_thread(self.db.save_embeddings, results, self.embedder.model)
        return {
            "total": len(projects),
            "requested": len(pending),
            "embedded": saved,
            "failed": sum(1 for r in results if not r.ok),
            "unchanged": len(projects) - len(pending),
        }

    # ── Discovery ─────────────────────────────────────────────────────

    async def discover(self, persist: bool = True, **kwargs) -> DiscoveryResult:
        """Run hierarchical discovery; by default the causes replace the stored ones."""
        result = await self.engine.discover(**kwargs)
        if persist:
            await asyncio.to_thread(self.db.save_causes, result.run_id, result.causes)
        return result

    # ── Projections ───────────────────────────────────────────────────

    def _scope_vectors(self, projects: List[ProjectRecord]) -> Dict[str, List[float]]:
        return {p.id: p.embedding for p in embedded_projects(projects)}

    async def compute_projections(self) -> List[ScopeProjection]:
        """Recompute and cache the global projection and one per top-level cause."""
        s = self.settings
        projects = await self.engine.load_projects(use_cache=True)
        causes = await asyncio.to_thread(self.db.get_causes)
        by_id = {p.id: p for p in projects}

        scopes: List[tuple] = [(None, projects)]
        for cause in (c for c in causes if c.level == 0):
            member_ids = list(cause.project_ids)
            for child in (c for c in causes if c.parent_id == cause.id):
                member_ids.extend(child.project_ids)
            scopes.append((cause.id, [by_id[pid] for pid in member_ids if pid in by_id]))

        projections = []
        for scope_id, members in scopes:
            projection = project_scope(
                self._scope_vectors(members),
                scope_id=scope_id,
                model=self.embedder.model,
                storage_width=s.pca_storage_width,
                random_state=s.random_seed,
            )
            await asyncio.to_thread(self.db.save_projection, projection)
            projections.append(projection)

        skipped = sum(1 for p in projections if p.skipped)
        logger.info(f"Projections: {len(projections)} scopes computed ({skipped} skipped)")
        return projections

    # ── Presentation ──────────────────────────────────────────────────

    def _scope_causes(self, causes: List[DiscoveredCause], scope_id: Optional[str]) -> List[DiscoveredCause]:
        if scope_id is None:
            return causes
        return [c for c in causes if c.id == scope_id or c.parent_id == scope_id]

    async def build_layout(self, scope_id: Optional[str] = None) -> LayoutResult:
        """Layout for the global scope or one top-level cause.

        Uses the cached projection when it matches the current embedding
        model; otherwise projects on the fly.
        """
        causes = self._scope_causes(await asyncio.to_thread(self.db.get_causes), scope_id)
        if scope_id is None:
            projects = await self.engine.load_projects(use_cache=False)
        else:
            projects = await asyncio.to_thread(self.db.fetch_projects_by_cause, scope_id)

        projection = await asyncio.to_thread(self.db.get_projection, scope_id, self.embedder.model)
        if projection is None:
            logger.info(f"No cached projection for '{scope_id or 'global'}'; projecting now")
            return layout_from_embeddings(projects, causes, scope_id, self.settings)
        return build_layout(projects, causes, projection, self.settings)
