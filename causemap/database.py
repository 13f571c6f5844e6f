"""
SQLite database — stores projects, discovered causes, and cached projections.

Tables:
  - projects: Project metadata plus the cached embedding and its text hash
  - causes: Causes from the latest discovery run (both levels)
  - projections: PCA coordinates per (scope, project); scope "" is global

Cached projections are dropped whenever their population changes: saving
embeddings clears the global scope and every cause scope holding a rewritten
project, and saving causes clears all cause scopes.

JSON blobs (lists, embeddings, coordinates) are (de)serialized only here;
callers see typed records from causemap.schemas.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import (
    create_engine, Column, String, Integer, Float, Text, DateTime,
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from .config import get_settings
from .schemas.base import EntityKind, LabelSource, ReductionMethod
from .schemas.causes import CauseMetadata, DiscoveredCause, ScopeProjection
from .schemas.projects import EmbeddingResult, ProjectRecord

logger = logging.getLogger(__name__)

Base = declarative_base()

GLOBAL_SCOPE = ""


def _dump(value) -> str:
    return json.dumps(value if value is not None else [])


def _load(text: Optional[str], default=None):
    if not text:
        return [] if default is None else default
    return json.loads(text)


# ── Models ───────────────────────────────────────────────────────────────────

class ProjectModel(Base):
    """Open-source project with its cached embedding."""
    __tablename__ = "projects"

    id = Column(String(100), primary_key=True)
    name = Column(String(300), nullable=False)
    description = Column(Text, default="")
    platform = Column(String(50), default="github")
    url = Column(String(500), default="")
    stars = Column(Integer, default=0, index=True)
    forks = Column(Integer, default=0)
    languages = Column(Text, default="[]")  # JSON array
    topics = Column(Text, default="[]")  # JSON array
    tags = Column(Text, default="[]")  # JSON array

    embedding = Column(Text)  # JSON array of floats
    embedding_model = Column(String(100))
    embedding_text_hash = Column(String(32))
    embedded_at = Column(DateTime)

    cause_id = Column(String(100), index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CauseModel(Base):
    """Discovered cause (top level or subcause)."""
    __tablename__ = "causes"

    id = Column(String(100), primary_key=True)
    run_id = Column(String(50), nullable=False, index=True)
    name = Column(String(300), nullable=False)
    description = Column(Text, default="")
    keywords = Column(Text, default="[]")  # JSON array
    color = Column(String(10))
    level = Column(Integer, default=0)
    parent_id = Column(String(100), index=True)
    project_ids = Column(Text, default="[]")  # JSON array (direct members)
    centroid = Column(Text, default="[]")  # JSON array
    confidence = Column(Float, default=0.0)
    label_source = Column(String(20))
    cause_metadata = Column(Text, default="{}")  # JSON object
    created_at = Column(DateTime, default=datetime.utcnow)


class ProjectionModel(Base):
    """Cached PCA coordinates of one project within one scope."""
    __tablename__ = "projections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope_id = Column(String(100), default=GLOBAL_SCOPE, index=True)
    project_id = Column(String(100), nullable=False, index=True)
    model = Column(String(100), default="")
    coordinates = Column(Text)  # JSON array, padded to storage width
    explained_variance = Column(Text)  # JSON array, padded to storage width
    components = Column(Integer, default=0)
    method = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)


def _drop_projections(session: Session, project_ids: Sequence[str]) -> None:
    """Invalidate the global projection and every cause scope holding one of project_ids."""
    scopes = {GLOBAL_SCOPE} | {
        scope for (scope,) in session.query(ProjectionModel.scope_id)
        .filter(ProjectionModel.project_id.in_(list(project_ids)))
        .distinct()
    }
    dropped = session.query(ProjectionModel).filter(
        ProjectionModel.scope_id.in_(scopes)
    ).delete(synchronize_session=False)
    if dropped:
        logger.info(f"Embeddings changed; dropped {dropped} cached projection rows in {len(scopes)} scope(s)")


def _to_record(row: ProjectModel) -> ProjectRecord:
    return ProjectRecord(
        id=row.id,
        name=row.name,
        description=row.description or "",
        platform=row.platform or "github",
        url=row.url or "",
        stars=row.stars or 0,
        forks=row.forks or 0,
        languages=_load(row.languages),
        topics=_load(row.topics),
        tags=_load(row.tags),
        embedding=_load(row.embedding) or None,
        embedding_model=row.embedding_model,
        embedding_text_hash=row.embedding_text_hash,
        cause_id=row.cause_id,
    )


def _to_cause(row: CauseModel) -> DiscoveredCause:
    return DiscoveredCause(
        id=row.id,
        name=row.name,
        description=row.description or "",
        keywords=_load(row.keywords),
        color=row.color or "#6366f1",
        level=row.level or 0,
        parent_id=row.parent_id,
        project_ids=_load(row.project_ids),
        centroid=_load(row.centroid),
        confidence=row.confidence or 0.0,
        label_source=LabelSource(row.label_source or LabelSource.METADATA.value),
        metadata=CauseMetadata(**_load(row.cause_metadata, {})),
    )


# ── Database class ───────────────────────────────────────────────────────────

class Database:
    """Database manager — singleton via get_database(), lazy-initialized.

    No in-process locking: callers serialize discovery runs.
    """

    def __init__(self, database_url: Optional[str] = None):
        settings = get_settings()
        url = database_url or settings.database_url
        if "aiosqlite" in url:
            url = url.replace("sqlite+aiosqlite", "sqlite")

        # Sessions are used from worker threads (asyncio.to_thread)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, echo=False, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables (safe to call multiple times)."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self) -> Session:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── Projects ──────────────────────────────────────────────────────

    def upsert_projects(self, projects: Sequence[ProjectRecord]) -> int:
        """Insert or update project metadata. Returns count written.

        A cached embedding is kept unless the record carries its own.
        """
        with self.get_session() as session:
            for p in projects:
                row = session.get(ProjectModel, p.id) or ProjectModel(id=p.id)
                row.name = p.name
                row.description = p.description
                row.platform = p.platform
                row.url = p.url
                row.stars = p.stars
                row.forks = p.forks
                row.languages = _dump(p.languages)
                row.topics = _dump(p.topics)
                row.tags = _dump(p.tags)
                if p.embedding:
                    row.embedding = _dump(p.embedding)
                    row.embedding_model = p.embedding_model
                    row.embedding_text_hash = p.embedding_text_hash
                    row.embedded_at = datetime.utcnow()
                session.merge(row)  # merge = upsert
        logger.info(f"Upserted {len(projects)} projects")
        return len(projects)

    def fetch_projects(
        self,
        offset: int = 0,
        limit: int = 1000,
        only_embedded: bool = False,
    ) -> List[ProjectRecord]:
        """One page of projects, most-starred first (ties by id)."""
        with self.get_session() as session:
            q = session.query(ProjectModel)
            if only_embedded:
                q = q.filter(ProjectModel.embedding.isnot(None))
            rows = (
                q.order_by(ProjectModel.stars.desc(), ProjectModel.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [_to_record(r) for r in rows]

    def count_projects(self, only_embedded: bool = False) -> int:
        with self.get_session() as session:
            q = session.query(ProjectModel)
            if only_embedded:
                q = q.filter(ProjectModel.embedding.isnot(None))
            return q.count()

    def fetch_projects_by_cause(self, cause_id: str, include_subcauses: bool = True) -> List[ProjectRecord]:
        """Projects assigned to a cause (and, by default, to its subcauses)."""
        with self.get_session() as session:
            ids = [cause_id]
            if include_subcauses:
                ids += [
                    c.id for c in session.query(CauseModel.id).filter(CauseModel.parent_id == cause_id)
                ]
            rows = (
                session.query(ProjectModel)
                .filter(ProjectModel.cause_id.in_(ids))
                .order_by(ProjectModel.stars.desc(), ProjectModel.id)
                .all()
            )
            return [_to_record(r) for r in rows]

    def save_embeddings(self, results: Sequence[EmbeddingResult], model: str) -> int:
        """Store successful embeddings on their projects. Failed results are skipped."""
        saved_ids = []
        skipped = 0
        with self.get_session() as session:
            for result in results:
                if not result.ok or result.kind != EntityKind.PROJECT:
                    skipped += 1
                    continue
                row = session.get(ProjectModel, result.entity_id)
                if row is None:
                    logger.warning(f"Embedding for unknown project {result.entity_id}; skipped")
                    skipped += 1
                    continue
                row.embedding = _dump(result.embedding)
                row.embedding_model = result.model or model
                row.embedding_text_hash = result.text_hash
                row.embedded_at = datetime.utcnow()
                saved_ids.append(result.entity_id)
            if saved_ids:
                _drop_projections(session, saved_ids)
        logger.info(f"Saved {len(saved_ids)} embeddings ({skipped} skipped)")
        return len(saved_ids)

    # ── Causes ────────────────────────────────────────────────────────

    def save_causes(self, run_id: str, causes: Sequence[DiscoveredCause]) -> int:
        """Replace all causes with this run's and rewrite project assignments.

        Top-level causes are assigned first, then subcauses, so each project
        ends up with its most specific cause.
        """
        with self.get_session() as session:
            session.query(CauseModel).delete()
            session.query(ProjectModel).update({ProjectModel.cause_id: None})
            dropped = session.query(ProjectionModel).filter(
                ProjectionModel.scope_id != GLOBAL_SCOPE
            ).delete(synchronize_session=False)
            if dropped:
                logger.info(f"Dropped {dropped} cached cause-scope projection rows")

            for cause in causes:
                session.add(CauseModel(
                    id=cause.id,
                    run_id=run_id,
                    name=cause.name,
                    description=cause.description,
                    keywords=_dump(cause.keywords),
                    color=cause.color,
                    level=cause.level,
                    parent_id=cause.parent_id,
                    project_ids=_dump(cause.project_ids),
                    centroid=_dump(cause.centroid),
                    confidence=cause.confidence,
                    label_source=cause.label_source.value,
                    cause_metadata=cause.metadata.model_dump_json(),
                ))

            for cause in sorted(causes, key=lambda c: c.level):
                if cause.project_ids:
                    session.query(ProjectModel).filter(
                        ProjectModel.id.in_(cause.project_ids)
                    ).update({ProjectModel.cause_id: cause.id}, synchronize_session=False)
        logger.info(f"Saved {len(causes)} causes for run {run_id}")
        return len(causes)

    def get_causes(self, level: Optional[int] = None) -> List[DiscoveredCause]:
        with self.get_session() as session:
            q = session.query(CauseModel)
            if level is not None:
                q = q.filter(CauseModel.level == level)
            rows = q.order_by(CauseModel.level, CauseModel.id).all()
            return [_to_cause(r) for r in rows]

    # ── Projections ───────────────────────────────────────────────────

    def save_projection(self, projection: ScopeProjection) -> int:
        """Replace every cached row of the projection's scope. Skipped scopes are just cleared."""
        scope = projection.scope_id or GLOBAL_SCOPE
        with self.get_session() as session:
            session.query(ProjectionModel).filter(ProjectionModel.scope_id == scope).delete()
            variance = _dump(projection.explained_variance)
            method = projection.method.value if projection.method else None
            for project_id, coords in projection.coordinates.items():
                session.add(ProjectionModel(
                    scope_id=scope,
                    project_id=project_id,
                    model=projection.model,
                    coordinates=_dump(coords),
                    explained_variance=variance,
                    components=projection.components,
                    method=method,
                ))
        logger.info(f"Saved projection '{scope or 'global'}': {len(projection.coordinates)} rows")
        return len(projection.coordinates)

    def get_projection(self, scope_id: Optional[str] = None, model: Optional[str] = None) -> Optional[ScopeProjection]:
        """Cached projection of a scope, or None when absent or made with another model."""
        scope = scope_id or GLOBAL_SCOPE
        with self.get_session() as session:
            rows = session.query(ProjectionModel).filter(ProjectionModel.scope_id == scope).all()
            if not rows:
                return None
            if model is not None and any(r.model != model for r in rows):
                logger.info(f"Projection '{scope or 'global'}' is stale (model changed); ignoring cache")
                return None
            first = rows[0]
            return ScopeProjection(
                scope_id=scope_id or None,
                model=first.model or "",
                coordinates={r.project_id: _load(r.coordinates) for r in rows},
                explained_variance=_load(first.explained_variance),
                components=first.components or 0,
                method=ReductionMethod(first.method) if first.method else None,
            )

    def list_projection_scopes(self) -> Dict[str, int]:
        """scope id ("" = global) → cached row count."""
        from sqlalchemy import func
        with self.get_session() as session:
            return {
                scope: count
                for scope, count in session.query(
                    ProjectionModel.scope_id, func.count(ProjectionModel.id)
                ).group_by(ProjectionModel.scope_id)
            }


# ── Singleton ────────────────────────────────────────────────────────────────

_db: Optional[Database] = None


def get_database() -> Database:
    """Get or create the database singleton."""
    global _db
    if _db is None:
        _db = Database()
        _db.create_tables()
    return _db
