"""
Hierarchical cause discovery — the orchestrator.

State machine over one run:
  1. Load       projects in bounded batches (optionally only those with
                cached embeddings)
  2. Cluster    top-level k-means over the embedding set, capped to the
                first CLUSTERING_MAX_DIMS principal components
  3. Label      each top-level cluster (bounded LLM concurrency)
  4. Subcluster each top-level cluster above the size threshold
  5. Label      each subcluster
  6. Reconcile  remove subcluster members from their parent
  7. Emit       flattened list of causes (top-level first, then subcauses)

FAILURE SEMANTICS:
  - Empty population → a well-defined result with zero causes.
  - Projects present but none embedded → metadata-feature clustering
    (stars, forks, language/topic counts, social-domain indicators) at the
    top level only.
  - A labeling failure affects only its own cluster (fallback label).

Centroids are reported in embedding space (mean of member embeddings),
whatever space k-means ran in.
"""

import asyncio
import logging
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from causemap.config import Settings, get_settings
from causemap.discovery.clustering import KMeansClusterer, silhouette
from causemap.discovery.labeling import CauseLabeler
from causemap.discovery.reduction import extract_metadata_features, reduce_for_clustering
from causemap.discovery.subclustering import reconcile, split_cluster
from causemap.schemas.causes import Cluster, ClusteringResult, DiscoveredCause, DiscoveryResult
from causemap.schemas.projects import ProjectRecord

logger = logging.getLogger(__name__)


def _new_run_id() -> str:
    return f"run-{datetime.utcnow():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


def embedded_projects(projects: Sequence[ProjectRecord]) -> List[ProjectRecord]:
    """Projects with an embedding of the dominant dimensionality."""
    with_vectors = [p for p in projects if p.has_embedding]
    if not with_vectors:
        return []
    dims = Counter(len(p.embedding) for p in with_vectors)
    dim, _ = dims.most_common(1)[0]
    if len(dims) > 1:
        logger.warning(
            f"Mixed embedding sizes {dict(dims)}; using {dim}-dim vectors only"
        )
    return [p for p in with_vectors if len(p.embedding) == dim]


class CauseDiscoveryEngine:
    """
    Two-level (cause → subcause) discovery over a project store.

    ``store`` needs ``fetch_projects(offset, limit, only_embedded)``
    returning projects ordered by stars, and ``count_projects()`` (see
    causemap.database.Database).
    It is only consulted when ``discover`` is not handed projects directly.
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        labeler: Optional[CauseLabeler] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.labeler = labeler or CauseLabeler(settings=self.settings)

    # ── 1. Load ───────────────────────────────────────────────────────

    async def load_projects(self, use_cache: bool = True) -> List[ProjectRecord]:
        """Fetch projects in batches of LOAD_BATCH_SIZE until the store is exhausted."""
        if self.store is None:
            return []
        batch_size = self.settings.load_batch_size
        projects: List[ProjectRecord] = []
        offset = 0
        while True:
            batch = await asyncio.to_thread(
                self.store.fetch_projects, offset, batch_size, use_cache,
            )
            projects.extend(batch)
            logger.debug(f"Loaded batch at offset {offset}: {len(batch)} projects")
            if len(batch) < batch_size:
                break
            offset += batch_size
        logger.info(
            f"Loaded {len(projects)} projects"
            f"{' with cached embeddings' if use_cache else ''}"
        )
        return projects

    # ── Discovery ─────────────────────────────────────────────────────

    async def discover(
        self,
        max_top_level_causes: Optional[int] = None,
        max_sub_causes: Optional[int] = None,
        min_projects_per_cause: Optional[int] = None,
        use_cache: bool = True,
        projects: Optional[Sequence[ProjectRecord]] = None,
    ) -> DiscoveryResult:
        """Run the full discovery state machine and return every cause found."""
        s = self.settings
        max_top = s.max_top_level_causes if max_top_level_causes is None else max_top_level_causes
        max_sub = s.max_sub_causes if max_sub_causes is None else max_sub_causes
        min_per = s.min_projects_per_cause if min_projects_per_cause is None else min_projects_per_cause
        run_id = _new_run_id()
        t_start = time.time()

        total = None
        if projects is None:
            projects = await self.load_projects(use_cache=use_cache)
            if use_cache and not projects:
                # Nothing embedded yet; metadata clustering may still work
                projects = await self.load_projects(use_cache=False)
            elif use_cache:
                total = await asyncio.to_thread(self.store.count_projects)
        projects = list(projects)

        if not projects:
            logger.warning("Discovery: no projects available; returning zero causes")
            return DiscoveryResult(run_id=run_id, metrics={"status": "empty", "projects": 0})

        projects_by_id = {p.id: p for p in projects}
        embedded = embedded_projects(projects)
        embedded_ids = {p.id for p in embedded}
        missing = len(projects) - len(embedded_ids) if total is None else total - len(embedded_ids)

        if embedded:
            top = self._cluster_top_level(embedded, max_top, min_per)
            fallback = False
        else:
            logger.warning(
                f"Discovery: none of {len(projects)} projects has an embedding; "
                f"clustering on metadata features"
            )
            top = self._cluster_metadata(projects, max_top, min_per)
            fallback = True

        if not top.clusters:
            logger.warning(
                f"Discovery: {len(projects)} projects produced no cluster of "
                f"≥{min_per} members; returning zero causes"
            )
            return DiscoveryResult(
                run_id=run_id,
                unclustered_ids=top.unclustered_ids,
                silhouette={"top": top.silhouette},
                metrics=self._metrics("no_clusters", projects, embedded, missing, [], t_start),
                used_metadata_fallback=fallback,
            )

        vectors_by_id = {p.id: p.embedding for p in embedded}
        if not fallback:
            self._embedding_centroids(top.clusters, vectors_by_id)

        # ── 3. Label top level ──
        top_causes = await self.labeler.label_clusters(top.clusters, projects_by_id)

        # ── 4-6. Subcluster, label, reconcile ──
        silhouettes: Dict[str, Optional[float]] = {"top": top.silhouette}
        sub_causes: List[DiscoveredCause] = []
        if not fallback:
            sub_clusterer = KMeansClusterer(
                max_k=max_sub,
                min_members=min_per,
                max_iter=s.kmeans_sub_iterations,
                n_init=s.kmeans_restarts,
                random_state=s.random_seed,
            )
            clusters_by_id = {c.id: c for c in top.clusters}
            for index, parent in enumerate(top_causes):
                subclusters = split_cluster(clusters_by_id[parent.id], vectors_by_id, sub_clusterer)
                if not subclusters:
                    continue
                self._embedding_centroids(subclusters, vectors_by_id)
                children = await self.labeler.label_clusters(
                    subclusters, projects_by_id, parent=parent, start_index=index,
                )
                reconcile(parent, children)
                silhouettes[parent.id] = self._silhouette_for(subclusters, vectors_by_id)
                sub_causes.extend(children)

        # ── 7. Emit ──
        causes = top_causes + sub_causes
        result = DiscoveryResult(
            run_id=run_id,
            causes=causes,
            unclustered_ids=top.unclustered_ids,
            silhouette=silhouettes,
            metrics=self._metrics("completed", projects, embedded, missing, causes, t_start),
            used_metadata_fallback=fallback,
        )
        logger.info(
            f"Discovery {run_id}: {len(top_causes)} causes, {len(sub_causes)} subcauses, "
            f"{len(top.unclustered_ids)} unclustered, {missing} without embeddings "
            f"({result.metrics['elapsed_s']}s)"
        )
        return result

    # ── Helpers ───────────────────────────────────────────────────────

    def _cluster_top_level(
        self,
        embedded: Sequence[ProjectRecord],
        max_top: int,
        min_per: int,
    ) -> ClusteringResult:
        s = self.settings
        X = reduce_for_clustering(
            [p.embedding for p in embedded],
            max_dims=s.clustering_max_dims,
            random_state=s.random_seed,
        )
        clusterer = KMeansClusterer(
            max_k=max_top,
            min_members=min_per,
            max_iter=s.kmeans_top_level_iterations,
            n_init=s.kmeans_restarts,
            random_state=s.random_seed,
        )
        return clusterer.cluster([p.id for p in embedded], X, level=0)

    def _cluster_metadata(
        self,
        projects: Sequence[ProjectRecord],
        max_top: int,
        min_per: int,
    ) -> ClusteringResult:
        s = self.settings
        n = len(projects)
        k = min(s.metadata_fallback_max_k, max_top, n // 3, n // max(1, min_per))
        clusterer = KMeansClusterer(
            max_k=max_top,
            min_members=min_per,
            max_iter=s.metadata_fallback_iterations,
            n_init=s.kmeans_restarts,
            random_state=s.random_seed,
        )
        return clusterer.cluster(
            [p.id for p in projects],
            [extract_metadata_features(p) for p in projects],
            level=0,
            k=k,
        )

    @staticmethod
    def _embedding_centroids(clusters: Sequence[Cluster], vectors_by_id: Dict[str, Sequence[float]]) -> None:
        for cluster in clusters:
            members = [vectors_by_id[pid] for pid in cluster.member_ids if pid in vectors_by_id]
            if members:
                cluster.centroid = np.mean(np.asarray(members, dtype=float), axis=0).tolist()

    @staticmethod
    def _silhouette_for(clusters: Sequence[Cluster], vectors_by_id: Dict[str, Sequence[float]]) -> Optional[float]:
        ids = [pid for c in clusters for pid in c.member_ids]
        labels = np.array([i for i, c in enumerate(clusters) for _ in c.member_ids])
        X = np.asarray([vectors_by_id[pid] for pid in ids], dtype=float)
        return silhouette(X, labels)

    def _metrics(
        self,
        status: str,
        projects: Sequence[ProjectRecord],
        embedded: Sequence[ProjectRecord],
        missing: int,
        causes: Sequence[DiscoveredCause],
        t_start: float,
    ) -> Dict[str, Any]:
        return {
            "status": status,
            "projects": len(projects),
            "embedded": len(embedded),
            "missing_embeddings": missing,
            "top_level_causes": sum(1 for c in causes if c.level == 0),
            "sub_causes": sum(1 for c in causes if c.level == 1),
            "label_sources": dict(Counter(c.label_source.value for c in causes)),
            "elapsed_s": round(time.time() - t_start, 3),
        }
