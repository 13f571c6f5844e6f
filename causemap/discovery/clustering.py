"""
k-means clustering with heuristic k and minimum cluster size.

k SELECTION:
  k = clamp(floor(sqrt(N / 2)), 2, max_k), then capped at
  floor(N / min_members) so that no cluster is forced below the minimum
  viable size. Small populations get a smaller k (possibly 1) or no
  clusters at all (k = 0), never an error.

ALGORITHM:
  scikit-learn KMeans with k-means++ seeding, several restarts and a
  bounded iteration count (50 at the top level, 30 for subclusters).

DEGENERATE CLUSTERS:
  Clusters that converge with fewer than min_members members are dropped.
  Their members are reported as unclustered for this run, not merged into
  a neighbour. Every input id therefore ends up exactly once: in one
  cluster, or in ``unclustered_ids``.

QUALITY:
  Mean silhouette over clustered points, (b - a) / max(a, b), in [-1, 1].
  Advisory only; it never gates success.
"""

import logging
import math
import time
from collections import Counter
from typing import List, Optional, Sequence

import numpy as np
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score

from causemap.schemas.causes import Cluster, ClusteringResult

logger = logging.getLogger(__name__)


def choose_k(n: int, max_k: int, min_members: int) -> int:
    """Heuristic cluster count for a population of n.

    Returns 0 when not even one cluster can reach ``min_members``.
    """
    if n <= 0 or max_k < 1:
        return 0
    k = min(max(int(math.floor(math.sqrt(n / 2))), 2), max_k)
    if min_members > 0:
        k = min(k, n // min_members)
    return max(0, min(k, n))


def should_subcluster(size: int, min_members: int, sub_k: int) -> bool:
    """True when a cluster is large enough to split into sub_k viable subclusters."""
    return size > min_members * 2 * sub_k


def silhouette(
    X: np.ndarray,
    labels: np.ndarray,
    valid_labels: Optional[Sequence[int]] = None,
    metric: str = "euclidean",
) -> Optional[float]:
    """Mean silhouette over points whose label is in valid_labels.

    None when fewer than two clusters (or too few points) remain.
    """
    labels = np.asarray(labels)
    mask = np.ones(len(labels), dtype=bool) if valid_labels is None else np.isin(labels, list(valid_labels))
    valid_X = X[mask]
    valid_y = labels[mask]
    n_clusters = len(set(valid_y.tolist()))
    if n_clusters < 2 or len(valid_y) <= n_clusters:
        return None
    try:
        return float(silhouette_score(valid_X, valid_y, metric=metric))
    except ValueError as e:
        logger.debug(f"Silhouette unavailable: {e}")
        return None


class KMeansClusterer:
    """
    One level of k-means over a set of identified vectors.

    EXTENSIBILITY: any replacement only needs
    ``cluster(ids, vectors, level, parent_id) -> ClusteringResult``.
    """

    def __init__(
        self,
        max_k: int = 8,
        min_members: int = 5,
        max_iter: int = 100,
        n_init: int = 4,
        random_state: int = 42,
        metric: str = "euclidean",
    ):
        self.max_k = max_k
        self.min_members = max(1, min_members)
        self.max_iter = max_iter
        self.n_init = max(1, n_init)
        self.random_state = random_state
        self.metric = metric

    def _cluster_id(self, rank: int, level: int, parent_id: Optional[str]) -> str:
        if parent_id:
            return f"{parent_id}-{rank}"
        return f"cause-{level}-{rank}"

    def cluster(
        self,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        level: int = 0,
        parent_id: Optional[str] = None,
        k: Optional[int] = None,
    ) -> ClusteringResult:
        """
        Partition vectors into clusters.

        Cluster ids are numbered by descending size; members keep input order.
        Raises ValueError for mismatched inputs or duplicate ids.
        """
        ids = list(ids)
        if len(ids) != len(vectors):
            raise ValueError(f"{len(ids)} ids but {len(vectors)} vectors")
        if len(set(ids)) != len(ids):
            raise ValueError("Duplicate ids in clustering input")

        n = len(ids)
        if n == 0:
            return ClusteringResult()

        X = np.asarray(vectors, dtype=float)
        if k is None:
            k = choose_k(n, self.max_k, self.min_members)
        k = min(k, n)
        if k < 1:
            logger.info(
                f"k-means (level {level}): {n} items cannot form a cluster of "
                f"{self.min_members}; all unclustered"
            )
            return ClusteringResult(k=0, unclustered_ids=ids)

        distinct = int(np.unique(X, axis=0).shape[0])
        if distinct < k:
            logger.debug(f"k-means: only {distinct} distinct points, reducing k {k} → {distinct}")
            k = distinct

        t_start = time.time()
        km = KMeans(
            n_clusters=k,
            init="k-means++",
            n_init=self.n_init,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
        labels = km.fit_predict(X)

        sizes = Counter(labels.tolist())
        kept = sorted(
            (c for c in range(k) if sizes.get(c, 0) >= self.min_members),
            key=lambda c: (-sizes[c], c),
        )
        kept_set = set(kept)

        clusters: List[Cluster] = []
        for rank, label in enumerate(kept):
            members = [ids[i] for i in np.flatnonzero(labels == label)]
            clusters.append(Cluster(
                id=self._cluster_id(rank, level, parent_id),
                level=level,
                parent_id=parent_id,
                centroid=km.cluster_centers_[label].tolist(),
                member_ids=members,
            ))
        unclustered = [ids[i] for i in range(n) if int(labels[i]) not in kept_set]

        score = silhouette(X, labels, kept, metric=self.metric)
        dropped = k - len(kept)
        score_str = f"{score:.3f}" if score is not None else "n/a"
        logger.info(
            f"k-means (level {level}{', parent ' + parent_id if parent_id else ''}): "
            f"{n} items, k={k} → {len(clusters)} clusters "
            f"(sizes={[c.size for c in clusters]}), {dropped} dropped below "
            f"{self.min_members}, {len(unclustered)} unclustered, silhouette={score_str}, "
            f"iter={km.n_iter_}, {time.time() - t_start:.2f}s"
        )

        return ClusteringResult(
            k=k,
            clusters=clusters,
            unclustered_ids=unclustered,
            silhouette=score,
            iterations=int(km.n_iter_),
        )
