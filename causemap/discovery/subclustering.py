"""
Hierarchical refinement. Splits large causes into subcauses.

STRATEGY: for each top-level cluster larger than
min_members × 2 × max_sub_causes, re-run k-means on just its members
(full embedding space) with k ≤ max_sub_causes. Subclusters below the
minimum size are dropped as usual; if fewer than two survive there is no
meaningful sub-structure and the parent stays whole.

RECONCILE: a project owned by a subcause is removed from its parent's
direct membership, so no project is counted twice within a level. The
parent's aggregate metadata still describes the whole cause.
"""

import logging
from typing import Dict, List, Sequence

from causemap.discovery.clustering import KMeansClusterer, should_subcluster
from causemap.schemas.causes import Cluster, DiscoveredCause

logger = logging.getLogger(__name__)

# Fewer surviving subclusters than this means "no sub-structure"
MIN_SUBCLUSTERS = 2


def split_cluster(
    cluster: Cluster,
    vectors_by_id: Dict[str, Sequence[float]],
    clusterer: KMeansClusterer,
) -> List[Cluster]:
    """Subclusters of ``cluster`` (level + 1, parent_id set), or [] when not worth splitting."""
    sub_k = clusterer.max_k
    if not should_subcluster(cluster.size, clusterer.min_members, sub_k):
        logger.debug(
            f"{cluster.id}: {cluster.size} members ≤ {clusterer.min_members * 2 * sub_k}, not subclustering"
        )
        return []

    ids = [pid for pid in cluster.member_ids if pid in vectors_by_id]
    result = clusterer.cluster(
        ids,
        [vectors_by_id[pid] for pid in ids],
        level=cluster.level + 1,
        parent_id=cluster.id,
    )
    if len(result.clusters) < MIN_SUBCLUSTERS:
        logger.info(
            f"{cluster.id}: only {len(result.clusters)} viable subcluster(s); keeping cause whole"
        )
        return []
    return result.clusters


def reconcile(parent: DiscoveredCause, subcauses: Sequence[DiscoveredCause]) -> DiscoveredCause:
    """Remove subcause members from the parent's direct membership (in place)."""
    owned = {pid for sub in subcauses for pid in sub.project_ids}
    if owned:
        before = len(parent.project_ids)
        parent.project_ids = [pid for pid in parent.project_ids if pid not in owned]
        logger.debug(
            f"{parent.id}: {before} → {len(parent.project_ids)} direct members "
            f"({len(owned)} moved to {len(subcauses)} subcauses)"
        )
    return parent
