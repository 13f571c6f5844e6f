"""
Cause discovery: embeddings in, labeled cause hierarchy out.

- reduction.py: PCA with fallbacks, scoped projections, metadata features
- outliers.py: IQR outlier flags and dampening
- clustering.py: k-means with heuristic k and minimum cluster size
- subclustering.py: second-level splits and parent reconciliation
- keywords.py: topic/tag aggregation, metadata labels, maturity
- labeling.py: LLM / metadata / fallback cause labels
- engine.py: CauseDiscoveryEngine (the orchestrator)
- layout.py: presentation nodes from cached projections
"""

from causemap.discovery.clustering import KMeansClusterer, choose_k, should_subcluster
from causemap.discovery.engine import CauseDiscoveryEngine, embedded_projects
from causemap.discovery.labeling import CauseLabeler
from causemap.discovery.layout import build_layout, layout_from_embeddings
from causemap.discovery.outliers import OutlierDetector, OutlierReport
from causemap.discovery.reduction import (
    DimensionReducer,
    ReductionResult,
    extract_metadata_features,
    project_scope,
    reduce_for_clustering,
)
