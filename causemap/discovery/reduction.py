"""
PCA dimensionality reduction for project embeddings.

Two consumers:
  - Visualization: each scope (global, or one parent cause) is projected
    independently; coordinates are stored zero-padded to a fixed width
    (16) so scopes of different effective dimensionality compare and store
    uniformly. The first 2-3 components become display coordinates.
  - Clustering: k-means on 1536-dim embeddings is slow, so the top level
    runs on at most the first 50 principal components.

FALLBACK CHAIN (best effort; visualization never fails on bad input):
  1. PCA on standardized features (unit variance per feature)
  2. PCA on centered features, when some feature has ~zero variance
  3. Seeded random placement, when PCA is impossible (identical vectors,
     non-finite values, numerical failure)

The only hard failure is N < 2: a single vector has no principal axes,
and DegenerateInputError is raised so the caller can skip the scope.

EXPLAINED VARIANCE: reported as a ratio per component, so every value is
in [0, 1], the sequence is non-increasing, and it sums to at most 1.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from causemap.errors import DegenerateInputError
from causemap.schemas.base import ReductionMethod
from causemap.schemas.causes import ScopeProjection
from causemap.schemas.projects import ProjectRecord

logger = logging.getLogger(__name__)

# Features with a standard deviation below this are treated as constant
ZERO_VARIANCE_EPS = 1e-10

# Keyword groups behind the social-domain indicator features
DOMAIN_KEYWORDS: Dict[str, tuple] = {
    "health": ("health", "medical", "medicine", "healthcare"),
    "climate": ("climate", "environment", "carbon", "sustainability"),
    "education": ("education", "learning", "school", "teaching"),
    "ai": ("machine learning", "machine-learning", "artificial intelligence", "deep learning", "ai"),
    "finance": ("finance", "fintech", "banking", "microfinance"),
    "government": ("government", "civic", "civictech", "democracy"),
}


@dataclass
class ReductionResult:
    """Projected coordinates (N×d) and per-component explained-variance ratios."""
    coords: np.ndarray
    explained_variance: List[float] = field(default_factory=list)
    method: ReductionMethod = ReductionMethod.PCA_SCALED

    @property
    def components(self) -> int:
        return int(self.coords.shape[1]) if self.coords.ndim == 2 else 0


def pad(values: Sequence[float], width: int) -> List[float]:
    """Zero-fill (or cut) a vector to exactly ``width`` entries."""
    out = [0.0] * width
    for i, v in enumerate(list(values)[:width]):
        out[i] = float(v)
    return out


class DimensionReducer:
    """
    PCA with graceful degradation.

    ``n_components`` is an upper bound: the effective count is
    min(n_components, N, D).
    """

    def __init__(self, n_components: int = 3, random_state: int = 42):
        if n_components < 1:
            raise ValueError("n_components must be >= 1")
        self.n_components = n_components
        self.random_state = random_state

    def reduce(self, vectors: Sequence[Sequence[float]]) -> ReductionResult:
        """
        Project N vectors onto their top principal components.

        Raises DegenerateInputError for N < 2. Every other failure degrades
        to centered PCA, then to random placement.
        """
        X = np.asarray(vectors, dtype=float)
        if X.ndim != 2:
            raise DegenerateInputError(f"Expected a 2-D matrix, got shape {X.shape}")
        n_samples, n_features = X.shape
        if n_samples < 2:
            raise DegenerateInputError(f"PCA needs at least 2 vectors, got {n_samples}")
        if n_features < 1:
            raise DegenerateInputError("Vectors have no features")

        d = min(self.n_components, n_samples, n_features)
        logger.debug(f"PCA input: {n_samples} samples, {n_features} dims → {d} components")

        try:
            return self._pca(X, d, scale=True)
        except (DegenerateInputError, ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"Scaled PCA unavailable ({e}); retrying with centering only")

        try:
            return self._pca(X, d, scale=False)
        except (DegenerateInputError, ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"PCA failed ({e}); falling back to random placement")

        return self._random_placement(n_samples, d)

    def _pca(self, X: np.ndarray, d: int, scale: bool) -> ReductionResult:
        if not np.all(np.isfinite(X)):
            raise DegenerateInputError("input contains NaN or infinite values")

        std = X.std(axis=0)
        if float(np.sum(std ** 2)) <= ZERO_VARIANCE_EPS:
            raise DegenerateInputError("all vectors are identical")

        if scale:
            constant = int(np.sum(std < ZERO_VARIANCE_EPS))
            if constant:
                raise DegenerateInputError(f"{constant} zero-variance feature(s)")
            X = StandardScaler().fit_transform(X)

        pca = PCA(n_components=d, random_state=self.random_state)
        coords = pca.fit_transform(X)
        ratios = np.asarray(pca.explained_variance_ratio_, dtype=float)

        if not np.all(np.isfinite(coords)) or not np.all(np.isfinite(ratios)):
            raise DegenerateInputError("PCA produced non-finite output")

        # Guard against float jitter breaking the [0,1] / non-increasing contract
        ratios = np.minimum.accumulate(np.clip(ratios, 0.0, 1.0))

        method = ReductionMethod.PCA_SCALED if scale else ReductionMethod.PCA_CENTERED
        logger.debug(
            f"PCA ({method.value}): variance captured={ratios.sum():.3f}, "
            f"first={ratios[0]:.3f}, range=[{coords.min():.3f}, {coords.max():.3f}]"
        )
        return ReductionResult(coords=coords, explained_variance=ratios.tolist(), method=method)

    def _random_placement(self, n_samples: int, d: int) -> ReductionResult:
        rng = np.random.default_rng(self.random_state)
        coords = rng.uniform(-1.0, 1.0, size=(n_samples, d))
        return ReductionResult(
            coords=coords,
            explained_variance=[0.0] * d,
            method=ReductionMethod.RANDOM,
        )


# ══════════════════════════════════════════════════════════════════════════════
# CLUSTERING INPUT
# ══════════════════════════════════════════════════════════════════════════════

def reduce_for_clustering(
    vectors: Sequence[Sequence[float]],
    max_dims: int = 50,
    random_state: int = 42,
) -> np.ndarray:
    """Cap dimensionality before k-means.

    Uses centered PCA onto at most ``max_dims`` components; falls back to
    keeping the first ``max_dims`` columns when PCA cannot run.
    ``max_dims <= 0`` disables the cap.
    """
    X = np.asarray(vectors, dtype=float)
    if X.ndim != 2 or max_dims <= 0 or X.shape[1] <= max_dims:
        return X
    n_samples, n_features = X.shape
    if n_samples < 2:
        return X[:, :max_dims]

    d = min(max_dims, n_samples, n_features)
    try:
        reduced = PCA(n_components=d, random_state=random_state).fit_transform(X)
        if np.all(np.isfinite(reduced)):
            logger.debug(f"Clustering input: {n_features}-dim → {d} PCA components")
            return reduced
        logger.warning("PCA for clustering produced non-finite output; truncating columns")
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.warning(f"PCA for clustering failed ({e}); truncating columns")
    return X[:, :max_dims]


# ══════════════════════════════════════════════════════════════════════════════
# SCOPED PROJECTIONS
# ══════════════════════════════════════════════════════════════════════════════

def project_scope(
    vectors_by_id: Dict[str, Sequence[float]],
    scope_id: Optional[str] = None,
    model: str = "",
    storage_width: int = 16,
    random_state: int = 42,
) -> ScopeProjection:
    """
    Independent PCA over one scope's population.

    A scope with fewer than 2 members is returned skipped (with a reason)
    instead of raising. All vectors must share one dimensionality.
    """
    label = scope_id or "global"
    ids = list(vectors_by_id.keys())
    if len(ids) < 2:
        reason = f"scope '{label}' has {len(ids)} embedded project(s); PCA needs at least 2"
        logger.info(f"Skipping projection: {reason}")
        return ScopeProjection(scope_id=scope_id, model=model, skipped_reason=reason)

    lengths = {len(v) for v in vectors_by_id.values()}
    if len(lengths) > 1:
        raise ValueError(f"Scope '{label}' mixes embedding sizes {sorted(lengths)}")

    reducer = DimensionReducer(n_components=storage_width, random_state=random_state)
    try:
        result = reducer.reduce([vectors_by_id[i] for i in ids])
    except DegenerateInputError as e:
        logger.info(f"Skipping projection for scope '{label}': {e}")
        return ScopeProjection(scope_id=scope_id, model=model, skipped_reason=str(e))

    coordinates = {pid: pad(row, storage_width) for pid, row in zip(ids, result.coords)}
    logger.info(
        f"Projection '{label}': {len(ids)} projects, {result.components} components "
        f"({result.method.value}), variance={sum(result.explained_variance):.3f}"
    )
    return ScopeProjection(
        scope_id=scope_id,
        model=model,
        coordinates=coordinates,
        explained_variance=pad(result.explained_variance, storage_width),
        components=result.components,
        method=result.method,
    )


# ══════════════════════════════════════════════════════════════════════════════
# METADATA FEATURES (projects without embeddings)
# ══════════════════════════════════════════════════════════════════════════════

def extract_metadata_features(project: ProjectRecord) -> List[float]:
    """
    Ten-feature vector from metadata alone.

    [log10 stars/5, log10 forks/5, #languages/10, #topics/10,
     health, climate, education, ai, finance, government]
    """
    text = " ".join([project.description or "", *project.topics, *project.tags]).lower()
    tokens = set(re.findall(r"[a-z0-9]+", text))
    features = [
        math.log10(max(project.stars, 0) + 1) / 5,
        math.log10(max(project.forks, 0) + 1) / 5,
        len(project.languages) / 10,
        len(project.topics) / 10,
    ]
    for keywords in DOMAIN_KEYWORDS.values():
        hit = any((kw in text) if (" " in kw or "-" in kw) else (kw in tokens) for kw in keywords)
        features.append(1.0 if hit else 0.0)
    return features


def spread_factor(
    coords: np.ndarray,
    outlier_mask: Optional[Sequence[bool]] = None,
    target_range: float = 200.0,
    default_spread: float = 50.0,
) -> float:
    """
    Scale factor mapping the non-outlier population onto ``target_range`` units.

    The range is the largest per-axis extent of non-outlier points, so a
    few extreme points cannot shrink everyone else. Falls back to
    ``default_spread`` when that extent is zero or no inliers remain.
    """
    points = np.asarray(coords, dtype=float)
    if points.ndim != 2 or len(points) == 0:
        return default_spread
    if outlier_mask is not None:
        mask = np.asarray(outlier_mask, dtype=bool)
        points = points[~mask]
    if len(points) == 0:
        return default_spread
    extent = float(np.max(points.max(axis=0) - points.min(axis=0)))
    if extent <= ZERO_VARIANCE_EPS:
        return default_spread
    return target_range / extent
