"""
Common enums used across the pipeline.

These define the vocabulary of the system: which kind of entity an
embedding represents, how mature a cause is, and where a label came from.
"""

from enum import Enum


# ══════════════════════════════════════════════════════════════════════════════
# ENUMS - Classification Types
# ══════════════════════════════════════════════════════════════════════════════

class EntityKind(str, Enum):
    """Kinds of records that can be embedded."""
    PROJECT = "project"
    CONTRIBUTOR = "contributor"
    CAUSE = "cause"


class Maturity(str, Enum):
    """Cause maturity, derived from the average popularity of its projects."""
    EMERGING = "emerging"
    GROWING = "growing"
    MATURE = "mature"


class GeographicScope(str, Enum):
    """Geographic reach of a cause. Discovered causes are all global for now."""
    GLOBAL = "global"


class LabelSource(str, Enum):
    """Which labeling path produced a cause name."""
    LLM = "llm"              # language-model assisted
    METADATA = "metadata"    # topic/tag frequency
    FALLBACK = "fallback"    # generic "Cause Area N"


class ReductionMethod(str, Enum):
    """How a projection was computed."""
    PCA_SCALED = "pca_scaled"        # standardized features
    PCA_CENTERED = "pca_centered"    # mean-centered only (zero-variance features present)
    RANDOM = "random"                # PCA failed, neutral placement
