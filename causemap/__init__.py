"""
causemap: embedding-based discovery of social-impact causes in open-source projects.

Pipeline:
  embed    project metadata → canonical text → embedding service
  reduce   PCA per scope (global / per cause) → padded projections
  cluster  k-means (two levels: cause → subcause)
  label    metadata keywords (fast) or language model (slow), with fallback
  layout   outlier-dampened display coordinates for the presentation layer
"""

__version__ = "0.1.0"
