"""
Error taxonomy for the discovery pipeline.

  - TransientServiceError: embedding/LLM service timed out, rate-limited or
    unavailable. Recorded per item and skipped; the inter-batch delay is
    the only retry.
  - DegenerateInputError: too few items or zero variance. Handled by an
    algorithmic fallback (centered PCA, random placement, skipped scope).
  - MalformedResponseError: LLM output is not usable JSON. The cluster is
    relabeled from metadata.
  - ConfigurationError: credentials missing. Fatal at startup.
"""


class CausemapError(Exception):
    """Base class for all pipeline errors."""


class ServiceError(CausemapError):
    """An external service (embedding or language model) failed."""


class TransientServiceError(ServiceError):
    """Timeout, quota or availability failure that may succeed later."""


class DegenerateInputError(CausemapError):
    """Input too small or too uniform for the requested computation."""


class MalformedResponseError(CausemapError):
    """Language-model response could not be parsed or lacked required fields."""


class ConfigurationError(CausemapError):
    """Required configuration (usually an API credential) is missing."""
