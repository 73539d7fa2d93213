"""Typed error kinds raised by the pipeline domain and its stores.

Routers map these to HTTP status codes; everything else lets them propagate
unchanged.
"""


class PipelineError(Exception):
    """Base class for all pipeline domain errors."""


class InvalidArgument(PipelineError, ValueError):
    """Malformed input: bad dates, negative durations, out-of-range numbers."""


class ConfigurationError(PipelineError):
    """The stage catalog is inconsistent or an opportunity references an unknown stage."""


class ConflictError(PipelineError):
    """A transition precondition failed, or another writer got there first."""


class NotFound(PipelineError, LookupError):
    """A referenced opportunity, target, profile, or stage does not exist."""
