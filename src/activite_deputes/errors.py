"""Pipeline error taxonomy.

Every stage raises a subclass of :class:`PipelineError` for failures that must
abort the run before anything is published.  Recoverable problems (a single
corrupt file, an unresolved signer) are logged where they happen instead.
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for failures that abort the run."""


class FetchError(PipelineError):
    """Network, HTTP status, cache, or archive extraction failure."""


class ParseError(PipelineError):
    """Malformed or structurally absent input data."""


class ExportError(PipelineError):
    """I/O failure while writing the scratch tree or publishing it."""
