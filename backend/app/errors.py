"""Exception types for the ingestion and chat pipeline."""


class PipelineError(Exception):
    """Base class for pipeline errors with a user-facing message."""

    pass


class ExtractionError(PipelineError):
    """No extraction strategy produced usable text."""

    pass


class CapabilityUnavailableError(ExtractionError):
    """A required external capability is not configured."""

    pass


class NoUsableTextError(PipelineError):
    """Extracted text is below the minimal floor."""

    pass


class EmbeddingError(PipelineError):
    """Embedding a chunk or query failed."""

    pass


class IndexingError(PipelineError):
    """Writing the chunk set failed."""

    pass


class ObjectStoreError(PipelineError):
    """Object store operation failed."""

    pass


class RetrievalError(PipelineError):
    """Similarity search failed."""

    pass


class CompletionError(PipelineError):
    """Chat completion call failed."""

    pass


class NotFoundError(PipelineError):
    """Resource not found (or not owned by the requesting tenant)."""

    pass


class AccessDeniedError(PipelineError):
    """Requester's level/tags do not satisfy the resource's policy."""

    pass
