"""Error taxonomy shared by all clients and services.

Clients translate transport and protocol failures into these types at the
boundary so services and routers never have to inspect httpx or SQLAlchemy
exceptions.
"""


class RAGAssistantError(Exception):
    """Base class for all errors raised by the assistant core."""


class ValidationError(RAGAssistantError):
    """Bad input (extension, size, empty question). Raised before any side effect."""


class DuplicateContentError(RAGAssistantError):
    """The owner already has a document with identical content."""

    def __init__(self, owner_id: str, content_hash: str):
        super().__init__(f"Owner '{owner_id}' already has a document with hash {content_hash[:12]}.")
        self.owner_id = owner_id
        self.content_hash = content_hash


class DocumentNotFound(RAGAssistantError):
    """No document with this id exists for the owner."""


class EmbeddingError(RAGAssistantError):
    """Remote embedding failed, retries were exhausted or the response was malformed."""


class VectorIndexError(RAGAssistantError):
    """The vector index rejected an operation."""


class CompletionError(RAGAssistantError):
    """Remote text generation failed."""


class PersistenceError(RAGAssistantError):
    """A metadata write or read failed."""


class StorageUnavailable(RAGAssistantError):
    """Object storage or the vector index could not be reached."""


class ObjectNotFound(RAGAssistantError):
    """Object storage holds nothing under the requested key."""
