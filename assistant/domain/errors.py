class MemoryGateError(Exception):
    """Base error for the memory and streaming core"""


class ArtifactStoreError(MemoryGateError):
    """Raised when the artifact store cannot complete an operation"""


class EmbeddingProviderError(MemoryGateError):
    """Raised when an embedding cannot be computed"""


class RetrievalError(MemoryGateError):
    """Raised when candidate search cannot fetch or score artifacts"""


class DistillationError(MemoryGateError):
    """Raised when insights cannot be distilled for a user"""
