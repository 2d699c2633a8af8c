from typing import List, Optional, Set
import asyncio

import structlog
from langchain_core.embeddings import Embeddings

from domain.errors import EmbeddingProviderError
from domain.models.artifact import ArtifactWithEntries
from .artifact_store import ArtifactStore

logger = structlog.get_logger(__name__)

EMBEDDING_ENTRY_LIMIT = 5
MAX_EMBEDDING_TEXT = 30000


def embedding_text(artifact: ArtifactWithEntries) -> str:
    """Title, summary and recent entries joined for embedding"""

    parts: List[str] = [artifact.title]
    if artifact.summary:
        parts.append(artifact.summary)
    parts.extend(entry.content for entry in artifact.entries[:EMBEDDING_ENTRY_LIMIT])
    return "\n\n".join(parts)[:MAX_EMBEDDING_TEXT]


class EmbeddingRefresher:
    """Recomputes artifact embeddings in detached background tasks.

    Callers never wait on a refresh; failures only reach the log.
    """

    def __init__(self, store: ArtifactStore, embeddings: Optional[Embeddings]):
        self.store = store
        self.embeddings = embeddings
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, artifact_id: str) -> Optional[asyncio.Task]:
        """Fire-and-forget refresh of one artifact's embedding"""

        if self.embeddings is None:
            logger.debug("No embedding provider configured, skipping refresh", artifact_id=artifact_id)
            return None

        task = asyncio.create_task(self.refresh(artifact_id))
        # Keep a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def refresh(self, artifact_id: str) -> None:
        if self.embeddings is None:
            return

        artifact = await self.store.get_with_entries(artifact_id)
        if artifact is None:
            logger.info("Artifact gone before embedding refresh", artifact_id=artifact_id)
            return

        try:
            vector = await self.embeddings.aembed_query(embedding_text(artifact))
        except Exception as e:
            raise EmbeddingProviderError(f"Embedding failed for artifact {artifact_id}: {e}") from e

        await self.store.update_embedding(artifact_id, vector)
        logger.debug("Artifact embedding refreshed", artifact_id=artifact_id, dimensions=len(vector))

    async def drain(self) -> None:
        """Wait for in-flight refreshes, used on shutdown and in tests"""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            logger.error("Embedding refresh failed", error=str(error))
