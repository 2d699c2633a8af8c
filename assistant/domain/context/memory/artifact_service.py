from typing import List, Optional
import structlog

from domain.models.artifact import Artifact, ArtifactEntry, EntrySource
from .artifact_store import ArtifactStore
from .embedding_refresher import EmbeddingRefresher

logger = structlog.get_logger(__name__)


class ArtifactService:
    """Artifact write path. Every entry mutation schedules an embedding refresh."""

    def __init__(self, store: ArtifactStore, refresher: EmbeddingRefresher):
        self.store = store
        self.refresher = refresher

    async def create(
        self,
        user_id: str,
        title: str,
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        first_entry: Optional[str] = None,
        source: EntrySource = EntrySource.MANUAL
    ) -> Artifact:
        artifact = await self.store.create_artifact(user_id, title, summary=summary, tags=tags)

        if first_entry:
            await self.store.add_entry(artifact.id, first_entry, source=source)

        self.refresher.schedule(artifact.id)
        logger.info("Artifact created", artifact_id=artifact.id, user_id=user_id)
        return artifact

    async def add_entry(
        self,
        artifact_id: str,
        content: str,
        source: EntrySource = EntrySource.MANUAL,
        workflow_id: Optional[str] = None,
        workflow_name: Optional[str] = None
    ) -> ArtifactEntry:
        entry = await self.store.add_entry(
            artifact_id,
            content,
            source=source,
            workflow_id=workflow_id,
            workflow_name=workflow_name
        )
        self.refresher.schedule(artifact_id)
        return entry

    async def update_entry(self, artifact_id: str, entry_id: str, content: str) -> Optional[ArtifactEntry]:
        artifact = await self.store.get_with_entries(artifact_id)
        if artifact is None or all(entry.id != entry_id for entry in artifact.entries):
            return None

        entry = await self.store.update_entry(entry_id, content)
        if entry is None:
            return None

        self.refresher.schedule(artifact_id)
        return entry
