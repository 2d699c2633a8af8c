from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
import asyncio
import uuid

from domain.errors import ArtifactStoreError
from domain.models.artifact import (
    Artifact, ArtifactEntry, ArtifactWithEntries, EntrySource, utc_now
)

UPDATABLE_FIELDS = {"title", "summary", "tags", "metadata"}


class ArtifactStore(ABC):
    """Typed CRUD over artifacts and their entries"""

    @abstractmethod
    async def list_user_ids(self) -> List[str]:
        """All users that own at least one artifact"""
        pass

    @abstractmethod
    async def list_artifacts(self, user_id: str) -> List[Artifact]:
        pass

    @abstractmethod
    async def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        pass

    @abstractmethod
    async def get_with_entries(self, artifact_id: str) -> Optional[ArtifactWithEntries]:
        """Artifact with entries ordered most recent first"""
        pass

    @abstractmethod
    async def create_artifact(
        self,
        user_id: str,
        title: str,
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Artifact:
        pass

    @abstractmethod
    async def update_artifact(self, artifact_id: str, **fields: Any) -> Optional[Artifact]:
        pass

    @abstractmethod
    async def update_embedding(self, artifact_id: str, embedding: List[float]) -> None:
        pass

    @abstractmethod
    async def delete_artifact(self, artifact_id: str) -> bool:
        pass

    @abstractmethod
    async def add_entry(
        self,
        artifact_id: str,
        content: str,
        source: EntrySource = EntrySource.MANUAL,
        workflow_id: Optional[str] = None,
        workflow_name: Optional[str] = None
    ) -> ArtifactEntry:
        pass

    @abstractmethod
    async def update_entry(self, entry_id: str, content: str) -> Optional[ArtifactEntry]:
        """Replace entry content, keeping its identity and position"""
        pass

    @abstractmethod
    async def delete_entry(self, entry_id: str) -> bool:
        pass


class InMemoryArtifactStore(ArtifactStore):
    """Process-local artifact store"""

    def __init__(self):
        self.artifacts: Dict[str, Artifact] = {}
        self.entries: Dict[str, List[ArtifactEntry]] = {}
        self._entry_index: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def list_user_ids(self) -> List[str]:
        async with self._lock:
            return sorted({artifact.user_id for artifact in self.artifacts.values()})

    async def list_artifacts(self, user_id: str) -> List[Artifact]:
        async with self._lock:
            return [
                artifact.model_copy(deep=True)
                for artifact in self.artifacts.values()
                if artifact.user_id == user_id
            ]

    async def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        async with self._lock:
            artifact = self.artifacts.get(artifact_id)
            return artifact.model_copy(deep=True) if artifact else None

    async def get_with_entries(self, artifact_id: str) -> Optional[ArtifactWithEntries]:
        async with self._lock:
            artifact = self.artifacts.get(artifact_id)
            if artifact is None:
                return None

            # Stored oldest first; stable reverse keeps edited entries in place
            entries = [entry.model_copy() for entry in reversed(self.entries.get(artifact_id, []))]
            return ArtifactWithEntries(**artifact.model_dump(), entries=entries)

    async def create_artifact(
        self,
        user_id: str,
        title: str,
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Artifact:
        if not user_id:
            raise ArtifactStoreError("user_id is required")
        if not title or not title.strip():
            raise ArtifactStoreError("title is required")

        async with self._lock:
            artifact = Artifact(
                id=uuid.uuid4().hex,
                user_id=user_id,
                title=title.strip(),
                summary=summary,
                tags=list(tags or []),
                metadata=dict(metadata or {})
            )
            self.artifacts[artifact.id] = artifact
            self.entries[artifact.id] = []
            return artifact.model_copy(deep=True)

    async def update_artifact(self, artifact_id: str, **fields: Any) -> Optional[Artifact]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ArtifactStoreError(f"Cannot update fields: {sorted(unknown)}")

        async with self._lock:
            artifact = self.artifacts.get(artifact_id)
            if artifact is None:
                return None

            updated = artifact.model_copy(update={**fields, "updated_at": utc_now()})
            self.artifacts[artifact_id] = updated
            return updated.model_copy(deep=True)

    async def update_embedding(self, artifact_id: str, embedding: List[float]) -> None:
        async with self._lock:
            artifact = self.artifacts.get(artifact_id)
            if artifact is None:
                raise ArtifactStoreError(f"Artifact not found: {artifact_id}")

            # Derived data, does not count as a content update
            self.artifacts[artifact_id] = artifact.model_copy(update={"embedding": list(embedding)})

    async def delete_artifact(self, artifact_id: str) -> bool:
        async with self._lock:
            if artifact_id not in self.artifacts:
                return False

            del self.artifacts[artifact_id]
            for entry in self.entries.pop(artifact_id, []):
                self._entry_index.pop(entry.id, None)
            return True

    async def add_entry(
        self,
        artifact_id: str,
        content: str,
        source: EntrySource = EntrySource.MANUAL,
        workflow_id: Optional[str] = None,
        workflow_name: Optional[str] = None
    ) -> ArtifactEntry:
        async with self._lock:
            artifact = self.artifacts.get(artifact_id)
            if artifact is None:
                raise ArtifactStoreError(f"Artifact not found: {artifact_id}")

            entry = ArtifactEntry(
                id=uuid.uuid4().hex,
                artifact_id=artifact_id,
                content=content,
                source=EntrySource(source),
                workflow_id=workflow_id,
                workflow_name=workflow_name
            )
            self.entries[artifact_id].append(entry)
            self._entry_index[entry.id] = artifact_id
            self.artifacts[artifact_id] = artifact.model_copy(update={"updated_at": entry.created_at})
            return entry.model_copy()

    async def update_entry(self, entry_id: str, content: str) -> Optional[ArtifactEntry]:
        async with self._lock:
            artifact_id = self._entry_index.get(entry_id)
            if artifact_id is None:
                return None

            entries = self.entries[artifact_id]
            for position, entry in enumerate(entries):
                if entry.id == entry_id:
                    updated = entry.model_copy(update={"content": content})
                    entries[position] = updated
                    artifact = self.artifacts[artifact_id]
                    self.artifacts[artifact_id] = artifact.model_copy(update={"updated_at": utc_now()})
                    return updated.model_copy()

            return None

    async def delete_entry(self, entry_id: str) -> bool:
        async with self._lock:
            artifact_id = self._entry_index.pop(entry_id, None)
            if artifact_id is None:
                return False

            self.entries[artifact_id] = [
                entry for entry in self.entries[artifact_id] if entry.id != entry_id
            ]
            return True
