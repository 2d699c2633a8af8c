"""Shared fixtures: an in-memory store and an artifact factory."""

from typing import List, Optional, Sequence

import pytest

from domain.context.memory.artifact_store import InMemoryArtifactStore
from domain.models.artifact import EntrySource


@pytest.fixture
def store():
    return InMemoryArtifactStore()


@pytest.fixture
def make_artifact(store):
    """Create an artifact with entries, oldest entry first"""

    async def factory(
        user_id: str,
        title: str,
        entries: Sequence[str] = (),
        summary: Optional[str] = None,
        tags: Optional[List[str]] = None,
        source: EntrySource = EntrySource.MANUAL
    ):
        artifact = await store.create_artifact(user_id, title, summary=summary, tags=tags)
        for content in entries:
            await store.add_entry(artifact.id, content, source=source)
        return await store.get_with_entries(artifact.id)

    return factory
