"""Tests for the in-memory artifact store contract."""

import pytest

from domain.errors import ArtifactStoreError
from domain.models.artifact import EntrySource


class TestArtifacts:

    @pytest.mark.asyncio
    async def test_create_and_list_per_user(self, store):
        mine = await store.create_artifact("u1", "  Travel  ", summary="Trips", tags=["personal"])
        await store.create_artifact("u2", "Work")

        listed = await store.list_artifacts("u1")

        assert [a.id for a in listed] == [mine.id]
        assert listed[0].title == "Travel"
        assert await store.list_user_ids() == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, store):
        with pytest.raises(ArtifactStoreError):
            await store.create_artifact("u1", "   ")

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, store):
        artifact = await store.create_artifact("u1", "Travel", tags=["a"])
        artifact.tags.append("mutated")

        assert (await store.get_artifact(artifact.id)).tags == ["a"]

    @pytest.mark.asyncio
    async def test_update_artifact(self, store):
        artifact = await store.create_artifact("u1", "Travel")

        updated = await store.update_artifact(artifact.id, summary="Trips", metadata={"k": "v"})

        assert updated.summary == "Trips"
        assert updated.metadata == {"k": "v"}
        assert updated.updated_at >= artifact.updated_at

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, store):
        artifact = await store.create_artifact("u1", "Travel")

        with pytest.raises(ArtifactStoreError):
            await store.update_artifact(artifact.id, user_id="someone-else")

    @pytest.mark.asyncio
    async def test_update_missing_artifact(self, store):
        assert await store.update_artifact("missing", summary="x") is None

    @pytest.mark.asyncio
    async def test_embedding_update_keeps_updated_at(self, store):
        artifact = await store.create_artifact("u1", "Travel")

        await store.update_embedding(artifact.id, [0.1, 0.2])

        stored = await store.get_artifact(artifact.id)
        assert stored.embedding == [0.1, 0.2]
        assert stored.updated_at == artifact.updated_at

    @pytest.mark.asyncio
    async def test_embedding_update_for_missing_artifact(self, store):
        with pytest.raises(ArtifactStoreError):
            await store.update_embedding("missing", [1.0])

    @pytest.mark.asyncio
    async def test_delete_removes_entries(self, store):
        artifact = await store.create_artifact("u1", "Travel")
        entry = await store.add_entry(artifact.id, "Lisbon")

        assert await store.delete_artifact(artifact.id) is True
        assert await store.get_with_entries(artifact.id) is None
        assert await store.update_entry(entry.id, "x") is None
        assert await store.delete_artifact(artifact.id) is False


class TestEntries:

    @pytest.mark.asyncio
    async def test_entries_newest_first(self, store, make_artifact):
        artifact = await make_artifact("u1", "Log", ["first", "second", "third"])

        assert [e.content for e in artifact.entries] == ["third", "second", "first"]

    @pytest.mark.asyncio
    async def test_add_entry_bumps_updated_at(self, store):
        artifact = await store.create_artifact("u1", "Log")

        entry = await store.add_entry(artifact.id, "note", source=EntrySource.CONVERSATION_SUMMARY)

        stored = await store.get_artifact(artifact.id)
        assert stored.updated_at == entry.created_at
        assert entry.source == EntrySource.CONVERSATION_SUMMARY

    @pytest.mark.asyncio
    async def test_add_entry_to_missing_artifact(self, store):
        with pytest.raises(ArtifactStoreError):
            await store.add_entry("missing", "note")

    @pytest.mark.asyncio
    async def test_edit_keeps_identity_and_position(self, store, make_artifact):
        artifact = await make_artifact("u1", "Log", ["first", "second", "third"])
        middle = artifact.entries[1]

        edited = await store.update_entry(middle.id, "second, revised")

        full = await store.get_with_entries(artifact.id)
        assert edited.id == middle.id
        assert [e.content for e in full.entries] == ["third", "second, revised", "first"]
        assert full.updated_at >= artifact.updated_at

    @pytest.mark.asyncio
    async def test_delete_entry(self, store, make_artifact):
        artifact = await make_artifact("u1", "Log", ["first", "second"])

        assert await store.delete_entry(artifact.entries[0].id) is True
        assert await store.delete_entry(artifact.entries[0].id) is False
        assert [e.content for e in (await store.get_with_entries(artifact.id)).entries] == ["first"]
