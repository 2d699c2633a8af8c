"""
Tests for memory distillation:
1. one user's failure is recorded without stopping the others
2. re-running right after a successful run adds nothing
3. insight distillers parse model output and skip covered facts
4. the profile embedding is refreshed when insights are added
"""

from datetime import timedelta

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from domain.context.memory.artifact_store import InMemoryArtifactStore
from domain.context.memory.embedding_refresher import EmbeddingRefresher
from domain.context.memory.hashing_embeddings import HashingEmbeddings
from domain.distillation.distillation_service import PROFILE_TITLE, WATERMARK_KEY, DistillationService
from domain.distillation.insight_distiller import (
    ChatModelInsightDistiller, ExtractiveInsightDistiller, parse_insights
)
from domain.errors import ArtifactStoreError
from domain.models.artifact import EntrySource, utc_now


class FlakyStore(InMemoryArtifactStore):
    """Fails every read for one user"""

    def __init__(self, failing_user):
        super().__init__()
        self.failing_user = failing_user

    async def list_artifacts(self, user_id):
        if user_id == self.failing_user:
            raise ArtifactStoreError("shard offline")
        return await super().list_artifacts(user_id)


class RecordingDistiller(ExtractiveInsightDistiller):
    def __init__(self):
        super().__init__()
        self.calls = []

    async def distill(self, recent, existing):
        self.calls.append((list(recent), list(existing)))
        return await super().distill(recent, existing)


async def profile_entries(store, user_id):
    for artifact in await store.list_artifacts(user_id):
        if artifact.title == PROFILE_TITLE:
            full = await store.get_with_entries(artifact.id)
            return full.entries
    return None


class TestRunForAllUsers:
    """Batch runs over every user."""

    @pytest.mark.asyncio
    async def test_per_user_failure_isolated(self):
        store = FlakyStore(failing_user="u2")
        travel = await store.create_artifact("u1", "Travel")
        await store.add_entry(travel.id, "Alice is travelling to Lisbon for the design conference in March.")
        await store.create_artifact("u2", "Anything")

        run = await DistillationService(store).run_for_all_users()

        assert run.users_processed == 2
        assert [failure.user_id for failure in run.errors] == ["u2"]
        assert "shard offline" in run.errors[0].message
        assert run.total_insights >= 1

        entries = await profile_entries(store, "u1")
        assert len(entries) >= 1
        assert all(entry.source == EntrySource.DISTILLED for entry in entries)

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store):
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Prefers morning meetings before standup with the platform team.")
        service = DistillationService(store)

        first = await service.run_for_all_users()
        second = await service.run_for_all_users()

        assert first.total_insights >= 1
        assert second.total_insights == 0
        assert second.errors == []
        assert second.users_processed == 1

    @pytest.mark.asyncio
    async def test_response_shape(self, store):
        await store.create_artifact("u1", "Empty")

        response = (await DistillationService(store).run_for_all_users()).to_response()

        assert response == {"usersProcessed": 1, "totalInsights": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_no_users(self, store):
        run = await DistillationService(store).run_for_all_users()

        assert run.users_processed == 0
        assert run.total_insights == 0


class TestDistillUser:
    """Single-user folding into the profile artifact."""

    @pytest.mark.asyncio
    async def test_profile_created_on_first_use_with_watermark(self, store):
        await store.create_artifact("u1", "Empty")

        added = await DistillationService(store).distill_user("u1")

        assert added == 0
        profiles = [a for a in await store.list_artifacts("u1") if a.title == PROFILE_TITLE]
        assert len(profiles) == 1
        assert WATERMARK_KEY in profiles[0].metadata

    @pytest.mark.asyncio
    async def test_profile_entries_never_fed_back(self, store):
        profile = await store.create_artifact("u1", PROFILE_TITLE)
        await store.add_entry(profile.id, "Works at Initech as a staff engineer on payments.")
        distiller = RecordingDistiller()

        added = await DistillationService(store, distiller=distiller).distill_user("u1")

        assert added == 0
        assert distiller.calls == []

    @pytest.mark.asyncio
    async def test_entries_older_than_lookback_ignored(self, store):
        notes = await store.create_artifact("u1", "Notes")
        entry = await store.add_entry(notes.id, "Adopted a greyhound named Biscuit last spring.")
        old = entry.model_copy(update={"created_at": utc_now() - timedelta(days=10)})
        store.entries[notes.id][0] = old

        added = await DistillationService(store, lookback_days=3).distill_user("u1")

        assert added == 0

    @pytest.mark.asyncio
    async def test_existing_profile_passed_to_distiller(self, store):
        profile = await store.create_artifact("u1", PROFILE_TITLE)
        await store.add_entry(profile.id, "Lives in Toronto with partner Sam.")
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Booked flights to Osaka for the robotics summit.")
        distiller = RecordingDistiller()

        added = await DistillationService(store, distiller=distiller).distill_user("u1")

        assert added == 1
        recent, existing = distiller.calls[0]
        assert recent == ["Booked flights to Osaka for the robotics summit."]
        assert existing == ["Lives in Toronto with partner Sam."]

    @pytest.mark.asyncio
    async def test_naive_watermark_read_as_utc(self, store):
        profile = await store.create_artifact("u1", PROFILE_TITLE)
        naive = (utc_now() - timedelta(days=1)).replace(tzinfo=None).isoformat()
        await store.update_artifact(profile.id, metadata={WATERMARK_KEY: naive})
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Booked flights to Osaka for the robotics summit.")

        added = await DistillationService(store).distill_user("u1")

        assert added == 1

    @pytest.mark.asyncio
    async def test_naive_watermark_still_filters_old_entries(self, store):
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Adopted a greyhound named Biscuit last spring.")
        profile = await store.create_artifact("u1", PROFILE_TITLE)
        naive = (utc_now() + timedelta(minutes=1)).replace(tzinfo=None).isoformat()
        await store.update_artifact(profile.id, metadata={WATERMARK_KEY: naive})

        assert await DistillationService(store).distill_user("u1") == 0


class TestProfileEmbedding:
    """Insight entries refresh the profile embedding like any other entry write."""

    @pytest.mark.asyncio
    async def test_profile_embedding_set_after_run(self, store):
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Booked flights to Osaka for the robotics summit.")
        refresher = EmbeddingRefresher(store, HashingEmbeddings(dimensions=16))

        run = await DistillationService(store, refresher=refresher).run_for_all_users()
        await refresher.drain()

        assert run.total_insights == 1
        profile = next(a for a in await store.list_artifacts("u1") if a.title == PROFILE_TITLE)
        assert profile.embedding is not None
        assert len(profile.embedding) == 16

    @pytest.mark.asyncio
    async def test_no_insights_no_refresh(self, store):
        await store.create_artifact("u1", "Empty")
        refresher = EmbeddingRefresher(store, HashingEmbeddings(dimensions=16))

        await DistillationService(store, refresher=refresher).run_for_all_users()

        assert refresher.pending == 0
        profile = next(a for a in await store.list_artifacts("u1") if a.title == PROFILE_TITLE)
        assert profile.embedding is None


class TestExtractiveInsightDistiller:

    @pytest.mark.asyncio
    async def test_covered_statements_skipped(self):
        distiller = ExtractiveInsightDistiller()

        insights = await distiller.distill(
            ["Alice prefers Slack notifications for urgent alerts. Booked dentist appointment Tuesday."],
            ["Alice prefers Slack notifications for urgent alerts"]
        )

        assert insights == ["Booked dentist appointment Tuesday."]

    @pytest.mark.asyncio
    async def test_capped_and_deduplicated(self):
        distiller = ExtractiveInsightDistiller(max_insights=2)
        recent = [
            "Learning Portuguese with weekly tutoring.",
            "Learning Portuguese with weekly tutoring.",
            "Training for the Berlin marathon in September.",
            "Renovating the kitchen cabinets this summer.",
        ]

        insights = await distiller.distill(recent, [])

        assert insights == [
            "Learning Portuguese with weekly tutoring.",
            "Training for the Berlin marathon in September.",
        ]

    @pytest.mark.asyncio
    async def test_trivial_sentences_ignored(self):
        assert await ExtractiveInsightDistiller().distill(["ok", "thanks!"], []) == []


class TestChatModelInsightDistiller:

    @pytest.mark.asyncio
    async def test_parses_object_response(self):
        llm = FakeListChatModel(responses=['{"insights": ["Prefers Slack over email", "  "]}'])

        insights = await ChatModelInsightDistiller(llm).distill(["note"], [])

        assert insights == ["Prefers Slack over email"]

    @pytest.mark.asyncio
    async def test_unparseable_response_yields_nothing(self):
        llm = FakeListChatModel(responses=["I could not find anything."])

        assert await ChatModelInsightDistiller(llm).distill(["note"], []) == []

    @pytest.mark.asyncio
    async def test_used_by_service(self, store):
        notes = await store.create_artifact("u1", "Notes")
        await store.add_entry(notes.id, "Going to SFO Feb 20-24 for a conference")
        llm = FakeListChatModel(responses=['["User is traveling to SFO Feb 20-24 for a conference"]'])

        run = await DistillationService(store, distiller=ChatModelInsightDistiller(llm)).run_for_all_users()

        assert run.total_insights == 1
        entries = await profile_entries(store, "u1")
        assert entries[0].content == "User is traveling to SFO Feb 20-24 for a conference"


@pytest.mark.parametrize("content, expected", [
    ('["a", "b"]', ["a", "b"]),
    ('{"facts": ["c"]}', ["c"]),
    ('```json\n["d"]\n```', ["d"]),
    ('{"other": 1}', []),
    ('[1, "e", null]', ["e"]),
    ("", []),
    ("not json", []),
])
def test_parse_insights(content, expected):
    assert parse_insights(content) == expected
