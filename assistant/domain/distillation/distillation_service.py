from typing import List, Optional, Tuple
from datetime import datetime, timedelta, timezone
import asyncio
import time

import structlog

from domain.context.context_retriever import is_system_artifact
from domain.context.memory.artifact_store import ArtifactStore
from domain.context.memory.embedding_refresher import EmbeddingRefresher
from domain.errors import DistillationError
from domain.models.artifact import (
    Artifact, DistillationFailure, DistillationRun, EntrySource, utc_now
)
from infrastructure.observability.logging import memory_logger, metrics
from .insight_distiller import ExtractiveInsightDistiller, InsightDistiller

logger = structlog.get_logger(__name__)

PROFILE_TITLE = "__user_profile__"
PROFILE_SUMMARY = "Long-term facts, preferences and plans distilled from recent activity"
WATERMARK_KEY = "last_distilled_at"
EXISTING_PROFILE_LIMIT = 10


class DistillationService:
    """Folds each user's recent entries into their profile artifact.

    Users are processed concurrently up to ``max_concurrency``. A failure for
    one user is recorded in the run and never stops the others. When a
    refresher is given, the profile embedding is recomputed after insights
    are added.
    """

    def __init__(
        self,
        store: ArtifactStore,
        distiller: Optional[InsightDistiller] = None,
        refresher: Optional[EmbeddingRefresher] = None,
        lookback_days: int = 3,
        max_concurrency: int = 4
    ):
        self.store = store
        self.distiller = distiller or ExtractiveInsightDistiller()
        self.refresher = refresher
        self.lookback_days = lookback_days
        self.max_concurrency = max_concurrency

    async def run_for_all_users(self) -> DistillationRun:
        start_time = time.time()
        started_at = utc_now()

        try:
            user_ids = await self.store.list_user_ids()
        except Exception as e:
            raise DistillationError(f"Could not list users: {e}") from e

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(user_id: str) -> Tuple[str, int, Optional[str]]:
            async with semaphore:
                try:
                    return user_id, await self.distill_user(user_id, now=started_at), None
                except Exception as e:
                    logger.error("Distillation failed for user", user_id=user_id, error=str(e))
                    return user_id, 0, str(e) or e.__class__.__name__

        results = await asyncio.gather(*(guarded(user_id) for user_id in user_ids))

        run = DistillationRun(users_processed=len(results))
        for user_id, added, error in results:
            run.total_insights += added
            if error is not None:
                run.errors.append(DistillationFailure(user_id=user_id, message=error))

        duration_ms = (time.time() - start_time) * 1000
        metrics.record_latency("distillation", duration_ms)
        metrics.increment_counter("distillation.insights", run.total_insights)
        memory_logger.log_distillation(
            users_processed=run.users_processed,
            total_insights=run.total_insights,
            error_count=len(run.errors),
            duration_ms=duration_ms
        )

        return run

    async def distill_user(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Distill one user's recent entries, returning the number of insights added"""

        now = now or utc_now()
        artifacts = await self.store.list_artifacts(user_id)

        soul = await self._get_or_create_profile(user_id, artifacts)
        watermark = self._watermark(soul, now)

        recent = await self._recent_entries(artifacts, watermark)
        added = 0

        if recent:
            profile = await self.store.get_with_entries(soul.id)
            existing = [entry.content for entry in (profile.entries if profile else [])][:EXISTING_PROFILE_LIMIT]

            for insight in await self.distiller.distill(recent, existing):
                if not insight or not insight.strip():
                    continue
                await self.store.add_entry(soul.id, insight.strip(), source=EntrySource.DISTILLED)
                added += 1

        await self.store.update_artifact(
            soul.id,
            metadata={**soul.metadata, WATERMARK_KEY: now.isoformat()}
        )

        if added and self.refresher is not None:
            self.refresher.schedule(soul.id)

        logger.info("User distilled",
                    user_id=user_id,
                    recent_entries=len(recent),
                    insights_added=added)
        return added

    async def _get_or_create_profile(self, user_id: str, artifacts: List[Artifact]) -> Artifact:
        for artifact in artifacts:
            if artifact.title == PROFILE_TITLE:
                return artifact

        logger.info("Creating profile artifact", user_id=user_id)
        return await self.store.create_artifact(user_id, PROFILE_TITLE, summary=PROFILE_SUMMARY)

    def _watermark(self, soul: Artifact, now: datetime) -> datetime:
        value = soul.metadata.get(WATERMARK_KEY)
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                logger.warning("Ignoring malformed distillation watermark", artifact_id=soul.id, value=value)

        if isinstance(value, datetime):
            # Naive watermarks are taken as UTC
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        return now - timedelta(days=self.lookback_days)

    async def _recent_entries(self, artifacts: List[Artifact], watermark: datetime) -> List[str]:
        recent: List[str] = []

        for artifact in artifacts:
            if is_system_artifact(artifact.title):
                continue

            full = await self.store.get_with_entries(artifact.id)
            if full is None:
                continue

            # Oldest first so the distiller reads in chronological order
            for entry in reversed(full.entries):
                if entry.created_at > watermark:
                    recent.append(entry.content)

        return recent
