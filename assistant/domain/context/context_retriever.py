from typing import List, Any, Optional, Sequence, Tuple
from dataclasses import dataclass
import time

import structlog
from langchain_core.embeddings import Embeddings

from domain.errors import RetrievalError
from domain.models.artifact import (
    ArtifactWithEntries, CandidateSource, InjectedArtifact,
    RetrievalCandidate, RetrievalResult, ScoredArtifact
)
from infrastructure.observability.logging import memory_logger, metrics
from .context_ranker import HybridScorer, RelevanceScorer, ScoringQuery
from .memory.artifact_store import ArtifactStore

logger = structlog.get_logger(__name__)

MANUAL_CONFIDENCE = 1.0
HIGH_CONFIDENCE_THRESHOLD = 0.85
# Titles with this prefix mark internal artifacts such as the user profile
SYSTEM_TITLE_PREFIX = "__"
CONTEXT_SEPARATOR = "\n\n---\n\n"
ELLIPSIS = "…"


@dataclass(frozen=True)
class RetrievalMode:
    name: str
    min_confidence: float
    max_artifacts: int


# Auto-injection into plain chat must rarely be wrong
HIGH_PRECISION = RetrievalMode(name="high_precision", min_confidence=0.85, max_artifacts=2)
# Tool-router turns surface more, labelled for the client
LOOSE = RetrievalMode(name="loose", min_confidence=0.6, max_artifacts=3)


def is_system_artifact(title: str) -> bool:
    return title.startswith(SYSTEM_TITLE_PREFIX)


def confidence_label(confidence: float) -> str:
    return "high" if confidence > HIGH_CONFIDENCE_THRESHOLD else "possible"


def _truncate(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


class MemoryRetrievalGate:
    """Decides which artifacts are injected into a conversation turn"""

    def __init__(
        self,
        store: ArtifactStore,
        scorer: Optional[RelevanceScorer] = None,
        embeddings: Optional[Embeddings] = None,
        char_budget: int = 6000,
        recent_entries: int = 3
    ):
        self.store = store
        self.scorer = scorer or HybridScorer()
        self.embeddings = embeddings
        self.char_budget = char_budget
        self.recent_entries = recent_entries

    async def find_candidates(
        self,
        user_id: str,
        message: str,
        history: Optional[Sequence[Any]] = None,
        manual_ids: Optional[Sequence[str]] = None,
        max_artifacts: int = LOOSE.max_artifacts,
        min_confidence: float = LOOSE.min_confidence,
        include_auto: bool = True
    ) -> List[RetrievalCandidate]:
        """Score, threshold and rank the user's artifacts for a message.

        Manual ids are forced to ``MANUAL_CONFIDENCE`` and always rank ahead of
        automatic matches. With ``include_auto`` off only manual ids are
        considered and nothing is scored. Raises ``RetrievalError`` when the
        user's artifacts cannot be fetched.
        """

        ranked = await self._rank(
            user_id, message, history, manual_ids,
            max_artifacts, min_confidence, include_auto
        )
        return [scored.candidate for scored in ranked]

    async def resolve(self, candidates: Sequence[RetrievalCandidate]) -> List[ArtifactWithEntries]:
        """Load full artifacts for candidates, skipping any that disappeared"""

        artifacts = []
        for candidate in candidates:
            artifact = await self.store.get_with_entries(candidate.artifact_id)
            if artifact is not None:
                artifacts.append(artifact)
        return artifacts

    def format_for_context(self, artifacts: Sequence[ArtifactWithEntries]) -> str:
        """Render artifacts into a prompt block bounded by the character budget"""

        if not artifacts:
            return ""

        available = self.char_budget - len(CONTEXT_SEPARATOR) * (len(artifacts) - 1)
        share = max(available // len(artifacts), 0)

        sections = [self._render_artifact(artifact, share) for artifact in artifacts]
        return CONTEXT_SEPARATOR.join(sections)[:self.char_budget]

    async def retrieve(
        self,
        user_id: str,
        message: str,
        history: Optional[Sequence[Any]] = None,
        manual_ids: Optional[Sequence[str]] = None,
        mode: RetrievalMode = LOOSE,
        include_auto: bool = True
    ) -> RetrievalResult:
        """Select and format context for a turn. Never raises; failures inject nothing."""

        try:
            ranked = await self._rank(
                user_id, message, history, manual_ids,
                mode.max_artifacts, mode.min_confidence, include_auto
            )
            if not ranked:
                return RetrievalResult()

            context = self.format_for_context([scored.artifact for scored in ranked])

        except Exception as e:
            logger.error("Artifact retrieval failed, continuing without context",
                         user_id=user_id,
                         mode=mode.name,
                         error=str(e))
            return RetrievalResult()

        injected = [
            InjectedArtifact(
                id=scored.artifact.id,
                title=scored.artifact.title,
                confidence=confidence_label(scored.candidate.confidence)
            )
            for scored in ranked
        ]

        return RetrievalResult(context=context, artifacts=ranked, injected=injected)

    async def retrieve_high_precision(self, user_id: str, message: str, **kwargs) -> RetrievalResult:
        return await self.retrieve(user_id, message, mode=HIGH_PRECISION, **kwargs)

    async def retrieve_with_confidence(self, user_id: str, message: str, **kwargs) -> RetrievalResult:
        return await self.retrieve(user_id, message, mode=LOOSE, **kwargs)

    async def _rank(
        self,
        user_id: str,
        message: str,
        history: Optional[Sequence[Any]],
        manual_ids: Optional[Sequence[str]],
        max_artifacts: int,
        min_confidence: float,
        include_auto: bool = True
    ) -> List[ScoredArtifact]:
        started = time.perf_counter()

        if max_artifacts <= 0:
            return []

        manual = await self._load_manual(user_id, manual_ids or [])
        manual_seen = {scored.artifact.id for scored in manual}

        pool: List[Any] = []
        if include_auto:
            try:
                artifacts = await self.store.list_artifacts(user_id)
            except Exception as e:
                raise RetrievalError(f"Failed to list artifacts for user {user_id}: {e}") from e

            pool = [
                artifact for artifact in artifacts
                if artifact.id not in manual_seen and not is_system_artifact(artifact.title)
            ]

        auto: List[ScoredArtifact] = []
        if pool:
            query = ScoringQuery.build(message, history, await self._embed_query(message))
            if query.keywords or query.embedding is not None:
                auto = await self._score_pool(query, pool, min_confidence)

        ranked = sorted(
            list(enumerate(manual)) + [(None, scored) for scored in auto],
            key=self._sort_key
        )
        selected = [scored for _, scored in ranked[:max_artifacts]]

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency("retrieval.rank", duration_ms)
        memory_logger.log_retrieval(
            user_id=user_id,
            mode=f"min={min_confidence},max={max_artifacts}",
            candidate_ids=[scored.artifact.id for scored in selected],
            duration_ms=round(duration_ms, 2),
            scored=len(pool),
            manual=len(manual)
        )

        return selected

    async def _load_manual(self, user_id: str, manual_ids: Sequence[str]) -> List[ScoredArtifact]:
        manual: List[ScoredArtifact] = []

        for artifact_id in dict.fromkeys(manual_ids):
            try:
                artifact = await self.store.get_with_entries(artifact_id)
            except Exception as e:
                logger.warning("Failed to load manual artifact", artifact_id=artifact_id, error=str(e))
                continue

            if artifact is None or artifact.user_id != user_id:
                logger.warning("Ignoring manual artifact not owned by user",
                               artifact_id=artifact_id,
                               user_id=user_id)
                continue

            manual.append(ScoredArtifact(
                candidate=RetrievalCandidate(
                    artifact_id=artifact.id,
                    confidence=MANUAL_CONFIDENCE,
                    source=CandidateSource.MANUAL,
                    updated_at=artifact.updated_at
                ),
                artifact=artifact
            ))

        return manual

    async def _score_pool(
        self,
        query: ScoringQuery,
        pool: Sequence[Any],
        min_confidence: float
    ) -> List[ScoredArtifact]:
        matches: List[ScoredArtifact] = []

        for artifact in pool:
            try:
                full = await self.store.get_with_entries(artifact.id)
                if full is None:
                    continue
                confidence = self.scorer.score(query, full)
            except Exception as e:
                logger.warning("Skipping artifact that failed to score", artifact_id=artifact.id, error=str(e))
                continue

            confidence = max(0.0, min(1.0, confidence))
            if confidence < min_confidence:
                continue

            matches.append(ScoredArtifact(
                candidate=RetrievalCandidate(
                    artifact_id=full.id,
                    confidence=confidence,
                    source=CandidateSource.AUTO,
                    updated_at=full.updated_at
                ),
                artifact=full
            ))

        return matches

    async def _embed_query(self, message: str) -> Optional[List[float]]:
        if self.embeddings is None:
            return None

        try:
            return await self.embeddings.aembed_query(message)
        except Exception as e:
            logger.warning("Query embedding failed, scoring lexically", error=str(e))
            return None

    @staticmethod
    def _sort_key(item: Tuple[Optional[int], ScoredArtifact]) -> Tuple:
        manual_position, scored = item
        candidate = scored.candidate
        if manual_position is not None:
            return (-candidate.confidence, 0, manual_position, "")

        updated = candidate.updated_at.timestamp() if candidate.updated_at else 0.0
        return (-candidate.confidence, 1, -updated, candidate.artifact_id)

    def _render_artifact(self, artifact: ArtifactWithEntries, limit: int) -> str:
        header_lines = [f"## {artifact.title}"]
        if artifact.summary:
            header_lines.append(artifact.summary)
        header = "\n".join(header_lines)

        if len(header) >= limit:
            return _truncate(header, limit)

        entries = artifact.entries[:self.recent_entries]
        label = "\n\n### Recent Context:"
        remaining = limit - len(header)
        if not entries or len(label) >= remaining:
            return header

        parts = [header, label]
        remaining -= len(label)

        for position, entry in enumerate(entries):
            # Unused space from short entries rolls over to the next ones
            share = remaining // (len(entries) - position)
            origin = f"From: {entry.workflow_name}" if entry.workflow_name else f"Source: {entry.source.value}"
            meta = f"\n\n**{origin}** ({entry.created_at.date().isoformat()})\n"
            body_limit = share - len(meta)
            if body_limit <= 0:
                continue

            block = meta + _truncate(entry.content, body_limit)
            parts.append(block)
            remaining -= len(block)

        return "".join(parts)
