from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from langchain_core.embeddings import Embeddings

from domain.context.context_ranker import HybridScorer
from domain.context.context_retriever import MemoryRetrievalGate
from domain.context.memory.artifact_service import ArtifactService
from domain.context.memory.artifact_store import ArtifactStore, InMemoryArtifactStore
from domain.context.memory.embedding_refresher import EmbeddingRefresher
from domain.context.memory.hashing_embeddings import HashingEmbeddings
from domain.distillation.distillation_service import DistillationService
from domain.distillation.insight_distiller import InsightDistiller
from domain.distillation.scheduler import MemoryScheduler
from domain.orchestration.agent_runtime import AgentRuntime
from infrastructure.config.settings import Settings

_DEFAULT = object()


@dataclass
class ServiceContainer:
    """Process-wide collaborators shared by the routes"""
    settings: Settings
    store: ArtifactStore
    embeddings: Optional[Embeddings]
    gate: MemoryRetrievalGate
    refresher: EmbeddingRefresher
    artifacts: ArtifactService
    distillation: DistillationService
    scheduler: MemoryScheduler
    runtime: Optional[AgentRuntime] = None


def default_embeddings(settings: Settings) -> Optional[Embeddings]:
    if settings.embedding_provider == "hashing":
        return HashingEmbeddings(dimensions=settings.embedding_dimensions)
    return None


def build_container(
    settings: Settings,
    store: Optional[ArtifactStore] = None,
    embeddings=_DEFAULT,
    runtime: Optional[AgentRuntime] = None,
    distiller: Optional[InsightDistiller] = None
) -> ServiceContainer:
    """Wire the service graph.

    Without an explicit ``embeddings`` the provider comes from
    ``settings.embedding_provider``; ``None`` means lexical-only retrieval
    with embedding refresh disabled.
    """

    store = store or InMemoryArtifactStore()
    if embeddings is _DEFAULT:
        embeddings = default_embeddings(settings)

    gate = MemoryRetrievalGate(
        store,
        scorer=HybridScorer(),
        embeddings=embeddings,
        char_budget=settings.context_char_budget,
        recent_entries=settings.context_recent_entries
    )
    refresher = EmbeddingRefresher(store, embeddings)
    distillation = DistillationService(
        store,
        distiller=distiller,
        refresher=refresher,
        lookback_days=settings.distill_lookback_days,
        max_concurrency=settings.distill_max_concurrency
    )
    scheduler = MemoryScheduler(
        distillation,
        hour=settings.distill_hour,
        utc_offset_hours=settings.distill_utc_offset_hours,
        check_interval_seconds=settings.distill_check_interval_seconds
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        embeddings=embeddings,
        gate=gate,
        refresher=refresher,
        artifacts=ArtifactService(store, refresher),
        distillation=distillation,
        scheduler=scheduler,
        runtime=runtime
    )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
