from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from application.api.container import ServiceContainer, get_services
from application.api.schema.requests import AddEntryRequest, CreateArtifactRequest, UpdateEntryRequest
from domain.context.context_retriever import LOOSE, is_system_artifact
from domain.errors import ArtifactStoreError, RetrievalError
from domain.models.artifact import Artifact
from infrastructure.security.request_auth import get_user_id

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/artifacts", tags=["artifacts"])

SNIPPET_LENGTH = 120


def to_json(model: BaseModel, **extra: Any) -> Dict[str, Any]:
    """camelCase JSON view of a model, without derived embeddings"""

    data = model.model_dump(mode="json", exclude={"embedding", "entries"})
    payload = {to_camel(key): value for key, value in data.items()}
    payload.update(extra)
    return payload


async def _owned_artifact(services: ServiceContainer, artifact_id: str, user_id: str) -> Artifact:
    artifact = await services.store.get_artifact(artifact_id)
    if artifact is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Artifact not found")
    if artifact.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return artifact


@router.get("")
async def list_artifacts(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    artifacts = []
    for artifact in await services.store.list_artifacts(user_id):
        # Profile artifacts are internal
        if is_system_artifact(artifact.title):
            continue

        full = await services.store.get_with_entries(artifact.id)
        entries = full.entries if full else []
        snippet: Optional[str] = None
        if entries:
            latest = entries[0].content
            snippet = latest[:SNIPPET_LENGTH] + ("…" if len(latest) > SNIPPET_LENGTH else "")

        artifacts.append(to_json(artifact, entryCount=len(entries), latestEntrySnippet=snippet))

    return {"artifacts": artifacts}


@router.post("")
async def create_artifact(
    body: CreateArtifactRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    try:
        artifact = await services.artifacts.create(
            user_id,
            body.title.strip(),
            summary=body.summary.strip() if body.summary else None,
            tags=body.tags,
            first_entry=body.content.strip() if body.content else None,
            source=body.source
        )
    except ArtifactStoreError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"artifact": to_json(artifact), "success": True}


@router.get("/search")
async def search_artifacts(
    q: str = Query(..., min_length=1),
    limit: int = Query(LOOSE.max_artifacts, ge=1, le=20),
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    try:
        candidates = await services.gate.find_candidates(
            user_id,
            q.strip(),
            max_artifacts=limit,
            min_confidence=LOOSE.min_confidence
        )
    except RetrievalError as e:
        logger.error("Artifact search failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to search artifacts")

    results = []
    for artifact in await services.gate.resolve(candidates):
        candidate = next(c for c in candidates if c.artifact_id == artifact.id)
        results.append(to_json(artifact, confidence=candidate.confidence, source=candidate.source.value))

    return {"artifacts": results}


@router.get("/{artifact_id}/entries")
async def list_entries(
    artifact_id: str,
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    await _owned_artifact(services, artifact_id, user_id)

    full = await services.store.get_with_entries(artifact_id)
    entries = full.entries if full else []
    if limit is not None:
        entries = entries[:limit]

    return {"entries": [to_json(entry) for entry in entries]}


@router.post("/{artifact_id}/entries")
async def add_entry(
    artifact_id: str,
    body: AddEntryRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    await _owned_artifact(services, artifact_id, user_id)

    if not body.content.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Content is required")

    entry = await services.artifacts.add_entry(
        artifact_id,
        body.content.strip(),
        source=body.source,
        workflow_id=body.workflow_id,
        workflow_name=body.workflow_name
    )
    return {"entry": to_json(entry), "success": True}


@router.patch("/{artifact_id}/entries/{entry_id}")
async def update_entry(
    artifact_id: str,
    entry_id: str,
    body: UpdateEntryRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services)
):
    await _owned_artifact(services, artifact_id, user_id)

    entry = await services.artifacts.update_entry(artifact_id, entry_id, body.content.strip())
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Entry not found")

    return {"entry": to_json(entry), "success": True}
