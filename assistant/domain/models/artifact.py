from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EntrySource(str, Enum):
    """Provenance of an artifact entry"""
    MANUAL = "manual"
    CONVERSATION_SUMMARY = "conversation-summary"
    DISTILLED = "distilled"


class CandidateSource(str, Enum):
    """How a retrieval candidate was selected"""
    AUTO = "auto"
    MANUAL = "manual"


class Artifact(BaseModel):
    """A durable, user-owned unit of long-term memory"""
    id: str = Field(description="Unique artifact identifier")
    user_id: str = Field(description="Owning user")
    title: str
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = Field(None, description="Derived from title, summary and recent entries")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ArtifactEntry(BaseModel):
    """One atomic piece of content appended to an artifact"""
    id: str
    artifact_id: str
    content: str
    source: EntrySource = Field(default=EntrySource.MANUAL)
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class ArtifactWithEntries(Artifact):
    """Artifact with its entries, most recent first"""
    entries: List[ArtifactEntry] = Field(default_factory=list)


class RetrievalCandidate(BaseModel):
    """Transient scoring result for one artifact. Never persisted."""
    artifact_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: CandidateSource = Field(default=CandidateSource.AUTO)
    updated_at: Optional[datetime] = None


class InjectedArtifact(BaseModel):
    """Artifact reported to the client as injected into the turn"""
    id: str
    title: str
    confidence: Literal["high", "possible"]


class ScoredArtifact(BaseModel):
    """A candidate resolved to its full artifact"""
    candidate: RetrievalCandidate
    artifact: ArtifactWithEntries


class RetrievalResult(BaseModel):
    """Context selected for one conversation turn"""
    context: str = ""
    artifacts: List[ScoredArtifact] = Field(default_factory=list)
    injected: List[InjectedArtifact] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.artifacts


class DistillationFailure(BaseModel):
    user_id: str
    message: str


class DistillationRun(BaseModel):
    """Counters for one distillation invocation"""
    users_processed: int = 0
    total_insights: int = 0
    errors: List[DistillationFailure] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "usersProcessed": self.users_processed,
            "totalInsights": self.total_insights,
            "errors": [
                {"userId": failure.user_id, "message": failure.message}
                for failure in self.errors
            ],
        }
