from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import re

from domain.models.artifact import EntrySource

MAX_MESSAGE_LENGTH = 10000
MAX_HISTORY_MESSAGE_LENGTH = 50000

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")


def sanitize_message(message: str) -> str:
    """Remove markup from a user message"""
    return _HTML_TAG.sub("", _SCRIPT_TAG.sub("", message)).strip()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HistoryMessage(CamelModel):
    role: str = "user"
    content: str = ""


class ChatRequest(CamelModel):
    """Body shared by the streaming and JSON chat endpoints"""
    message: Optional[str] = None
    conversation_history: List[HistoryMessage] = Field(default_factory=list)
    artifact_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("artifactIds", "manualArtifactIds", "artifact_ids")
    )
    conversation_id: Optional[str] = None
    enable_auto_artifacts: bool = True

    def validation_error(self) -> Optional[str]:
        """Human-readable reason this request cannot be served, if any"""

        if not isinstance(self.message, str) or not self.message.strip():
            return "Message is required"

        if not sanitize_message(self.message):
            return "Message cannot be empty after sanitization"

        if len(sanitize_message(self.message)) > MAX_MESSAGE_LENGTH:
            return "Message too long (max 10,000 characters)"

        if any(len(item.content) > MAX_HISTORY_MESSAGE_LENGTH for item in self.conversation_history):
            return "Conversation history contains messages that are too long"

        return None

    @property
    def clean_message(self) -> str:
        return sanitize_message(self.message or "")


class CreateArtifactRequest(CamelModel):
    title: str = Field(min_length=1)
    summary: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    content: Optional[str] = Field(None, description="Optional first entry")
    source: EntrySource = EntrySource.MANUAL


class AddEntryRequest(CamelModel):
    content: str = Field(min_length=1)
    source: EntrySource = EntrySource.MANUAL
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None


class UpdateEntryRequest(CamelModel):
    content: str = Field(min_length=1)
