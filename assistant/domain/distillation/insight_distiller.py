from abc import ABC, abstractmethod
from typing import Any, List, Sequence
import json
import re

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from domain.context.context_ranker import extract_keywords
from domain.errors import DistillationError

logger = structlog.get_logger(__name__)

DISTILLATION_PROMPT = """You are a memory distillation agent. Your job is to review recent notes and extract key facts worth remembering long-term about the user.

Extract ONLY:
- Stable facts (name, school, job, location, important people)
- Preferences and patterns (communication style, tools, habits)
- Important decisions or plans (travel, projects, deadlines)
- Recurring needs or interests

Do NOT extract:
- Trivial tasks or one-off questions
- Things already in the existing profile
- Temporary context that won't matter in a week

Format: Return a JSON array of strings, each being a concise fact/insight. Return an empty array [] if nothing new is worth remembering.

Example output: ["User is traveling to SFO Feb 20-24 for a conference", "Prefers Slack notifications over email for urgent items"]"""

COVERED_OVERLAP = 0.6
DEFAULT_MAX_INSIGHTS = 5

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n+")
_JSON_BLOCK = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)


class InsightDistiller(ABC):
    """Condenses recent entries into long-term statements about a user"""

    @abstractmethod
    async def distill(self, recent: Sequence[str], existing: Sequence[str]) -> List[str]:
        """Return new statements not already present in ``existing``"""
        pass


class ExtractiveInsightDistiller(InsightDistiller):
    """Picks recent sentences whose keywords the profile does not already cover"""

    def __init__(self, max_insights: int = DEFAULT_MAX_INSIGHTS, min_keywords: int = 2):
        self.max_insights = max_insights
        self.min_keywords = min_keywords

    async def distill(self, recent: Sequence[str], existing: Sequence[str]) -> List[str]:
        covered = [set(extract_keywords(statement)) for statement in existing]
        insights: List[str] = []

        for sentence in self._sentences(recent):
            keywords = set(extract_keywords(sentence))
            if len(keywords) < self.min_keywords:
                continue
            if any(self._overlap(keywords, known) >= COVERED_OVERLAP for known in covered):
                continue

            insights.append(sentence)
            covered.append(keywords)
            if len(insights) >= self.max_insights:
                break

        return insights

    @staticmethod
    def _sentences(texts: Sequence[str]) -> List[str]:
        sentences = []
        for text in texts:
            for part in _SENTENCE_BOUNDARY.split(text or ""):
                part = part.strip()
                if part:
                    sentences.append(part)
        return sentences

    @staticmethod
    def _overlap(keywords: set, known: set) -> float:
        if not keywords:
            return 0.0
        return len(keywords & known) / len(keywords)


class ChatModelInsightDistiller(InsightDistiller):
    """Asks a chat model for insights and parses its JSON answer"""

    def __init__(self, llm: BaseChatModel, prompt: str = DISTILLATION_PROMPT):
        self.llm = llm
        self.prompt = prompt

    async def distill(self, recent: Sequence[str], existing: Sequence[str]) -> List[str]:
        profile = "\n".join(existing) or "(empty)"
        messages = [
            SystemMessage(content=self.prompt),
            HumanMessage(content=f"EXISTING PROFILE:\n{profile}\n\nRECENT NOTES:\n" + "\n".join(recent)),
        ]

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            raise DistillationError(f"Insight model call failed: {e}") from e

        return parse_insights(response.content)


def parse_insights(content: Any) -> List[str]:
    """Accepts a JSON array, or an object with an ``insights`` or ``facts`` array"""

    if not isinstance(content, str) or not content.strip():
        return []

    parsed = _load_json(content)
    if isinstance(parsed, dict):
        parsed = parsed.get("insights") or parsed.get("facts") or []
    if not isinstance(parsed, list):
        return []

    return [item.strip() for item in parsed if isinstance(item, str) and item.strip()]


def _load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # Models sometimes wrap the answer in prose or code fences
    match = _JSON_BLOCK.search(content)
    if match is None:
        logger.warning("Unparseable distillation output", preview=content[:200])
        return None

    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        logger.warning("Unparseable distillation output", preview=content[:200])
        return None
