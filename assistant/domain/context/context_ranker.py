from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Sequence
from dataclasses import dataclass, field
import math
import re

from domain.models.artifact import ArtifactWithEntries

# Entries considered when building an artifact's lexical corpus
CORPUS_ENTRY_LIMIT = 5
# History messages folded into the query
HISTORY_WINDOW = 2

KEYWORD_FLOOR = 0.2
KEYWORD_PENALTY_BELOW = 0.25
KEYWORD_WEIGHT = 0.4
SEMANTIC_WEIGHT = 0.6

STOP_WORDS = frozenset([
    # Articles and determiners
    'the', 'a', 'an', 'this', 'that', 'these', 'those',
    # Pronouns
    'i', 'you', 'he', 'she', 'it', 'we', 'they', 'me', 'him', 'her', 'us', 'them',
    'my', 'your', 'his', 'its', 'our', 'their', 'mine', 'yours', 'hers', 'ours', 'theirs',
    # Prepositions
    'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by', 'from', 'up', 'about', 'into',
    'over', 'after', 'under', 'between', 'out', 'against', 'during', 'without', 'before',
    # Conjunctions
    'and', 'but', 'or', 'nor', 'so', 'yet', 'both', 'either', 'neither',
    # Common verbs
    'is', 'are', 'was', 'were', 'be', 'been', 'being', 'have', 'has', 'had', 'having',
    'do', 'does', 'did', 'doing', 'will', 'would', 'could', 'should', 'may', 'might',
    'must', 'can', 'shall',
    # Filler common in assistant chat
    'please', 'help', 'want', 'need', 'like', 'make', 'create', 'workflow', 'use',
    'using', 'get', 'give', 'take', 'let', 'know', 'think', 'see', 'look', 'find',
    'show', 'tell', 'ask', 'said', 'say', 'just', 'also', 'well', 'very', 'really',
    'some', 'any', 'all', 'each', 'every', 'most', 'other', 'such', 'only', 'own',
    'same', 'than', 'too', 'now', 'here', 'there', 'when', 'where', 'why', 'how',
    'what', 'which', 'who', 'whom', 'whose',
])

_NON_WORD = re.compile(r"[^\w\s-]")


def normalize_query(text: str) -> str:
    return " ".join((text or "").split())


def _tokenize(text: str) -> List[str]:
    return _NON_WORD.sub(" ", text.lower()).split()


def _is_meaningful(word: str) -> bool:
    if word in STOP_WORDS:
        return False
    if len(word) > 2:
        return True
    # Short tokens survive only when they carry a digit, e.g. "q3"
    return len(word) == 2 and any(ch.isdigit() for ch in word)


def extract_keywords(message: str, history: Optional[Sequence[Any]] = None) -> List[str]:
    """Extract keywords and bigrams from a message and the last few history turns"""

    recent = [_message_content(item) for item in list(history or [])[-HISTORY_WINDOW:]]
    full_text = " ".join([message or ""] + [text for text in recent if text])

    words = [word for word in _tokenize(full_text) if _is_meaningful(word)]

    bigrams = [
        f"{first} {second}"
        for first, second in zip(words, words[1:])
        if len(first) >= 3 and len(second) >= 3
    ]

    # Deduplicate preserving order
    return list(dict.fromkeys(words + bigrams))


def _message_content(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        content = item.get("content", "")
    else:
        content = getattr(item, "content", "")
    return content if isinstance(content, str) else ""


def _keyword_weight(keyword: str) -> float:
    if len(keyword) > 6:
        return 2.0
    if len(keyword) > 4:
        return 1.5
    return 1.0


def artifact_corpus(artifact: ArtifactWithEntries) -> str:
    parts = [artifact.title, artifact.summary or "", " ".join(artifact.tags)]
    parts.extend(entry.content for entry in artifact.entries[:CORPUS_ENTRY_LIMIT])
    return " ".join(parts).lower()


def keyword_score(keywords: Sequence[str], artifact: ArtifactWithEntries) -> float:
    """Weighted share of query keywords found in the artifact"""

    if not keywords:
        return 0.0

    corpus = artifact_corpus(artifact)
    corpus_words = set(_tokenize(corpus))
    phrase_text = " ".join(_tokenize(corpus))

    matched = 0.0
    total = 0.0

    for keyword in keywords:
        weight = _keyword_weight(keyword)
        total += weight

        if " " in keyword:
            if keyword in phrase_text:
                matched += weight
        elif keyword in corpus_words:
            matched += weight
        elif any(
            len(word) >= 4 and (keyword in word or word in keyword)
            for word in corpus_words
        ):
            matched += weight * 0.5

    return min(matched / total, 1.0) if total > 0 else 0.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """Cosine similarity clamped to [0, 1], or None when the vectors are unusable"""

    if not a or not b or len(a) != len(b):
        return None

    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return None

    return max(0.0, min(1.0, dot / norm))


@dataclass
class ScoringQuery:
    """Normalized query with its derived keywords and optional embedding"""
    text: str
    keywords: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None

    @classmethod
    def build(
        cls,
        message: str,
        history: Optional[Sequence[Any]] = None,
        embedding: Optional[List[float]] = None
    ) -> "ScoringQuery":
        text = normalize_query(message)
        return cls(text=text, keywords=extract_keywords(text, history), embedding=embedding)


class RelevanceScorer(ABC):
    """Scores a query against a candidate artifact in [0, 1]"""

    @abstractmethod
    def score(self, query: ScoringQuery, artifact: ArtifactWithEntries) -> float:
        pass

    def score_breakdown(self, query: ScoringQuery, artifact: ArtifactWithEntries) -> Dict[str, Optional[float]]:
        return {"confidence": self.score(query, artifact)}


class LexicalScorer(RelevanceScorer):
    """Keyword overlap only"""

    def score(self, query: ScoringQuery, artifact: ArtifactWithEntries) -> float:
        return keyword_score(query.keywords, artifact)


class HybridScorer(RelevanceScorer):
    """Keyword overlap combined with embedding similarity.

    Both signals must agree for a high score. Artifacts without a usable
    embedding are scored lexically.
    """

    def score(self, query: ScoringQuery, artifact: ArtifactWithEntries) -> float:
        return self.score_breakdown(query, artifact)["confidence"]

    def score_breakdown(self, query: ScoringQuery, artifact: ArtifactWithEntries) -> Dict[str, Optional[float]]:
        kw = keyword_score(query.keywords, artifact)
        semantic = None
        if query.embedding is not None and artifact.embedding is not None:
            semantic = cosine_similarity(query.embedding, artifact.embedding)

        return {
            "confidence": self.combine(kw, semantic),
            "keyword": kw,
            "semantic": semantic,
        }

    @staticmethod
    def combine(kw: float, semantic: Optional[float]) -> float:
        if kw < KEYWORD_FLOOR:
            return 0.0
        if semantic is None:
            return kw
        if semantic == 0:
            return 0.0

        weighted = kw * KEYWORD_WEIGHT + semantic * SEMANTIC_WEIGHT
        if kw < KEYWORD_PENALTY_BELOW:
            weighted *= 0.5

        return max(0.0, min(1.0, weighted))
