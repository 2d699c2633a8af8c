from typing import List
import hashlib
import math
import re

from langchain_core.embeddings import Embeddings


class HashingEmbeddings(Embeddings):
    """Deterministic hashed bag-of-words embeddings.

    Lets the service run without an external embedding model. Any other
    LangChain ``Embeddings`` implementation can be used in its place.
    """

    def __init__(self, dimensions: int = 384):
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._hash_embedding(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._hash_embedding(text)

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> List[float]:
        return self.embed_query(text)

    def _hash_embedding(self, content: str) -> List[float]:
        vector = [0.0] * self.dimensions

        normalized = re.sub(r"\s+", " ", content.strip().lower())
        tokens = re.findall(r"[a-z0-9_]+", normalized)
        if not tokens and normalized:
            tokens = list(normalized)

        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            for i in range(0, 8, 2):
                idx = digest[i] % self.dimensions
                sign = -1.0 if (digest[i + 1] & 1) else 1.0
                weight = 1.0 + (digest[(i + 2) % len(digest)] / 255.0)
                vector[idx] += sign * weight

        norm = math.sqrt(sum(v * v for v in vector))
        if norm <= 0:
            return [0.0] * self.dimensions
        return [v / norm for v in vector]
