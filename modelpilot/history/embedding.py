"""Request embeddings: the semantic fingerprint used for history lookups.

The router depends only on the Embedder interface. LiteLLMEmbedder calls a
hosted embedding model through litellm.aembedding() with an in-process
cache; HashingEmbedder is a deterministic local fallback that needs no
network access.
"""

from __future__ import annotations

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from collections import OrderedDict

import litellm
import numpy as np

from modelpilot.providers.litellm_provider import LITELLM_ERRORS

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class Embedder(ABC):
    """Produces a fixed-length numeric vector for a piece of text."""

    @abstractmethod
    async def embed(self, text: str) -> tuple[float, ...]:
        """Embed ``text``. Returns an empty tuple when no vector is available."""


class LiteLLMEmbedder(Embedder):
    """Embeddings from a hosted model via LiteLLM, with an LRU cache.

    Embedding failures degrade to an empty vector (the request is then
    scored from the static registry alone) rather than failing the request.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        *,
        api_key: str | None = None,
        max_cache_entries: int = 2048,
        timeout: float = 10.0,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_entries = max_cache_entries
        self._cache: OrderedDict[str, tuple[float, ...]] = OrderedDict()

    @staticmethod
    def _hash_text(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    async def embed(self, text: str) -> tuple[float, ...]:
        if not text:
            return ()

        key = self._hash_text(text)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        kwargs: dict = {"model": self._model, "input": [text], "timeout": self._timeout}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        try:
            response = await litellm.aembedding(**kwargs)
        except LITELLM_ERRORS as e:
            logger.warning("Embedding via %s failed, scoring without history: %s",
                           self._model, e)
            return ()

        item = response.data[0]
        raw = item["embedding"] if isinstance(item, dict) else item.embedding
        vector = tuple(float(x) for x in raw)

        self._cache[key] = vector
        if len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        return vector

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()


class HashingEmbedder(Embedder):
    """Bag-of-words feature hashing into a fixed number of buckets.

    Deterministic across processes (uses sha1, not the salted builtin
    hash). Good enough to group near-duplicate prompts; no semantics.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> tuple[float, ...]:
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return ()
        vector = np.zeros(self._dimension, dtype=np.float64)
        for token in tokens:
            digest = hashlib.sha1(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm == 0:
            return ()
        return tuple(float(x) for x in vector / norm)
