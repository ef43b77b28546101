"""Request history: embeddings and similarity lookups over past outcomes."""

from modelpilot.history.embedding import Embedder, HashingEmbedder, LiteLLMEmbedder
from modelpilot.history.similarity import SimilarityIndex

__all__ = [
    "Embedder",
    "HashingEmbedder",
    "LiteLLMEmbedder",
    "SimilarityIndex",
]
