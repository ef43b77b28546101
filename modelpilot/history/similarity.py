"""Similarity index over past outcome records.

Retrieves the outcomes of earlier requests whose embeddings are closest to
the current request (cosine similarity). Vectors are L2-normalized once on
insert so a lookup is a single matrix-vector product.

Each embedding dimension keeps a preallocated row buffer that doubles when
full, so an insert is amortized O(1). Published segments are immutable
views: an insert writes the next free row and then swaps in a segment with
a larger size, so a lookup running concurrently sees either the old or the
new view, never a half-written row. Once a dimension reaches
``max_records`` the oldest quarter is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np

from modelpilot.schemas.outcome import OutcomeRecord

logger = logging.getLogger(__name__)

_INITIAL_CAPACITY = 64


@dataclass(frozen=True)
class _Segment:
    """The first ``size`` indexed records sharing one embedding dimension.

    ``records`` and ``matrix`` may hold rows past ``size``; those belong to
    newer segments and are never read through this one.
    """

    records: list[OutcomeRecord]
    matrix: np.ndarray  # shape (capacity, dim), rows L2-normalized
    size: int

    def __len__(self) -> int:
        return self.size

    @property
    def rows(self) -> np.ndarray:
        return self.matrix[: self.size]


def _normalize(vector: Sequence[float]) -> np.ndarray | None:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0 or not np.isfinite(norm):
        return None
    return arr / norm


class SimilarityIndex:
    """In-memory cosine-similarity index of OutcomeRecords.

    Args:
        min_similarity: Records less similar than this are never returned.
        max_records: Per-dimension cap; the oldest records are evicted
            beyond it.
    """

    def __init__(self, *, min_similarity: float = 0.0, max_records: int = 10_000) -> None:
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self._min_similarity = min_similarity
        self._max_records = max_records
        self._segments: dict[int, _Segment] = {}

    def __len__(self) -> int:
        return sum(len(s) for s in self._segments.values())

    def _grown(self, current: _Segment | None, dim: int) -> _Segment:
        """A segment with at least one free row after the current contents."""
        if current is None:
            capacity = min(_INITIAL_CAPACITY, self._max_records)
            return _Segment([], np.empty((capacity, dim)), 0)

        if current.size >= self._max_records:
            keep = self._max_records - max(1, self._max_records // 4)
            start = current.size - keep
            matrix = np.empty((self._max_records, dim))
            matrix[:keep] = current.matrix[start : current.size]
            logger.debug(
                "Similarity index evicted %d record(s) of dimension %d", start, dim,
            )
            return _Segment(current.records[start : current.size], matrix, keep)

        if current.size < current.matrix.shape[0]:
            return current

        capacity = min(current.matrix.shape[0] * 2, self._max_records)
        matrix = np.empty((capacity, dim))
        matrix[: current.size] = current.rows
        return _Segment(current.records, matrix, current.size)

    def add(self, record: OutcomeRecord) -> bool:
        """Index one record. Returns False if it has no usable embedding."""
        row = _normalize(record.embedding) if record.embedding else None
        if row is None:
            return False

        dim = row.shape[0]
        base = self._grown(self._segments.get(dim), dim)
        base.records.append(record)
        base.matrix[base.size] = row
        segment = _Segment(base.records, base.matrix, base.size + 1)
        self._segments = {**self._segments, dim: segment}
        return True

    def load(self, records: Iterable[OutcomeRecord]) -> int:
        """Bulk-index records (e.g. on startup). Returns the number indexed."""
        count = sum(1 for record in records if self.add(record))
        logger.info("Similarity index loaded %d record(s)", count)
        return count

    async def write(self, record: OutcomeRecord) -> None:
        """OutcomeSink interface: index a newly committed record."""
        self.add(record)

    async def find_similar(
        self,
        embedding: Sequence[float],
        top_k: int,
        router_id: str | None = None,
    ) -> list[OutcomeRecord]:
        """Return up to ``top_k`` records most similar to ``embedding``.

        Args:
            embedding: Query vector.
            top_k: Maximum number of records.
            router_id: When set, only records from this router are considered.

        Returns:
            Records ordered most similar first; ties keep insertion order.
            Empty when there is no history (never an error).
        """
        if top_k <= 0 or not embedding:
            return []
        query = _normalize(embedding)
        if query is None:
            return []
        segment = self._segments.get(query.shape[0])
        if segment is None:
            return []

        similarities = segment.rows @ query
        mask = similarities >= self._min_similarity
        if router_id is not None:
            mask &= np.fromiter(
                (segment.records[i].router_id == router_id for i in range(segment.size)),
                dtype=bool,
                count=segment.size,
            )
        candidates = np.flatnonzero(mask)
        if candidates.size == 0:
            return []
        order = candidates[np.argsort(-similarities[candidates], kind="stable")]
        return [segment.records[i] for i in order[:top_k]]
