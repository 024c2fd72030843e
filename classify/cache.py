from __future__ import annotations

import logging

from pydantic import ValidationError

from classify.models import AnalysisResponse
from store.blobs import ANALYSIS_CACHE_KEY, BlobStore

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200


class ClassificationCache:
    """Exact-text cache of classifier results with FIFO eviction."""

    def __init__(self, blobs: BlobStore, *, capacity: int = DEFAULT_CAPACITY) -> None:
        self._blobs = blobs
        self._capacity = capacity
        self._entries: dict[str, AnalysisResponse] | None = None

    def __len__(self) -> int:
        return len(self._loaded())

    def lookup(self, text: str) -> AnalysisResponse | None:
        return self._loaded().get(text)

    def store(self, text: str, result: AnalysisResponse) -> None:
        entries = self._loaded()
        if text not in entries and len(entries) >= self._capacity:
            oldest = next(iter(entries))
            del entries[oldest]
        entries[text] = result
        self._blobs.save(
            ANALYSIS_CACHE_KEY,
            {key: value.model_dump(mode="json") for key, value in entries.items()},
        )

    def clear(self) -> None:
        self._entries = {}
        self._blobs.delete([ANALYSIS_CACHE_KEY])

    def _loaded(self) -> dict[str, AnalysisResponse]:
        if self._entries is not None:
            return self._entries

        raw = self._blobs.load(ANALYSIS_CACHE_KEY, default={})
        entries: dict[str, AnalysisResponse] = {}
        if isinstance(raw, dict):
            for text, value in raw.items():
                try:
                    entries[text] = AnalysisResponse.model_validate(value)
                except ValidationError:
                    logger.warning("Skipping corrupt cache entry")
        # A blob saved under a larger capacity keeps only its newest entries.
        while len(entries) > self._capacity:
            del entries[next(iter(entries))]
        self._entries = entries
        return entries
