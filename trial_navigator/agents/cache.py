from __future__ import annotations

import logging
from collections.abc import Iterable

from trial_navigator.models.trial import CacheEntry, ScriTrial

logger = logging.getLogger(__name__)


class TrialCache:
    """Trials seen in this conversation, keyed by study id and uppercased study name.

    No eviction: a conversation sees tens of trials at most.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def put(self, trials: Iterable[ScriTrial], zip_code: str | None = None) -> None:
        count = 0
        for trial in trials:
            entry = CacheEntry(trial=trial, zip_code=zip_code)
            self._entries[trial.study_id] = entry
            if trial.study_name:
                self._entries[trial.study_name.upper()] = entry
            count += 1
        logger.info("Cached %d trials (total cache: %d entries)", count, len(self._entries))

    def get(self, key: str) -> CacheEntry | None:
        """Exact key, then uppercased key, then substring match either way."""
        key = key.strip()
        if not key:
            return None

        entry = self._entries.get(key)
        if entry is not None:
            return entry

        upper = key.upper()
        entry = self._entries.get(upper)
        if entry is not None:
            return entry

        # e.g. "BRE-430" finds "BRE-430-001"
        for stored_key, stored in self._entries.items():
            stored_upper = stored_key.upper()
            if upper in stored_upper or stored_upper in upper:
                return stored
        return None

    def clear(self) -> None:
        self._entries.clear()
