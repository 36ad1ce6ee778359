"""Per-week "hide this recurring slot" overrides.

The overrides are a convenience for the calendar view and nothing else reads
them, so they live in the client's signed session cookie rather than in the
database.  Entries are grouped by week start and expire after a TTL; logging
out clears them.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, List, MutableMapping, Optional

SESSION_KEY = 'hidden_schedules'


class HiddenScheduleCache:
    """Wraps a mutable mapping (normally ``flask.session``)."""

    def __init__(
        self,
        store: MutableMapping,
        ttl_days: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = max(int(ttl_days), 0) * 86400
        self.clock = clock

    def _load(self) -> Dict[str, dict]:
        data = self.store.get(SESSION_KEY)
        if not isinstance(data, dict):
            return {}
        now = self.clock()
        fresh = {}
        for week, entry in data.items():
            if not isinstance(entry, dict):
                continue
            stored_at = entry.get('stored_at', 0)
            if self.ttl_seconds and now - stored_at > self.ttl_seconds:
                continue
            fresh[week] = {'keys': list(entry.get('keys', [])), 'stored_at': stored_at}
        return fresh

    def _save(self, data: Dict[str, dict]) -> None:
        if data:
            self.store[SESSION_KEY] = data
        else:
            self.store.pop(SESSION_KEY, None)

    def hide(self, week_start: str, key: str) -> None:
        data = self._load()
        entry = data.setdefault(week_start, {'keys': [], 'stored_at': self.clock()})
        if key not in entry['keys']:
            entry['keys'].append(key)
        entry['stored_at'] = self.clock()
        self._save(data)

    def keys(self, week_start: Optional[str] = None) -> List[str]:
        data = self._load()
        if week_start is not None:
            return list(data.get(week_start, {}).get('keys', []))
        return [key for entry in data.values() for key in entry['keys']]

    def restore_week(self, week_start: str) -> int:
        data = self._load()
        removed = len(data.pop(week_start, {}).get('keys', []))
        self._save(data)
        return removed

    def clear(self) -> int:
        removed = len(self.keys())
        self.store.pop(SESSION_KEY, None)
        return removed

    def purge_expired(self) -> None:
        self._save(self._load())
