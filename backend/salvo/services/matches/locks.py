import threading
from contextlib import contextmanager
from typing import Dict, List


class MatchLocks:
    """One mutex per match id; a state transition holds it end to end.

    An entry lives only while someone holds or waits for it, so ids that never
    existed or were swept away leave nothing behind.
    """

    def __init__(self):
        # match id -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()

    def __len__(self):
        with self._guard:
            return len(self._locks)

    def _acquire_entry(self, match_id: str):
        with self._guard:
            entry = self._locks.get(match_id)
            if entry is None:
                entry = self._locks[match_id] = [threading.Lock(), 0]
            entry[1] += 1
            return entry

    def _release_entry(self, match_id: str, entry) -> None:
        with self._guard:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[match_id]

    @contextmanager
    def hold(self, match_id: str):
        entry = self._acquire_entry(match_id)
        try:
            with entry[0]:
                yield
        finally:
            self._release_entry(match_id, entry)
