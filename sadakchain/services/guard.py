from contextlib import contextmanager
from typing import Hashable, Set

from ..errors import SubmissionInProgress


class BusyGuard:
    """Per-form busy flag: a second submit while one is outstanding is rejected, not queued."""

    def __init__(self):
        self._busy: Set[Hashable] = set()

    def is_busy(self, key: Hashable) -> bool:
        return key in self._busy

    @contextmanager
    def hold(self, key: Hashable):
        if key in self._busy:
            raise SubmissionInProgress("A submission is already in progress")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)
