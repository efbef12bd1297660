"""Replay guard for authorization codes."""
import threading
from collections import OrderedDict


class ProcessedCodes:
    """Bounded set of authorization codes that have already been processed.

    ``add_if_absent`` is atomic, so two redirect listeners racing on the
    same code cannot both win. When full, the oldest code is forgotten;
    provider codes expire within minutes, so an evicted code cannot be
    exchanged again anyway.
    """

    def __init__(self, limit: int = 256):
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._codes: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def add_if_absent(self, code: str) -> bool:
        """Record ``code``. Returns False if it was already recorded."""
        with self._lock:
            if code in self._codes:
                return False
            self._codes[code] = None
            if len(self._codes) > self.limit:
                self._codes.popitem(last=False)
            return True

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._codes

    def __len__(self) -> int:
        with self._lock:
            return len(self._codes)
