from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class OutputStore:
    """Captured outputs of executed cells, keyed by their @options id.

    One instance is shared by every substitution and execution within an
    editing session. Later stores for the same id replace earlier ones.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, str] = {}

    def store(self, id: str, value: str) -> None:
        with self._lock:
            self._values[id] = value
        logger.debug("Stored output for id=%s (%d chars)", id, len(value))

    def get(self, id: str) -> Optional[str]:
        with self._lock:
            return self._values.get(id)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._values)

    def __contains__(self, id: object) -> bool:
        with self._lock:
            return id in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
