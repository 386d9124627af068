"""
Board cache.

TTLCache is a bounded LRU with per-entry expiry. KanbanCache puts the
board/column/project/user key scheme on top of it, with a TTL per
category.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTLS = {
    "kanban": 300,
    "user": 1800,
    "project": 600,
    "analytics": 60,
}


class TTLCache:
    """Bounded LRU cache with per-entry TTL. Thread-safe."""

    def __init__(self, maxsize: int = 500, clock: Callable[[], float] = time.monotonic):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._maxsize = maxsize
        self._clock = clock
        # value stored as (payload, expires_at)
        self._data: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                self.misses += 1
                return None
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: float):
        if ttl <= 0:
            raise ValueError("ttl must be > 0")
        with self._lock:
            self._data[key] = (value, self._clock() + ttl)
            self._data.move_to_end(key)
            while len(self._data) > self._maxsize:
                self._data.popitem(last=False)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    def clear(self):
        with self._lock:
            self._data.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class KanbanCache:
    """Key scheme and category TTLs for board data."""

    def __init__(self, ttls: Optional[Dict[str, int]] = None, maxsize: int = 500,
                 clock: Callable[[], float] = time.monotonic):
        self.ttls = dict(DEFAULT_TTLS)
        self.ttls.update(ttls or {})
        self._cache = TTLCache(maxsize=maxsize, clock=clock)
        # project_id -> count of invalidations; guards fills against racing writes
        self._generations: Dict[str, int] = {}
        self._lock = threading.RLock()

    # Cache key generators
    @staticmethod
    def board_key(project_id: str, team_id: str) -> str:
        return f"kanban:board:{project_id}:{team_id}"

    @staticmethod
    def columns_key(project_id: str) -> str:
        return f"kanban:columns:{project_id}"

    @staticmethod
    def project_key(project_id: str) -> str:
        return f"kanban:project:{project_id}"

    @staticmethod
    def user_projects_key(user_email: str) -> str:
        return f"kanban:user-projects-v2:{user_email}"

    def _set(self, key: str, value: Any, category: str):
        self._cache.set(key, value, self.ttls.get(category, DEFAULT_TTLS["kanban"]))

    # Board data
    def get_board(self, project_id: str, team_id: str):
        return self._cache.get(self.board_key(project_id, team_id))

    def generation(self, project_id: str) -> int:
        with self._lock:
            return self._generations.get(project_id, 0)

    def _bump(self, project_id: str):
        self._generations[project_id] = self._generations.get(project_id, 0) + 1

    def set_board(self, project_id: str, team_id: str, data, generation: Optional[int] = None) -> bool:
        """Store a board read from the database.

        With ``generation`` (taken before the read), the board is dropped when
        the project was invalidated in the meantime.
        """
        with self._lock:
            if generation is not None and generation != self._generations.get(project_id, 0):
                logger.debug(f"Discarding stale board fill for {project_id}:{team_id}")
                return False
            self._set(self.board_key(project_id, team_id), data, "kanban")
            return True

    def invalidate_board(self, project_id: str, team_id: str) -> bool:
        with self._lock:
            self._bump(project_id)
            removed = self._cache.delete(self.board_key(project_id, team_id))
        logger.debug(f"Invalidated board cache {project_id}:{team_id} (present={removed})")
        return removed

    # Columns / project metadata
    def get_columns(self, project_id: str):
        return self._cache.get(self.columns_key(project_id))

    def set_columns(self, project_id: str, data):
        self._set(self.columns_key(project_id), data, "kanban")

    def get_project(self, project_id: str):
        return self._cache.get(self.project_key(project_id))

    def set_project(self, project_id: str, data):
        self._set(self.project_key(project_id), data, "project")

    # User projects
    def get_user_projects(self, user_email: str):
        return self._cache.get(self.user_projects_key(user_email))

    def set_user_projects(self, user_email: str, data):
        self._set(self.user_projects_key(user_email), data, "user")

    def invalidate_user(self, user_email: str) -> bool:
        return self._cache.delete(self.user_projects_key(user_email))

    # Bulk invalidation
    def invalidate_project(self, project_id: str) -> int:
        """Drop project metadata, columns and every team's board for the project."""
        removed = 0
        with self._lock:
            self._bump(project_id)
            for key in (self.project_key(project_id), self.columns_key(project_id)):
                removed += int(self._cache.delete(key))
            removed += self._cache.delete_prefix(f"kanban:board:{project_id}:")
        logger.debug(f"Invalidated {removed} cache entries for project {project_id}")
        return removed

    def clear(self):
        self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        total = self._cache.hits + self._cache.misses
        return {
            "size": len(self._cache),
            "hits": self._cache.hits,
            "misses": self._cache.misses,
            "hit_rate": round(self._cache.hits / total, 3) if total else 0.0,
            "ttls": dict(self.ttls),
        }
