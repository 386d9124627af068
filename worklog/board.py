"""
Board state, loader and the session write path.

BoardState holds the visible board plus at most one optimistic snapshot.
BoardLoader fetches the board through the cache endpoint and skips
fetches inside a soft staleness window. BoardSession is the single
write path: every mutation goes through the cache-aware variant and
reloads before returning, so the next read observes the write.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from .client import RemoteDataClient
from .errors import PreconditionError, WorklogError
from .events import Notifier
from .mutations import KanbanMutations
from .schema import Board

logger = logging.getLogger(__name__)


def apply_move(board: Board, task_id: str, destination_column_id: str, destination_index: int) -> Board:
    """Return a new board with the task spliced into the destination column.

    Pure: the input board is left untouched. The index is clamped to the
    destination column's length.
    """
    moved = board.copy()
    source = moved.column_of(task_id)
    if source is None:
        raise PreconditionError(f"Task {task_id} is not on the board")
    destination = moved.find_column(destination_column_id)
    if destination is None:
        raise PreconditionError(f"Column {destination_column_id} is not on the board")

    position = next(i for i, t in enumerate(source.tasks) if t.id == task_id)
    task = source.tasks.pop(position)
    index = max(0, min(destination_index, len(destination.tasks)))
    destination.tasks.insert(index, task)
    task.column_id = destination.id

    for column in {source.id: source, destination.id: destination}.values():
        for order, t in enumerate(column.tasks):
            t.sort_order = order
    return moved


class BoardState:
    """Visible board plus the pre-drag snapshot while a move is in flight."""

    def __init__(self, board: Optional[Board] = None):
        self.board = board or Board()
        self.snapshot: Optional[Board] = None
        self.moving_task_id: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self.snapshot is not None

    def replace(self, board: Board):
        self.board = board

    def begin_optimistic(self, new_board: Board):
        """Show new_board, keeping a deep copy of the current board for rollback."""
        if self.snapshot is not None:
            raise PreconditionError("Another move is still in flight")
        self.snapshot = self.board.copy()
        self.board = new_board

    def commit(self):
        self.snapshot = None

    def rollback(self) -> bool:
        """Restore exactly the pre-drag board. Returns False if nothing was pending."""
        if self.snapshot is None:
            return False
        self.board = self.snapshot
        self.snapshot = None
        return True


class BoardLoader:
    """Fetches a (project, team) board, at most once per staleness window."""

    def __init__(self, client: RemoteDataClient, project_id: str, team_id: str, state: BoardState,
                 notifier: Optional[Notifier] = None, stale_after: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.project_id = project_id
        self.team_id = team_id
        self.state = state
        self.notifier = notifier or Notifier()
        self.stale_after = stale_after
        self.clock = clock
        self.last_fetch_time: Optional[float] = None
        self.fetch_count = 0

    @property
    def is_fresh(self) -> bool:
        if self.last_fetch_time is None:
            return False
        return self.clock() - self.last_fetch_time < self.stale_after

    def invalidate(self):
        self.last_fetch_time = None

    def load(self, force_refresh: bool = False) -> bool:
        """Fetch the board unless it is fresh. Returns True when a fetch happened."""
        if not force_refresh and self.is_fresh:
            return False
        now = self.clock()
        try:
            board = self.client.get_kanban_board_with_cache(self.project_id, self.team_id)
        except WorklogError as e:
            self.notifier.error(f"Failed to load board: {e}")
            return False
        finally:
            self.fetch_count += 1
        self.state.replace(board)
        self.last_fetch_time = now
        logger.debug(f"Loaded board {self.project_id}:{self.team_id} ({len(board.columns)} columns)")
        return True


class BoardSession:
    """One user's view of one board; the only path through which it is written."""

    def __init__(self, client: RemoteDataClient, project_id: str, team_id: str,
                 actor_email: Optional[str] = None, notifier: Optional[Notifier] = None,
                 stale_after: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.project_id = project_id
        self.team_id = team_id
        self.actor_email = actor_email or client.actor_email
        self.notifier = notifier or Notifier()
        self.state = BoardState()
        self.loader = BoardLoader(client, project_id, team_id, self.state, self.notifier,
                                  stale_after=stale_after, clock=clock)
        self.mutations = KanbanMutations(client)

    @property
    def board(self) -> Board:
        return self.state.board

    def load(self, force_refresh: bool = False) -> bool:
        return self.loader.load(force_refresh)

    def refresh(self) -> bool:
        return self.loader.load(force_refresh=True)

    def _write(self, what: str, done: str, fn: Callable, *args):
        try:
            result = fn(*args)
        except WorklogError as e:
            self.notifier.error(f"Failed to {what}: {e}")
            return None
        self.loader.invalidate()
        self.loader.load(force_refresh=True)
        self.notifier.success(f"{done} successfully!")
        return result

    def create_task(self, task_data: Dict[str, Any]):
        return self._write("create task", "Task created", self.mutations.create_task_with_cache,
                           task_data, self.project_id, self.team_id, self.actor_email)

    def update_task(self, task_id: str, updates: Dict[str, Any]):
        return self._write("update task", "Task updated", self.mutations.update_task_with_cache,
                           task_id, updates, self.project_id, self.team_id)

    def delete_task(self, task_id: str):
        return self._write("delete task", "Task deleted", self.mutations.delete_task_with_cache,
                           task_id, self.project_id, self.team_id)

    def permanently_delete_task(self, task_id: str):
        return self._write("delete task", "Task permanently deleted",
                           self.mutations.permanently_delete_task_with_cache,
                           task_id, self.project_id, self.team_id)

    def create_column(self, column_data: Dict[str, Any]):
        return self._write("create column", "Column created", self.mutations.create_column_with_cache,
                           column_data, self.project_id, self.team_id)

    def update_column(self, column_id: str, updates: Dict[str, Any]):
        return self._write("update column", "Column updated", self.mutations.update_column_with_cache,
                           column_id, updates, self.project_id, self.team_id)

    def delete_column(self, column_id: str):
        return self._write("delete column", "Column deleted", self.mutations.delete_column_with_cache,
                           column_id, self.project_id, self.team_id)
