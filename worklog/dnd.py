"""
Drag-and-drop move controller.

A drop applies the move to the visible board at once, then confirms it
with the server. On success the snapshot is dropped; on any failure the
exact pre-drag board is restored and the loader is marked stale so the
next load fetches the authoritative board.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .board import BoardSession, apply_move
from .errors import PreconditionError, TransportError, WorklogError

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found. Please refresh the board."
MOVE_SUCCEEDED = "Task moved successfully!"
MOVE_ERRORED = "An error occurred while moving the task"


@dataclass
class DropLocation:
    droppable_id: str      # column id
    index: int


@dataclass
class DropResult:
    draggable_id: str      # task id
    source: DropLocation
    destination: Optional[DropLocation] = None


@dataclass
class MoveOutcome:
    applied: bool          # the optimistic board was shown
    success: bool = False
    error: Optional[str] = None


class DragDropController:
    """Turns drop events into optimistic, server-confirmed task moves."""

    def __init__(self, session: BoardSession, clock: Callable[[], float] = time.monotonic):
        self.session = session
        self.clock = clock
        self.drag_started_at: Optional[float] = None

    @property
    def state(self):
        return self.session.state

    def on_drag_start(self, task_id: str) -> bool:
        """Refuse a new drag while a move is still waiting on the server."""
        if self.state.in_flight:
            logger.debug(f"Ignoring drag of {task_id}: move of {self.state.moving_task_id} in flight")
            return False
        self.state.moving_task_id = task_id
        self.drag_started_at = self.clock()
        return True

    def on_drag_end(self, result: DropResult) -> MoveOutcome:
        self.drag_started_at = None
        try:
            return self._drop(result)
        finally:
            self.state.moving_task_id = None

    def _drop(self, result: DropResult) -> MoveOutcome:
        if result.destination is None:
            return MoveOutcome(applied=False)

        session = self.session
        destination = result.destination
        task = session.board.find_task(result.draggable_id)
        if task is None:
            session.notifier.error(TASK_NOT_FOUND)
            return MoveOutcome(applied=False, error=TASK_NOT_FOUND)

        try:
            moved = apply_move(session.board, task.id, destination.droppable_id, destination.index)
            self.state.begin_optimistic(moved)
        except PreconditionError as e:
            session.notifier.error(str(e))
            return MoveOutcome(applied=False, error=str(e))

        self.state.moving_task_id = task.id
        try:
            outcome = session.mutations.move_task_with_cache(
                task.id, destination.droppable_id, destination.index,
                session.project_id, session.team_id,
                actor_email=session.actor_email, expected_version=task.version,
            )
        except TransportError as e:
            logger.error(f"Move of {task.id} failed: {e}")
            return self._fail(MOVE_ERRORED, str(e))
        except WorklogError as e:
            return self._fail(f"Failed to move task: {e}", str(e))

        if not outcome.success:
            error = outcome.error or "Unknown error"
            return self._fail(f"Failed to move task: {error}", error)

        self.state.commit()
        if outcome.task is not None:
            self._adopt(outcome.task)
        session.loader.invalidate()
        session.notifier.success(MOVE_SUCCEEDED)
        return MoveOutcome(applied=True, success=True)

    def _fail(self, message: str, error: str) -> MoveOutcome:
        self.state.rollback()
        self.session.loader.invalidate()
        self.session.notifier.error(message)
        return MoveOutcome(applied=True, success=False, error=error)

    def _adopt(self, confirmed):
        """Carry the server's new version onto the optimistic task."""
        task = self.session.board.find_task(confirmed.id)
        if task is not None:
            task.version = confirmed.version
            task.updated_at = confirmed.updated_at
