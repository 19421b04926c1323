"""
Schedule Service for Work Period Scheduling

Application workflows over the data store: loading a period's grid,
running the optimizer and persisting its changes, and the manual cell
and column edits made from the schedule grid.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import logging
import threading

from .changes import CellChange, PersistenceReport, apply_changes, diff_grids
from .data_manager import DEFAULT_PERSIST_WORKERS, DataManager, DataSaveError, RecordNotFoundError
from .grid import (
    ScheduleGrid,
    build_grid,
    get_cell,
    is_column_locked,
    set_column_lock,
    toggle_assignment,
    toggle_lock,
    toggle_requested_off,
)
from .models import ShiftRecord, UserProfile, WorkPeriod, date_key
from .optimizer import OptimizationSummary, optimize_with_summary

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when a non-admin invokes an admin-only workflow"""
    pass


@dataclass
class OptimizationRun:
    """Result of optimizing and persisting one work period"""
    success: bool
    grid: ScheduleGrid
    changes: List[CellChange]
    report: PersistenceReport
    summary: OptimizationSummary
    message: str


@dataclass
class GridSnapshot:
    """A period with its allocated users and current grid"""
    period: WorkPeriod
    users: List[UserProfile]
    grid: ScheduleGrid
    shifts: List[ShiftRecord] = field(default_factory=list)


class ScheduleService:
    """Workflows for editing and optimizing work period schedules"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self._period_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _period_lock(self, period_id: str) -> threading.Lock:
        """Per-period lock; raises RecordNotFoundError for an unknown period"""
        self.data_manager.get_work_period(period_id)
        with self._locks_guard:
            return self._period_locks.setdefault(period_id, threading.Lock())

    def require_admin(self, actor_id: str) -> UserProfile:
        actor = self.data_manager.get_user(actor_id)
        if not actor or not actor.is_admin:
            raise PermissionDeniedError(f"User {actor_id} is not an administrator")
        return actor

    def load(self, period_id: str) -> GridSnapshot:
        period = self.data_manager.get_work_period(period_id)
        users = self.data_manager.get_period_users(period_id)
        shifts = self.data_manager.get_shifts(period_id)
        return GridSnapshot(period=period, users=users, grid=build_grid(period, users, shifts), shifts=shifts)

    def load_grid(self, period_id: str) -> ScheduleGrid:
        """Rebuild a period's grid from the store, which is the source of truth"""
        return self.load(period_id).grid

    def _save_or_restore(self, saved: dict):
        """Save to disk; on failure put the in-memory store back to ``saved``"""
        try:
            self.data_manager.save_data()
        except DataSaveError:
            self.data_manager.restore(saved)
            raise

    def _persist_changes(self, period_id: str, changes: List[CellChange]) -> PersistenceReport:
        """
        Upsert changed cells and save once. A failed save rolls the store
        back and turns every change of the batch into a failure.
        """
        saved = self.data_manager.snapshot()
        workers = self.data_manager.get_setting("persistWorkers", DEFAULT_PERSIST_WORKERS)
        report = apply_changes(self.data_manager, period_id, changes, max_workers=workers)
        if report.succeeded:
            try:
                self._save_or_restore(saved)
            except DataSaveError as e:
                logger.error(f"Saving {report.success_count} cells of period {period_id} failed: {e}")
                report.fail_all(changes, str(e))
        return report

    def run_optimizer(self, period_id: str, actor_id: str) -> OptimizationRun:
        """
        Optimize a period's grid and persist the changed cells.

        Runs for the same period are serialized. Persistence failures are
        reported per cell in the returned run and are not retried; the next
        load_grid() reflects whatever the store actually holds.
        """
        self.require_admin(actor_id)
        with self._period_lock(period_id):
            snapshot = self.load(period_id)
            new_grid, summary = optimize_with_summary(snapshot.period, snapshot.users, snapshot.grid)
            changes = diff_grids(snapshot.grid, new_grid)
            report = self._persist_changes(period_id, changes)

        if not changes:
            message = "Schedule already optimal; nothing changed"
        elif report.all_succeeded:
            message = f"Schedule optimized: {report.summary()}"
        else:
            message = f"Schedule optimized with errors: {report.summary()}"
        if summary.under_capacity_days or summary.over_capacity_days:
            message += (f" ({len(summary.under_capacity_days)} days under and "
                        f"{len(summary.over_capacity_days)} days over capacity)")

        logger.info(f"Optimizer run on period {period_id} by {actor_id}: {message}")
        return OptimizationRun(
            success=report.all_succeeded,
            grid=new_grid,
            changes=changes,
            report=report,
            summary=summary,
            message=message
        )

    def _persist_cell(self, period_id: str, user_id: str, key: str, grid: ScheduleGrid) -> ShiftRecord:
        """Upsert one cell and save; raises DataSaveError with the store rolled back"""
        saved = self.data_manager.snapshot()
        cell = get_cell(grid, user_id, key)
        record = self.data_manager.upsert_shift(
            period_id, user_id, key,
            assigned=cell.assigned,
            locked=cell.locked,
            requested_off=cell.requested_off,
            record_id=cell.record_id
        )
        self._save_or_restore(saved)
        cell.record_id = record.id
        return record

    def _require_allocated(self, snapshot: GridSnapshot, user_id: str, key: str):
        if user_id not in snapshot.grid:
            raise RecordNotFoundError(f"User {user_id} is not allocated to period {snapshot.period.id}")
        if key not in snapshot.grid[user_id]:
            raise RecordNotFoundError(f"{key} is outside work period {snapshot.period.id}")

    def toggle_assignment(self, period_id: str, user_id: str, shift_date, actor_id: str) -> ScheduleGrid:
        """Flip one cell's assignment; raises CellLockedError on a locked cell"""
        self.require_admin(actor_id)
        key = date_key(shift_date)
        with self._period_lock(period_id):
            snapshot = self.load(period_id)
            self._require_allocated(snapshot, user_id, key)
            new_grid = toggle_assignment(snapshot.grid, user_id, key)
            self._persist_cell(period_id, user_id, key, new_grid)
        return new_grid

    def toggle_lock(self, period_id: str, user_id: str, shift_date, actor_id: str) -> ScheduleGrid:
        self.require_admin(actor_id)
        key = date_key(shift_date)
        with self._period_lock(period_id):
            snapshot = self.load(period_id)
            self._require_allocated(snapshot, user_id, key)
            new_grid = toggle_lock(snapshot.grid, user_id, key)
            self._persist_cell(period_id, user_id, key, new_grid)
        return new_grid

    def toggle_requested_off(self, period_id: str, user_id: str, shift_date, actor_id: str) -> ScheduleGrid:
        """Users may flag their own days off; admins may flag anyone's"""
        if actor_id != user_id:
            self.require_admin(actor_id)
        key = date_key(shift_date)
        with self._period_lock(period_id):
            snapshot = self.load(period_id)
            self._require_allocated(snapshot, user_id, key)
            new_grid = toggle_requested_off(snapshot.grid, user_id, key)
            self._persist_cell(period_id, user_id, key, new_grid)
        return new_grid

    def toggle_column_lock(self, period_id: str, shift_date, actor_id: str) -> OptimizationRun:
        """
        Lock every allocated user's cell on a day, or unlock them when the
        whole column is already locked. Cells are written concurrently and
        failures are reported like an optimizer run.
        """
        self.require_admin(actor_id)
        key = date_key(shift_date)
        with self._period_lock(period_id):
            snapshot = self.load(period_id)
            if key not in snapshot.period.date_keys:
                raise RecordNotFoundError(f"{key} is outside work period {period_id}")
            locked = not is_column_locked(snapshot.grid, snapshot.users, key)
            new_grid = set_column_lock(snapshot.grid, snapshot.users, key, locked=locked)
            changes = diff_grids(snapshot.grid, new_grid)
            report = self._persist_changes(period_id, changes)

        state = "locked" if locked else "unlocked"
        return OptimizationRun(
            success=report.all_succeeded,
            grid=new_grid,
            changes=changes,
            report=report,
            summary=OptimizationSummary(),
            message=f"Column {key} {state}: {report.summary()}"
        )

    def allocate_user(self, period_id: str, user_id: str, actor_id: str) -> bool:
        self.require_admin(actor_id)
        saved = self.data_manager.snapshot()
        allocated = self.data_manager.allocate_user(period_id, user_id)
        if allocated:
            self._save_or_restore(saved)
        return allocated

    def remove_user(self, period_id: str, user_id: str, actor_id: str) -> bool:
        """Remove a user from a period, dropping their shifts in it"""
        self.require_admin(actor_id)
        with self._period_lock(period_id):
            saved = self.data_manager.snapshot()
            removed = self.data_manager.remove_user_from_period(period_id, user_id)
            if removed:
                self._save_or_restore(saved)
        return removed
