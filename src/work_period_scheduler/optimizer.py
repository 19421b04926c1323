"""
Schedule Optimizer for Work Period Scheduling

Greedy load balancing of per-day assignments toward a period's needed
capacity. Locked cells are never touched and requested-off cells are never
newly assigned. Days are processed in chronological order and workload is
recounted on the evolving grid before each adjustment, so shifts handed out
early in the period count against a user on later days.
"""

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple
import logging
import time

from .grid import (
    ScheduleGrid,
    UserRef,
    copy_grid,
    get_cell,
    user_ids,
    workload,
)
from .models import Cell, WorkPeriod

logger = logging.getLogger(__name__)


@dataclass
class OptimizationSummary:
    """Outcome of one optimizer pass"""
    days_processed: int = 0
    cells_assigned: int = 0
    cells_unassigned: int = 0
    under_capacity_days: List[Tuple[str, int]] = field(default_factory=list)  # (date_key, assigned)
    over_capacity_days: List[Tuple[str, int]] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def cells_changed(self) -> int:
        return self.cells_assigned + self.cells_unassigned

    @property
    def feasible(self) -> bool:
        return not self.under_capacity_days and not self.over_capacity_days


def _rank_by_workload(grid: ScheduleGrid, ids: Sequence[str], descending: bool) -> List[str]:
    # sorted() is stable (also with reverse=True): equal workloads keep the caller's user order
    return sorted(ids, key=lambda uid: workload(grid, uid), reverse=descending)


def _cell_for_update(grid: ScheduleGrid, user_id: str, key: str) -> Cell:
    row = grid.setdefault(user_id, {})
    if key not in row:
        row[key] = Cell()
    return row[key]


def optimize_with_summary(period: WorkPeriod, users: Sequence[UserRef],
                          grid: ScheduleGrid) -> Tuple[ScheduleGrid, OptimizationSummary]:
    """
    Adjust assignments day by day toward ``period.needed_capacity``.

    Under capacity, users are ranked by ascending workload and unlocked,
    unassigned, not-requested-off cells are filled until the target is met.
    Over capacity, users are ranked by descending workload and unlocked
    assigned cells are cleared until the target is met. Days that cannot
    reach the target are left as they are.

    Returns:
        Tuple of (new grid, OptimizationSummary); the input grid is not modified

    Raises:
        InvalidInputError: on a malformed period, negative capacity or duplicate users
    """
    start_time = time.time()
    period.validate()
    ids = user_ids(users)
    target = period.needed_capacity
    new_grid = copy_grid(grid)
    summary = OptimizationSummary()

    for key in period.date_keys:
        summary.days_processed += 1
        count = sum(1 for uid in ids if get_cell(new_grid, uid, key).assigned)

        if count < target:
            for uid in _rank_by_workload(new_grid, ids, descending=False):
                cell = get_cell(new_grid, uid, key)
                if cell.assigned or cell.locked or cell.requested_off:
                    continue
                _cell_for_update(new_grid, uid, key).assigned = True
                summary.cells_assigned += 1
                count += 1
                if count >= target:
                    break

        elif count > target:
            for uid in _rank_by_workload(new_grid, ids, descending=True):
                cell = get_cell(new_grid, uid, key)
                if cell.locked or not cell.assigned:
                    continue
                _cell_for_update(new_grid, uid, key).assigned = False
                summary.cells_unassigned += 1
                count -= 1
                if count <= target:
                    break

        if count < target:
            logger.debug(f"{period.id} {key}: under capacity after optimization ({count}/{target})")
            summary.under_capacity_days.append((key, count))
        elif count > target:
            logger.debug(f"{period.id} {key}: over capacity after optimization ({count}/{target})")
            summary.over_capacity_days.append((key, count))

    summary.duration_seconds = time.time() - start_time
    logger.info(
        f"Optimized work period {period.id}: {summary.days_processed} days, {len(ids)} users, "
        f"{summary.cells_changed} cells changed, {len(summary.under_capacity_days)} days under "
        f"and {len(summary.over_capacity_days)} over capacity"
    )
    return new_grid, summary


def optimize(period: WorkPeriod, users: Sequence[UserRef], grid: ScheduleGrid) -> ScheduleGrid:
    """Return a new grid with per-day assignments moved toward the needed capacity"""
    new_grid, _ = optimize_with_summary(period, users, grid)
    return new_grid
