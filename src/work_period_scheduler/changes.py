"""
Grid Change Detection and Persistence for Work Period Scheduling

Compares two grids cell by cell and applies the resulting changes to the
shift store as independent per-cell upserts. A failed write is reported
alongside the successful ones and never rolls the others back.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from .grid import CELL_FIELDS, ScheduleGrid, get_cell
from .models import ShiftRecord

logger = logging.getLogger(__name__)


@dataclass
class CellChange:
    """One (user, date) whose cell differs between two grids"""
    user_id: str
    date_key: str
    record_id: Optional[str]
    assigned: bool
    locked: bool
    requested_off: bool
    changed_fields: Tuple[str, ...] = ()

    @property
    def is_new(self) -> bool:
        """True when no persisted record exists yet and one must be created"""
        return self.record_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "shiftDate": self.date_key,
            "recordId": self.record_id,
            "assigned": self.assigned,
            "locked": self.locked,
            "requestedOff": self.requested_off,
            "changedFields": list(self.changed_fields)
        }


@dataclass
class CellWriteFailure:
    change: CellChange
    error: str


@dataclass
class PersistenceReport:
    """Per-cell outcome of applying a batch of changes"""
    succeeded: List[ShiftRecord] = field(default_factory=list)
    failed: List[CellWriteFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def fail_all(self, changes: List[CellChange], error: str):
        """Mark every change as failed, keeping errors already recorded"""
        recorded = {(f.change.user_id, f.change.date_key): f for f in self.failed}
        self.failed = [recorded.get((c.user_id, c.date_key)) or CellWriteFailure(change=c, error=error)
                       for c in changes]
        self.succeeded = []

    def summary(self) -> str:
        if not self.succeeded and not self.failed:
            return "No changes to save"
        saved = f"{self.success_count} cell{'' if self.success_count == 1 else 's'} saved"
        if not self.failed:
            return saved
        return f"{saved}, {self.failure_count} failed"


def diff_grids(old_grid: ScheduleGrid, new_grid: ScheduleGrid) -> List[CellChange]:
    """
    List the (user, date) pairs of either grid whose assignment, lock or
    day-off flag differs. Cells missing from either grid compare as the
    default cell. Field values come from ``new_grid``; the record id falls
    back to the old cell's when the new cell has none.
    """
    changes = []
    user_order = list(new_grid) + [uid for uid in old_grid if uid not in new_grid]
    for user_id in user_order:
        keys = set(new_grid.get(user_id, {})) | set(old_grid.get(user_id, {}))
        for key in sorted(keys):
            new_cell = get_cell(new_grid, user_id, key)
            old_cell = get_cell(old_grid, user_id, key)
            changed = tuple(name for name in CELL_FIELDS if getattr(old_cell, name) != getattr(new_cell, name))
            if not changed:
                continue
            changes.append(CellChange(
                user_id=user_id,
                date_key=key,
                record_id=new_cell.record_id or old_cell.record_id,
                assigned=new_cell.assigned,
                locked=new_cell.locked,
                requested_off=new_cell.requested_off,
                changed_fields=changed
            ))
    return changes


def _write_change(store, period_id: str, change: CellChange) -> ShiftRecord:
    return store.upsert_shift(
        period_id,
        change.user_id,
        change.date_key,
        assigned=change.assigned,
        locked=change.locked,
        requested_off=change.requested_off,
        record_id=change.record_id
    )


def apply_changes(store, period_id: str, changes: List[CellChange],
                  max_workers: int = 8) -> PersistenceReport:
    """
    Upsert every change into ``store`` concurrently.

    ``store`` must provide ``upsert_shift(period_id, user_id, shift_date,
    assigned=..., locked=..., requested_off=..., record_id=...)``. Writes are
    independent: an exception for one cell is recorded in the report and the
    remaining writes go ahead. Nothing is retried.
    """
    report = PersistenceReport()
    if not changes:
        return report

    workers = max(1, min(max_workers, len(changes)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(_write_change, store, period_id, change): change for change in changes}
        for future in as_completed(futures):
            change = futures[future]
            try:
                report.succeeded.append(future.result())
            except Exception as e:
                logger.error(f"Failed to save cell {change.user_id} {change.date_key} in period {period_id}: {e}")
                report.failed.append(CellWriteFailure(change=change, error=str(e)))

    # completion order is arbitrary; report in change order
    order = {(c.user_id, c.date_key): i for i, c in enumerate(changes)}
    report.succeeded.sort(key=lambda r: order.get((r.user_id, r.shift_date), len(order)))
    report.failed.sort(key=lambda f: order[(f.change.user_id, f.change.date_key)])

    logger.info(f"Applied {len(changes)} cell changes to period {period_id}: {report.summary()}")
    return report
