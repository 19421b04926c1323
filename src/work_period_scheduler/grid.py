"""
Schedule Grid for Work Period Scheduling

A grid maps user id -> date key -> Cell. Grids are treated as values:
every operation here returns a new grid and leaves its input untouched.
"""

from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Union
import logging

from .models import (
    Cell,
    InvalidInputError,
    ShiftRecord,
    UserProfile,
    WorkPeriod,
    date_key,
)

logger = logging.getLogger(__name__)

ScheduleGrid = Dict[str, Dict[str, Cell]]
UserRef = Union[UserProfile, str]

CELL_FIELDS = ("assigned", "locked", "requested_off")


class CellLockedError(Exception):
    """Raised when a manual toggle targets a locked cell"""
    pass


def user_id_of(user: UserRef) -> str:
    """Accept either a UserProfile or a bare user id"""
    return user if isinstance(user, str) else user.id


def user_ids(users: Iterable[UserRef]) -> List[str]:
    """User ids in the given order, rejecting duplicates"""
    ids = []
    seen = set()
    for user in users:
        uid = user_id_of(user)
        if uid in seen:
            raise InvalidInputError(f"User {uid!r} appears more than once")
        seen.add(uid)
        ids.append(uid)
    return ids


def period_dates(period: WorkPeriod) -> List[date]:
    """All calendar dates of the period, inclusive"""
    period.validate()
    return period.days


def build_grid(period: WorkPeriod, users: Sequence[UserRef],
               records: Iterable[ShiftRecord] = ()) -> ScheduleGrid:
    """
    Build a fully populated grid for a period.

    Every (user, date) pair starts as a default cell; persisted records whose
    (user, date) falls inside the grid then overwrite their cell. Records for
    other users or dates are ignored.

    Raises:
        InvalidInputError: if the period or any record date is malformed
    """
    period.validate()
    keys = period.date_keys
    grid: ScheduleGrid = {}
    for uid in user_ids(users):
        grid[uid] = {key: Cell() for key in keys}

    for record in records:
        shift_date = date_key(record.shift_date)
        row = grid.get(record.user_id)
        if row is None or shift_date not in row:
            logger.debug(f"Ignoring shift record {record.id} for {record.user_id} on {shift_date}: outside grid")
            continue
        row[shift_date] = record.to_cell()

    return grid


def copy_grid(grid: ScheduleGrid) -> ScheduleGrid:
    return {uid: {key: replace(cell) for key, cell in row.items()} for uid, row in grid.items()}


def get_cell(grid: ScheduleGrid, user_id: str, key: str) -> Cell:
    """Cell at (user, date); missing cells read as the default cell"""
    return grid.get(user_id, {}).get(key) or Cell()


def assigned_count_for_date(grid: ScheduleGrid, users: Iterable[UserRef], key: str) -> int:
    return sum(1 for user in users if get_cell(grid, user_id_of(user), key).assigned)


def is_column_locked(grid: ScheduleGrid, users: Sequence[UserRef], key: str) -> bool:
    """True when every allocated user's cell on that day is locked"""
    if not users:
        return False
    return all(get_cell(grid, user_id_of(user), key).locked for user in users)


def workload(grid: ScheduleGrid, user_id: str) -> int:
    """Number of assigned days in the user's row"""
    return sum(1 for cell in grid.get(user_id, {}).values() if cell.assigned)


def _with_cell(grid: ScheduleGrid, user_id: str, key: str, **changes) -> ScheduleGrid:
    new_grid = copy_grid(grid)
    row = new_grid.setdefault(user_id, {})
    row[key] = replace(row.get(key) or Cell(), **changes)
    return new_grid


def toggle_assignment(grid: ScheduleGrid, user_id: str, key: str) -> ScheduleGrid:
    """Flip the assignment of one cell; locked cells cannot be toggled"""
    key = date_key(key)
    cell = get_cell(grid, user_id, key)
    if cell.locked:
        raise CellLockedError(f"Cell for {user_id} on {key} is locked")
    return _with_cell(grid, user_id, key, assigned=not cell.assigned)


def toggle_lock(grid: ScheduleGrid, user_id: str, key: str) -> ScheduleGrid:
    key = date_key(key)
    return _with_cell(grid, user_id, key, locked=not get_cell(grid, user_id, key).locked)


def toggle_requested_off(grid: ScheduleGrid, user_id: str, key: str) -> ScheduleGrid:
    key = date_key(key)
    return _with_cell(grid, user_id, key, requested_off=not get_cell(grid, user_id, key).requested_off)


def set_column_lock(grid: ScheduleGrid, users: Sequence[UserRef], key: str,
                    locked: Optional[bool] = None) -> ScheduleGrid:
    """
    Lock or unlock every allocated user's cell on one day.

    With ``locked=None`` the column is toggled: a fully locked column is
    unlocked, anything else is locked.
    """
    key = date_key(key)
    if locked is None:
        locked = not is_column_locked(grid, users, key)
    new_grid = copy_grid(grid)
    for user in users:
        row = new_grid.setdefault(user_id_of(user), {})
        row[key] = replace(row.get(key) or Cell(), locked=locked)
    return new_grid
