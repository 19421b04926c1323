"""
Work Period Scheduling System

Staffing grids for work periods with a load-balancing schedule optimizer,
per-cell lock and day-off handling, JSON persistence and reporting.
"""

from .changes import CellChange, PersistenceReport, apply_changes, diff_grids
from .grid import CellLockedError, ScheduleGrid, build_grid
from .models import Cell, InvalidInputError, ShiftRecord, UserProfile, WorkPeriod
from .optimizer import optimize, optimize_with_summary

__version__ = "1.0.0"
__author__ = "Work Period Scheduler Team"

__all__ = [
    "Cell",
    "CellChange",
    "CellLockedError",
    "InvalidInputError",
    "PersistenceReport",
    "ScheduleGrid",
    "ShiftRecord",
    "UserProfile",
    "WorkPeriod",
    "apply_changes",
    "build_grid",
    "diff_grids",
    "optimize",
    "optimize_with_summary",
]
