"""
Test Suite for the Schedule Optimizer

Covers lock invariance, capacity convergence, requested-off handling,
determinism and the workload-based tie-breaking rules.
"""

import pytest
import sys
from pathlib import Path

# Setup import path for src
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from work_period_scheduler.grid import build_grid, get_cell
from work_period_scheduler.models import Cell, InvalidInputError, ShiftRecord, WorkPeriod
from work_period_scheduler.optimizer import optimize, optimize_with_summary


def make_period(start="2024-01-01", end="2024-01-01", capacity=1):
    return WorkPeriod(id="wp-1", name="January", start_date=start, end_date=end, needed_capacity=capacity)


def record(user_id, shift_date, **flags):
    return ShiftRecord(id=f"r-{user_id}-{shift_date}", work_period_id="wp-1", user_id=user_id,
                       shift_date=shift_date, **flags)


def assigned_on(grid, users, key):
    return [u for u in users if get_cell(grid, u, key).assigned]


def test_two_day_scenario_spreads_shifts_by_workload():
    """Day 1 goes to the first user; day 2 to the least loaded, ties by input order."""
    period = make_period(end="2024-01-02", capacity=1)
    users = ["A", "B", "C"]
    grid = build_grid(period, users)

    result = optimize(period, users, grid)

    assert assigned_on(result, users, "2024-01-01") == ["A"]
    assert assigned_on(result, users, "2024-01-02") == ["B"]
    assert not any(cell.assigned for cell in result["C"].values())


def test_over_capacity_removes_first_user_on_equal_workload():
    """Descending stable ranking keeps input order on ties, so A loses the shift."""
    period = make_period(capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users, [
        record("A", "2024-01-01", assigned=True),
        record("B", "2024-01-01", assigned=True),
    ])

    result = optimize(period, users, grid)

    assert not result["A"]["2024-01-01"].assigned
    assert result["B"]["2024-01-01"].assigned


def test_over_capacity_removes_from_most_loaded_user():
    period = make_period(end="2024-01-03", capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users, [
        record("A", "2024-01-01", assigned=True),
        record("B", "2024-01-01", assigned=True),
        record("B", "2024-01-02", assigned=True, locked=True),
        record("B", "2024-01-03", assigned=True, locked=True),
    ])

    result = optimize(period, users, grid)

    # B has three assigned days against A's one, so B gives up day 1
    assert result["A"]["2024-01-01"].assigned
    assert not result["B"]["2024-01-01"].assigned


def test_locked_cells_never_change():
    period = make_period(capacity=0)
    grid = build_grid(period, ["A"], [record("A", "2024-01-01", assigned=True, locked=True)])

    result = optimize(period, ["A"], grid)

    assert result["A"]["2024-01-01"].assigned


def test_locked_unassigned_cells_are_not_filled():
    period = make_period(capacity=2)
    users = ["A", "B"]
    grid = build_grid(period, users, [record("A", "2024-01-01", locked=True)])

    result = optimize(period, users, grid)

    assert not result["A"]["2024-01-01"].assigned
    assert result["B"]["2024-01-01"].assigned


def test_fully_locked_day_is_untouched():
    period = make_period(capacity=2)
    users = ["A", "B", "C"]
    grid = build_grid(period, users, [record(u, "2024-01-01", locked=True) for u in users])

    result, summary = optimize_with_summary(period, users, grid)

    assert result == grid
    assert summary.under_capacity_days == [("2024-01-01", 0)]


def test_requested_off_cells_are_never_newly_assigned():
    """
    Why this is important: a day-off request must be honoured even when the
    day stays understaffed as a result.
    """
    period = make_period(capacity=2)
    users = ["A", "B"]
    grid = build_grid(period, users, [record("B", "2024-01-01", requested_off=True)])

    result = optimize(period, users, grid)

    assert result["A"]["2024-01-01"].assigned
    assert not result["B"]["2024-01-01"].assigned


def test_requested_off_does_not_protect_existing_assignment_from_removal():
    period = make_period(capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users, [
        record("A", "2024-01-01", assigned=True, requested_off=True),
        record("B", "2024-01-01", assigned=True),
    ])

    result = optimize(period, users, grid)

    assert not result["A"]["2024-01-01"].assigned
    assert result["A"]["2024-01-01"].requested_off
    assert result["B"]["2024-01-01"].assigned


def test_zero_capacity_unassigns_everyone_not_locked():
    period = make_period(capacity=0)
    users = ["A", "B", "C"]
    grid = build_grid(period, users, [
        record("A", "2024-01-01", assigned=True),
        record("B", "2024-01-01", assigned=True, locked=True),
        record("C", "2024-01-01", assigned=True),
    ])

    result = optimize(period, users, grid)

    assert assigned_on(result, users, "2024-01-01") == ["B"]


def test_feasible_days_reach_capacity_exactly():
    period = make_period(start="2024-03-01", end="2024-03-07", capacity=3)
    users = ["A", "B", "C", "D", "E"]
    grid = build_grid(period, users, [
        record("A", "2024-03-02", locked=True),
        record("B", "2024-03-03", requested_off=True),
        record("C", "2024-03-04", assigned=True),
        record("D", "2024-03-04", assigned=True),
        record("E", "2024-03-04", assigned=True),
        record("A", "2024-03-04", assigned=True),
    ])

    result, summary = optimize_with_summary(period, users, grid)

    for key in period.date_keys:
        assert len(assigned_on(result, users, key)) == 3
    assert summary.feasible


def test_workload_is_balanced_across_the_period():
    period = make_period(start="2024-03-01", end="2024-03-06", capacity=1)
    users = ["A", "B", "C"]

    result = optimize(period, users, build_grid(period, users))

    counts = [sum(c.assigned for c in result[u].values()) for u in users]
    assert counts == [2, 2, 2]


def test_fixed_point_is_idempotent():
    period = make_period(start="2024-03-01", end="2024-03-05", capacity=2)
    users = ["A", "B", "C", "D"]
    grid = build_grid(period, users, [record("C", "2024-03-02", requested_off=True)])

    once = optimize(period, users, grid)
    twice = optimize(period, users, once)

    assert twice == once


def test_identical_inputs_give_identical_output():
    period = make_period(start="2024-03-01", end="2024-03-10", capacity=2)
    users = ["U1", "U2", "U3", "U4", "U5"]
    records = [record("U3", "2024-03-04", requested_off=True), record("U1", "2024-03-05", locked=True)]

    first = optimize(period, users, build_grid(period, users, records))
    second = optimize(period, users, build_grid(period, users, records))

    assert first == second


def test_input_grid_is_not_mutated():
    period = make_period(capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users)
    before = {u: dict(row) for u, row in grid.items()}

    optimize(period, users, grid)

    assert grid == before
    assert not grid["A"]["2024-01-01"].assigned


def test_only_assigned_flags_change():
    period = make_period(start="2024-01-01", end="2024-01-02", capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users, [
        record("A", "2024-01-01", requested_off=True),
        record("B", "2024-01-02", assigned=True, locked=True),
    ])

    result = optimize(period, users, grid)

    assert set(result) == set(grid)
    for user in users:
        assert set(result[user]) == set(grid[user])
        for key, cell in grid[user].items():
            new = result[user][key]
            assert (new.record_id, new.locked, new.requested_off) == (cell.record_id, cell.locked, cell.requested_off)


def test_missing_cells_read_as_default_and_are_filled():
    period = make_period(capacity=1)
    grid = {"A": {}}

    result = optimize(period, ["A"], grid)

    assert result["A"]["2024-01-01"] == Cell(assigned=True)


@pytest.mark.parametrize(
    "period_kwargs",
    [
        {"start": "2024-01-05", "end": "2024-01-01"},
        {"capacity": -1},
        {"capacity": 1.5},
    ],
)
def test_invalid_period_raises_before_work(period_kwargs):
    period = make_period(**period_kwargs)
    with pytest.raises(InvalidInputError):
        optimize(period, ["A"], {"A": {}})


def test_duplicate_users_are_rejected():
    period = make_period()
    with pytest.raises(InvalidInputError):
        optimize(period, ["A", "A"], build_grid(period, ["A"]))


def test_summary_counts_changes():
    period = make_period(end="2024-01-02", capacity=1)
    users = ["A", "B"]
    grid = build_grid(period, users, [
        record("A", "2024-01-02", assigned=True),
        record("B", "2024-01-02", assigned=True),
    ])

    _, summary = optimize_with_summary(period, users, grid)

    assert summary.days_processed == 2
    assert summary.cells_assigned == 1
    assert summary.cells_unassigned == 1
    assert summary.cells_changed == 2
