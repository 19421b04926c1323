"""
Main Entry Point for Work Period Scheduling

Command line interface over the data store, the schedule service and
the exporters, with application-wide logging setup.
"""

import argparse
import sys
import logging
from pathlib import Path
from datetime import datetime
from typing import List, Optional

from .data_manager import DataManager, DataManagerError
from .grid import CellLockedError, get_cell
from .models import InvalidInputError
from .reporting import ExportManager, create_dashboard_summary, day_coverage, format_cell, user_workload
from .schedule_service import PermissionDeniedError, ScheduleService


def setup_logging(level: int = logging.INFO):
    """Setup application logging"""
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_file = log_dir / f"work_period_scheduler_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def handle_exception(exc_type, exc_value, exc_traceback):
    """Global exception handler"""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logging.getLogger(__name__).error(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback)
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="work-period-scheduler",
                                     description="Plan staffing for work periods")
    parser.add_argument("--data-file", default=None, help="JSON data file (default: data/schedule_data.json)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("periods", help="List work periods")

    create = sub.add_parser("create-period", help="Create a work period")
    create.add_argument("name")
    create.add_argument("start_date", help="YYYY-MM-DD")
    create.add_argument("end_date", help="YYYY-MM-DD")
    create.add_argument("--capacity", type=int, default=None, help="Users needed per day")

    add_user = sub.add_parser("add-user", help="Create a user profile")
    add_user.add_argument("first_name")
    add_user.add_argument("last_name")
    add_user.add_argument("--email", default=None)
    add_user.add_argument("--admin", action="store_true")

    allocate = sub.add_parser("allocate", help="Allocate a user to a work period")
    allocate.add_argument("period_id")
    allocate.add_argument("user_id")
    allocate.add_argument("--as", dest="actor", required=True, help="Acting administrator id")

    show = sub.add_parser("show", help="Print a period's grid, coverage and workload")
    show.add_argument("period_id")

    optimize = sub.add_parser("optimize", help="Optimize a period and save the changes")
    optimize.add_argument("period_id")
    optimize.add_argument("--as", dest="actor", required=True, help="Acting administrator id")

    export = sub.add_parser("export", help="Export a period's schedule")
    export.add_argument("period_id")
    export.add_argument("format", choices=["pdf", "excel", "csv"])
    export.add_argument("output")

    return parser


class WorkPeriodSchedulerApp:
    """Main application class"""

    def __init__(self, data_file: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.data_file = data_file
        self.data_manager = None
        self.service = None
        self.export_manager = None

    def initialize(self):
        """Initialize application components"""
        if self.data_file:
            data_file = Path(self.data_file)
        else:
            data_dir = Path(__file__).parent.parent / "data"
            data_dir.mkdir(exist_ok=True)
            data_file = data_dir / "schedule_data.json"
        self.logger.info(f"Persistent data file: {data_file}")

        self.data_manager = DataManager(str(data_file))
        self.service = ScheduleService(self.data_manager)
        self.export_manager = ExportManager(self.data_manager)

    def run(self, args: argparse.Namespace) -> bool:
        """Run one CLI command"""
        try:
            self.initialize()
            handler = getattr(self, "cmd_" + args.command.replace("-", "_"))
            return handler(args)
        except (DataManagerError, InvalidInputError, PermissionDeniedError, CellLockedError) as e:
            self.logger.error(f"{args.command} failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return False

    def cmd_periods(self, args) -> bool:
        for period in self.data_manager.get_work_periods():
            print(f"{period.id}  {period.name}  {period.start_date} - {period.end_date}  "
                  f"capacity {period.needed_capacity}")
        return True

    def cmd_create_period(self, args) -> bool:
        period = self.data_manager.create_work_period(args.name, args.start_date, args.end_date, args.capacity)
        self.data_manager.save_data()
        print(period.id)
        return True

    def cmd_add_user(self, args) -> bool:
        user = self.data_manager.add_user(args.first_name, args.last_name, email=args.email, is_admin=args.admin)
        self.data_manager.save_data()
        print(user.id)
        return True

    def cmd_allocate(self, args) -> bool:
        if not self.service.allocate_user(args.period_id, args.user_id, args.actor):
            print("User already allocated")
        return True

    def cmd_show(self, args) -> bool:
        snapshot = self.service.load(args.period_id)
        period, users, grid = snapshot.period, snapshot.users, snapshot.grid
        print(create_dashboard_summary(period, users, grid))
        print()

        coverage = day_coverage(period, users, grid)
        name_width = max([len(u.display_name) for u in users] + [8])
        print(" " * name_width + "  " + " ".join(row["date"][5:] for row in coverage))
        for user in users:
            marks = " ".join(format_cell(get_cell(grid, user.id, row["date"])).center(5) for row in coverage)
            print(f"{user.display_name:<{name_width}}  {marks}")
        print(f"{'assigned':<{name_width}}  " + " ".join(f"{row['assigned']}/{row['needed']}".center(5)
                                                         for row in coverage))
        print()
        for row in user_workload(period, users, grid):
            print(f"{row['name']}: {row['assigned_days']} days assigned, "
                  f"{row['requested_off_days']} requested off")
        return True

    def cmd_optimize(self, args) -> bool:
        run = self.service.run_optimizer(args.period_id, args.actor)
        print(run.message)
        for failure in run.report.failed:
            print(f"  failed: {failure.change.user_id} {failure.change.date_key}: {failure.error}")
        return run.success

    def cmd_export(self, args) -> bool:
        ok = self.export_manager.export_grid(args.period_id, args.format, args.output)
        print(f"Exported to {args.output}" if ok else "Export failed; see log for details")
        return ok


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    sys.excepthook = handle_exception

    args = build_parser().parse_args(argv)
    logger = setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger.info(f"Starting Work Period Scheduler: {args.command}")

    app = WorkPeriodSchedulerApp(args.data_file)
    success = app.run(args)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
