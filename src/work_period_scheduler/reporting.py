"""
Reporting and Export Module for Work Period Scheduling

Period statistics, per-day coverage and per-user workload, plus PDF,
Excel and CSV export of a period's schedule grid.
"""

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer, PageBreak
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any, Sequence
import logging

from .data_manager import DataManager
from .grid import ScheduleGrid, assigned_count_for_date, get_cell, is_column_locked, workload
from .models import UserProfile, WorkPeriod, parse_date_key
from .optimizer import OptimizationSummary
from .schedule_service import ScheduleService

COVERAGE_UNDER = "under"
COVERAGE_MET = "met"
COVERAGE_OVER = "over"


def period_stats(period: WorkPeriod, users: Sequence[UserProfile], grid: ScheduleGrid) -> Dict[str, int]:
    """Headline numbers for a period"""
    keys = period.date_keys
    cells = [get_cell(grid, user.id, key) for user in users for key in keys]
    return {
        "needed_capacity": period.needed_capacity,
        "users_assigned": len(users),
        "total_shifts": len(keys),
        "day_off_requests": sum(1 for c in cells if c.requested_off),
        "assigned_cells": sum(1 for c in cells if c.assigned),
        "locked_cells": sum(1 for c in cells if c.locked),
        "required_cells": period.needed_capacity * len(keys)
    }


def day_coverage(period: WorkPeriod, users: Sequence[UserProfile], grid: ScheduleGrid) -> List[Dict[str, Any]]:
    """Assigned versus needed headcount for each day"""
    rows = []
    for key in period.date_keys:
        assigned = assigned_count_for_date(grid, users, key)
        if assigned < period.needed_capacity:
            status = COVERAGE_UNDER
        elif assigned == period.needed_capacity:
            status = COVERAGE_MET
        else:
            status = COVERAGE_OVER
        rows.append({
            "date": key,
            "weekday": parse_date_key(key).strftime("%a"),
            "assigned": assigned,
            "needed": period.needed_capacity,
            "status": status,
            "column_locked": is_column_locked(grid, users, key)
        })
    return rows


def user_workload(period: WorkPeriod, users: Sequence[UserProfile], grid: ScheduleGrid) -> List[Dict[str, Any]]:
    rows = []
    for user in users:
        cells = [get_cell(grid, user.id, key) for key in period.date_keys]
        rows.append({
            "user_id": user.id,
            "name": user.display_name,
            "is_admin": user.is_admin,
            "assigned_days": workload(grid, user.id),
            "locked_days": sum(1 for c in cells if c.locked),
            "requested_off_days": sum(1 for c in cells if c.requested_off)
        })
    return rows


def format_cell(cell) -> str:
    """Short grid marker: X assigned, - unassigned, O requested off, * locked"""
    mark = "X" if cell.assigned else "-"
    if cell.requested_off:
        mark = "O" if not cell.assigned else "X/O"
    if cell.locked:
        mark += "*"
    return mark


def create_dashboard_summary(period: WorkPeriod, users: Sequence[UserProfile], grid: ScheduleGrid,
                             summary: Optional[OptimizationSummary] = None) -> str:
    """Create text summary of a period's schedule"""
    stats = period_stats(period, users, grid)
    coverage = day_coverage(period, users, grid)
    under = [row for row in coverage if row["status"] == COVERAGE_UNDER]
    over = [row for row in coverage if row["status"] == COVERAGE_OVER]

    opt_info = ""
    if summary:
        opt_info = f"""
Optimization Results:
• Cells Assigned: {summary.cells_assigned}
• Cells Unassigned: {summary.cells_unassigned}
• Infeasible Days: {len(summary.under_capacity_days) + len(summary.over_capacity_days)}
"""

    text = f"""
SCHEDULE SUMMARY - {period.name} ({period.start_date:%B %d, %Y} - {period.end_date:%B %d, %Y})
{opt_info}
Overview:
• Needed Capacity: {stats['needed_capacity']} users per shift
• Users Assigned: {stats['users_assigned']}
• Total Shifts: {stats['total_shifts']} days in period
• Day-Off Requests: {stats['day_off_requests']}

Coverage:
• Assigned Cells: {stats['assigned_cells']} of {stats['required_cells']} required
• Locked Cells: {stats['locked_cells']}
• Days Under Capacity: {len(under)}
• Days Over Capacity: {len(over)}
    """

    if under:
        text += "\n\nUNDERSTAFFED DAYS:"
        for row in under:
            text += f"\n• {row['date']}: {row['assigned']}/{row['needed']}"

    return text.strip()


class ReportGenerator:
    """Main class for generating reports and exports"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Setup custom report styles"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=18,
            spaceAfter=30,
            alignment=1  # Center alignment
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceAfter=12
        ))

    def _load(self, period_id: str, grid: Optional[ScheduleGrid] = None):
        snapshot = ScheduleService(self.data_manager).load(period_id)
        return snapshot.period, snapshot.users, grid if grid is not None else snapshot.grid

    def export_grid_pdf(self, period_id: str, output_path: str, grid: Optional[ScheduleGrid] = None) -> bool:
        """Export a period's grid and statistics to PDF"""
        try:
            period, users, grid = self._load(period_id, grid)
            doc = SimpleDocTemplate(
                output_path,
                pagesize=landscape(A4),
                rightMargin=0.5*inch,
                leftMargin=0.5*inch,
                topMargin=0.5*inch,
                bottomMargin=0.5*inch
            )

            story = []
            title_text = (f"Shift Schedule - {period.name} "
                          f"({period.start_date:%b %d, %Y} - {period.end_date:%b %d, %Y})")
            story.append(Paragraph(title_text, self.styles['CustomTitle']))
            story.append(Spacer(1, 20))

            story.append(self._create_grid_table(period, users, grid))
            story.append(Spacer(1, 20))
            story.append(self._create_legend())

            story.append(PageBreak())
            story.extend(self._create_statistics_content(period, users, grid))

            doc.build(story)
            return True

        except Exception as e:
            logging.error(f"Error creating PDF: {e}", exc_info=True)
            return False

    def _create_grid_table(self, period: WorkPeriod, users: Sequence[UserProfile], grid: ScheduleGrid) -> Table:
        """Create the user x day table for PDF"""
        coverage = day_coverage(period, users, grid)
        header = ['User'] + [f"{parse_date_key(row['date']):%a}\n{parse_date_key(row['date']):%b %d}" for row in coverage]
        data = [header]
        for user in users:
            data.append([user.display_name] + [format_cell(get_cell(grid, user.id, row['date'])) for row in coverage])
        data.append(['Assigned'] + [f"{row['assigned']}/{row['needed']}" for row in coverage])

        day_width = min(0.6*inch, (10*inch - 1.5*inch) / max(len(coverage), 1))
        table = Table(data, colWidths=[1.5*inch] + [day_width]*len(coverage), repeatRows=1)

        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (1, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 7),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ]

        # Color cells like the interactive grid
        for row_idx, user in enumerate(users, 1):
            for col_idx, row in enumerate(coverage, 1):
                cell = get_cell(grid, user.id, row['date'])
                if cell.requested_off:
                    style.append(('BACKGROUND', (col_idx, row_idx), (col_idx, row_idx), colors.mistyrose))
                elif cell.assigned:
                    style.append(('BACKGROUND', (col_idx, row_idx), (col_idx, row_idx), colors.palegreen))

        # Coverage row: red under capacity, grey over
        for col_idx, row in enumerate(coverage, 1):
            if row['status'] == COVERAGE_UNDER:
                style.append(('BACKGROUND', (col_idx, -1), (col_idx, -1), colors.lightcoral))
            elif row['status'] == COVERAGE_OVER:
                style.append(('BACKGROUND', (col_idx, -1), (col_idx, -1), colors.lightgrey))

        table.setStyle(TableStyle(style))
        return table

    def _create_legend(self) -> Table:
        """Create legend for PDF"""
        legend_data = [
            ['Legend'],
            ['X  Assigned'],
            ['-  Unassigned'],
            ['O  Day-off Requested'],
            ['*  Locked']
        ]

        legend_table = Table(legend_data, colWidths=[3*inch])
        legend_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ]))

        return legend_table

    def _create_statistics_content(self, period: WorkPeriod, users: Sequence[UserProfile],
                                   grid: ScheduleGrid) -> List:
        """Create statistics content for PDF"""
        content = [Paragraph("Schedule Statistics", self.styles['CustomTitle']), Spacer(1, 20)]
        stats = period_stats(period, users, grid)

        content.append(Paragraph("Period Summary", self.styles['CustomHeading']))
        summary_data = [
            ['Metric', 'Value'],
            ['Needed Capacity', str(stats['needed_capacity'])],
            ['Users Assigned', str(stats['users_assigned'])],
            ['Total Shifts', str(stats['total_shifts'])],
            ['Day-Off Requests', str(stats['day_off_requests'])],
            ['Assigned Cells', f"{stats['assigned_cells']} / {stats['required_cells']}"],
            ['Locked Cells', str(stats['locked_cells'])],
        ]
        summary_table = Table(summary_data, colWidths=[3*inch, 2*inch])
        summary_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
        ]))
        content.append(summary_table)
        content.append(Spacer(1, 20))

        content.append(Paragraph("Workload per User", self.styles['CustomHeading']))
        user_data = [['User', 'Role', 'Assigned Days', 'Locked Days', 'Days Off Requested']]
        for row in user_workload(period, users, grid):
            user_data.append([
                row['name'],
                'Admin' if row['is_admin'] else 'Regular',
                str(row['assigned_days']),
                str(row['locked_days']),
                str(row['requested_off_days'])
            ])
        user_table = Table(user_data, colWidths=[2.0*inch, 0.9*inch, 1.1*inch, 1.1*inch, 1.4*inch])
        user_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (1, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 1, colors.black),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
        ]))
        content.append(user_table)

        return content

    def export_grid_excel(self, period_id: str, output_path: str, grid: Optional[ScheduleGrid] = None) -> bool:
        """Export grid, coverage and workload to Excel"""
        try:
            period, users, grid = self._load(period_id, grid)
            with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
                self._create_grid_dataframe(period, users, grid).to_excel(writer, sheet_name='Schedule', index=False)
                pd.DataFrame(day_coverage(period, users, grid)).to_excel(writer, sheet_name='Coverage', index=False)
                pd.DataFrame(user_workload(period, users, grid)).to_excel(writer, sheet_name='Workload', index=False)
                self._format_excel_worksheets(writer)
            return True

        except Exception as e:
            logging.error(f"Error exporting to Excel: {e}", exc_info=True)
            return False

    def _create_grid_dataframe(self, period: WorkPeriod, users: Sequence[UserProfile],
                               grid: ScheduleGrid) -> pd.DataFrame:
        """One row per (user, date) cell"""
        data = []
        for user in users:
            for key in period.date_keys:
                cell = get_cell(grid, user.id, key)
                data.append({
                    'Date': key,
                    'Day': parse_date_key(key).strftime("%A"),
                    'User_ID': user.id,
                    'User': user.display_name,
                    'Assigned': cell.assigned,
                    'Locked': cell.locked,
                    'Requested_Off': cell.requested_off,
                })
        columns = ['Date', 'Day', 'User_ID', 'User', 'Assigned', 'Locked', 'Requested_Off']
        return pd.DataFrame(data, columns=columns)

    def _format_excel_worksheets(self, writer):
        """Format Excel worksheets"""
        from openpyxl.styles import PatternFill, Font

        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(color="FFFFFF", bold=True)

        for worksheet in writer.sheets.values():
            for cell in worksheet[1]:
                cell.fill = header_fill
                cell.font = header_font

            # Auto-adjust column widths
            for column in worksheet.columns:
                max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
                worksheet.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

    def export_grid_csv(self, period_id: str, output_path: str, grid: Optional[ScheduleGrid] = None) -> bool:
        """Export schedule to CSV format"""
        try:
            period, users, grid = self._load(period_id, grid)
            self._create_grid_dataframe(period, users, grid).to_csv(output_path, index=False)
            return True

        except Exception as e:
            logging.error(f"Error exporting to CSV: {e}", exc_info=True)
            return False


class ExportManager:
    """Manager class for handling all export operations"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager
        self.report_generator = ReportGenerator(data_manager)

    def export_grid(self, period_id: str, format_type: str, output_path: str,
                    grid: Optional[ScheduleGrid] = None) -> bool:
        """Export a period's grid in the specified format"""
        if format_type.lower() == 'pdf':
            return self.report_generator.export_grid_pdf(period_id, output_path, grid)
        elif format_type.lower() == 'excel':
            return self.report_generator.export_grid_excel(period_id, output_path, grid)
        elif format_type.lower() == 'csv':
            return self.report_generator.export_grid_csv(period_id, output_path, grid)
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    def get_default_filename(self, period_id: str, format_type: str) -> str:
        """Generate default filename for export"""
        period = self.data_manager.get_work_period(period_id)
        slug = "_".join(period.name.lower().split()) or "work_period"
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        extension = "xlsx" if format_type.lower() == "excel" else format_type.lower()

        return f"shift_schedule_{slug}_{timestamp}.{extension}"

    def batch_export(self, period_id: str, output_dir: str,
                     formats: List[str] = None) -> Dict[str, bool]:
        """Export schedule in multiple formats"""
        if formats is None:
            formats = ['pdf', 'excel', 'csv']

        results = {}
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        for format_type in formats:
            file_path = output_path / self.get_default_filename(period_id, format_type)
            try:
                results[format_type] = self.export_grid(period_id, format_type, str(file_path))
            except ValueError as e:
                logging.error(f"Error exporting {format_type}: {e}", exc_info=True)
                results[format_type] = False

        return results
