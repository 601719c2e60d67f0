# market_dashboard/aggregation_engine/export.py
"""
Formatted Excel Export for the geography x segment matrix

"""

import logging
import math
from datetime import datetime
from io import BytesIO
from typing import List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
from openpyxl.utils import get_column_letter

from .constants import EXCEL_STYLES, MATRIX_COLUMNS, MATRIX_COLUMN_LABELS, DEFAULT_LEVEL_COLUMNS
from .errors import BuildReport
from .filters import FilterSpec, filter_summary
from .matrix import DataRecord
from .metrics import MarketMetrics, records_to_dataframe

logger = logging.getLogger(__name__)


class MarketMatrixExport:
    """
    Excel report generator for the market matrix.

    Usage:
        exporter = MarketMatrixExport()
        excel_bytes = exporter.create_matrix_report(
            data=dataset.data,
            records=filtered_records,
            report=dataset.report,
            filters=spec,
        )

        st.download_button(
            label="Download Excel",
            data=excel_bytes,
            file_name="market_matrix.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
    """

    def __init__(self, level_columns: int = DEFAULT_LEVEL_COLUMNS):
        self.wb = None
        self.level_columns = level_columns
        self._init_styles()

    def _init_styles(self):
        self.header_fill = PatternFill(
            start_color=EXCEL_STYLES['header_fill_color'],
            end_color=EXCEL_STYLES['header_fill_color'],
            fill_type='solid'
        )
        self.aggregated_fill = PatternFill(
            start_color=EXCEL_STYLES['aggregated_fill_color'],
            end_color=EXCEL_STYLES['aggregated_fill_color'],
            fill_type='solid'
        )
        self.header_font = Font(
            bold=True,
            color=EXCEL_STYLES['header_font_color'],
            size=11
        )
        self.title_font = Font(bold=True, size=16)
        self.subtitle_font = Font(bold=True, size=12)

        thin_border = Side(style='thin', color='000000')
        self.cell_border = Border(
            left=thin_border,
            right=thin_border,
            top=thin_border,
            bottom=thin_border
        )

        self.center_align = Alignment(horizontal='center', vertical='center')
        self.right_align = Alignment(horizontal='right', vertical='center')

        self.number_format = EXCEL_STYLES['number_format']
        self.percent_format = EXCEL_STYLES['percent_format']

    # =========================================================================
    # REPORT
    # =========================================================================

    def create_matrix_report(
        self,
        data,
        records: List[DataRecord],
        report: Optional[BuildReport] = None,
        filters: Optional[FilterSpec] = None,
        data_type: str = 'value'
    ) -> BytesIO:
        """
        Create Excel report for a set of matrix records.

        Sheets:
        1. Summary - market metadata, filters, leaf-only totals
        2. Matrix - one row per record, level_1..level_N, one column per year
        3. Import Issues - build warnings (only when there are any)

        Args:
            data: ComparisonData the records come from
            records: Records to write (usually a filter result)
            report: BuildReport of the build
            filters: FilterSpec used to select the records
            data_type: 'value' or 'volume', used for the unit label
        """
        self.wb = Workbook()

        self._create_summary_sheet(data, records, filters, data_type)
        self._create_matrix_sheet(records, data.metadata.years)
        if report is not None and report.has_issues:
            self._create_issues_sheet(report)

        if 'Sheet' in self.wb.sheetnames:
            del self.wb['Sheet']

        output = BytesIO()
        self.wb.save(output)
        output.seek(0)

        logger.info(f"Market matrix Excel report created ({len(records)} records)")
        return output

    # =========================================================================
    # SUMMARY SHEET
    # =========================================================================

    def _create_summary_sheet(self, data, records: List[DataRecord], filters: Optional[FilterSpec], data_type: str):
        ws = self.wb.create_sheet("Summary", 0)
        metadata = data.metadata

        ws['A1'] = f"Market Report - {metadata.market_name}"
        ws['A1'].font = self.title_font
        ws.merge_cells('A1:D1')

        ws['A2'] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}"
        ws['A2'].font = Font(italic=True, size=10)

        unit = metadata.volume_unit if data_type == 'volume' else f"{metadata.currency} {metadata.value_unit}"

        row = 4
        ws[f'A{row}'] = "MARKET"
        ws[f'A{row}'].font = self.subtitle_font
        row += 1

        info = [
            ("Years", f"{metadata.start_year} - {metadata.forecast_year}" if metadata.years else "N/A"),
            ("Base Year", metadata.base_year if metadata.base_year is not None else "N/A"),
            ("Unit", unit),
            ("Geographies", len(data.geographies.all_geographies)),
            ("Segment Types", len(data.segments)),
        ]
        for label, value in info:
            ws[f'A{row}'] = label
            ws[f'B{row}'] = value
            ws[f'A{row}'].font = Font(bold=True)
            row += 1

        row += 1
        ws[f'A{row}'] = "FILTERS"
        ws[f'A{row}'].font = self.subtitle_font
        row += 1
        ws[f'A{row}'] = filter_summary(filters) if filters is not None else "No filters"
        row += 2

        # Totals use leaf records only
        leaf_records = [r for r in records if not r.is_aggregated]
        metrics = MarketMetrics(leaf_records)

        ws[f'A{row}'] = "LEAF TOTALS"
        ws[f'A{row}'].font = self.subtitle_font
        row += 1
        for year in metadata.years:
            totals = metrics.calculate_totals(year)
            ws[f'A{row}'] = year
            ws[f'B{row}'] = totals['total']
            ws[f'B{row}'].number_format = self.number_format
            ws[f'A{row}'].font = Font(bold=True)
            row += 1

        ws.column_dimensions['A'].width = 25
        ws.column_dimensions['B'].width = 20

    # =========================================================================
    # MATRIX SHEET
    # =========================================================================

    def _create_matrix_sheet(self, records: List[DataRecord], years: List[int]):
        ws = self.wb.create_sheet("Matrix")
        df = records_to_dataframe(records, level_columns=self.level_columns, years=years)

        headers = []
        for col_name in df.columns:
            if col_name in MATRIX_COLUMN_LABELS:
                headers.append((col_name, MATRIX_COLUMN_LABELS[col_name], 16))
            elif isinstance(col_name, str) and col_name.startswith('level_'):
                headers.append((col_name, col_name.replace('_', ' ').title(), 18))
            else:
                headers.append((col_name, str(col_name), 12))

        for col_idx, (_, header, width) in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = self.center_align
            cell.border = self.cell_border
            ws.column_dimensions[get_column_letter(col_idx)].width = width

        for row_idx, row_data in enumerate(df.itertuples(index=False, name=None), 2):
            aggregated = bool(row_data[MATRIX_COLUMNS.index('is_aggregated')])
            for col_idx, ((col_name, _, _), value) in enumerate(zip(headers, row_data), 1):
                cell = ws.cell(row=row_idx, column=col_idx, value=_excel_value(value))
                cell.border = self.cell_border
                if aggregated:
                    cell.fill = self.aggregated_fill

                if isinstance(col_name, int):
                    cell.number_format = self.number_format
                    cell.alignment = self.right_align
                elif col_name in ('cagr', 'market_share'):
                    cell.number_format = self.percent_format
                    cell.alignment = self.right_align
                elif col_name in ('is_aggregated', 'aggregation_level'):
                    cell.alignment = self.center_align

        ws.freeze_panes = 'A2'

    # =========================================================================
    # ISSUES SHEET
    # =========================================================================

    def _create_issues_sheet(self, report: BuildReport):
        ws = self.wb.create_sheet("Import Issues")

        columns = [('code', 'Code', 22), ('location', 'Location', 50), ('message', 'Message', 70)]
        for col_idx, (_, header, width) in enumerate(columns, 1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = self.center_align
            cell.border = self.cell_border
            ws.column_dimensions[get_column_letter(col_idx)].width = width

        for row_idx, warning in enumerate(report.warnings, 2):
            values = (warning.code.value, warning.location, warning.message)
            for col_idx, value in enumerate(values, 1):
                ws.cell(row=row_idx, column=col_idx, value=value).border = self.cell_border

        ws.freeze_panes = 'A2'


def _excel_value(value):
    """NaN and numpy scalars are not valid cell values."""
    if value is None:
        return None
    if hasattr(value, 'item'):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value
