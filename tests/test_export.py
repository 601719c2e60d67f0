from openpyxl import load_workbook

from market_dashboard.aggregation_engine.export import MarketMatrixExport
from market_dashboard.aggregation_engine.filters import FilterSpec


def _workbook(data, records, **kwargs):
    output = MarketMatrixExport(level_columns=3).create_matrix_report(data, records, **kwargs)
    return load_workbook(output)


def test_matrix_report_sheets(processor, all_tree):
    result = processor.process(all_tree)
    data = result.data
    wb = _workbook(data, data.value_records, report=result.report, filters=FilterSpec())

    assert wb.sheetnames == ["Summary", "Matrix"]

    ws = wb["Matrix"]
    headers = [cell.value for cell in ws[1]]
    assert headers[0] == "Geography"
    assert headers[7:] == ["Level 1", "Level 2", "Level 3", "2023", "2024"]
    assert ws.max_row == len(data.value_records) + 1
    assert ws.freeze_panes == "A2"
    assert ws["C2"].value == "All"
    assert ws["L2"].value == 165


def test_summary_uses_leaf_totals(processor, all_tree):
    data = processor.process(all_tree).data
    ws = _workbook(data, data.value_records)["Summary"]

    values = {ws.cell(row=r, column=1).value: ws.cell(row=r, column=2).value for r in range(1, ws.max_row + 1)}
    assert values[2024] == 165
    assert values["Base Year"] == 2023
    assert ws["A1"].value == "Market Report - USA"


def test_issues_sheet_when_build_has_warnings(processor, flat_tree):
    flat_tree["USA"]["By Type"]["Broken"] = 5
    result = processor.process(flat_tree)
    wb = _workbook(result.data, result.data.value_records, report=result.report)

    assert wb.sheetnames == ["Summary", "Matrix", "Import Issues"]
    ws = wb["Import Issues"]
    assert ws["A2"].value == "invalid_node"
    assert ws["B2"].value == "USA > By Type > Broken"
