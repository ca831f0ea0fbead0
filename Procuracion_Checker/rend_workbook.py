# rend_workbook.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional
import re

import pandas as pd
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from pdf_pipeline import PageRecord, records_as_dicts

REND_SHEET = "REND"
PDF_SHEET = "PDF"
REND_COLUMNS = [
    "Numero de Cheque",
    "Monto",
    "AUTOS",
    "Expediente",
    "Año",
    "Observaciones",
    "Control",
    "Control cheque",
]
PDF_COLUMNS = ["Nombre", "Expediente", "año", "Monto", "Cheque"]
PDF_CONTROL_COLUMNS = ["Control", "Control cheque"]
TABLE_STYLE = "TableStyleLight1"
NUMERIC_RX = re.compile(r"[+-]?\d+(?:\.\d*)?")

# REND lookups: D/E pull Expediente/año from the PDF sheet by cheque (A), else by amount (B)
REND_FORMULAS = {
    3: (
        "=IFERROR(INDEX(PDF!$B:$B,MATCH(A{r},PDF!$E:$E,0)),"
        "INDEX(PDF!$B:$B,MATCH(B{r},PDF!$D:$D,0)))"
    ),
    4: (
        "=IFERROR(IF(INDEX(PDF!$C:$C,MATCH(A{r},PDF!$E:$E,0))>0,"
        "INDEX(PDF!$C:$C,MATCH(A{r},PDF!$E:$E,0)),\"\"),"
        "IF(INDEX(PDF!$C:$C,MATCH(B{r},PDF!$D:$D,0))>0,"
        "INDEX(PDF!$C:$C,MATCH(B{r},PDF!$D:$D,0)),\"\"))"
    ),
    6: "=COUNTIF(PDF!$D:$D,B{r})",
    7: "=COUNTIF(PDF!$E:$E,A{r})",
}
PDF_FORMULAS = {
    5: "=COUNTIF(REND!$B:$B,D{r})",
    6: "=COUNTIF(REND!$A:$A,E{r})",
}


def records_to_frame(records: Iterable[PageRecord]) -> pd.DataFrame:
    """PageRecords as a string-typed DataFrame with the PDF sheet headers."""
    rows = records_as_dicts(records)
    df = pd.DataFrame(rows, columns=["name", "case_reference", "year", "amount", "payment_id"])
    df.columns = PDF_COLUMNS
    return df.astype(str)


def as_number(value: str) -> Optional[float]:
    """Plain decimal text ('1234.56', ' 2020') as a float; None for anything else."""
    s = str(value).strip()
    if not NUMERIC_RX.fullmatch(s):
        return None
    return float(s)


def _xl_text(value: str) -> str:
    """Control characters openpyxl refuses to store are dropped."""
    return ILLEGAL_CHARACTERS_RE.sub("", value)


def _cell_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def read_rend_rows(path: str | Path) -> List[List[str]]:
    """
    Data rows of an existing reconciliation workbook: the REND sheet, or the
    first sheet when there is none. Header row dropped, cells as text.
    """
    p = Path(path)
    if not p.exists():
        return []

    sheets = pd.read_excel(p, sheet_name=None, header=None, dtype=object, engine="openpyxl")
    if not sheets:
        return []
    if REND_SHEET in sheets:
        raw = sheets[REND_SHEET]
    else:
        first = next(iter(sheets))
        print(f"[WARN] No '{REND_SHEET}' sheet in {p.name}, using '{first}'")
        raw = sheets[first]

    rows = []
    for values in raw.iloc[1:].itertuples(index=False):
        rows.append([_cell_text(v) for v in values][: len(REND_COLUMNS)])
    print(f"[INFO] Existing {REND_SHEET} rows loaded: {len(rows)}")
    return rows


def _add_table(ws, name: str, headers: list[str], n_rows: int) -> None:
    last_col = get_column_letter(len(headers))
    table = Table(displayName=name, ref=f"A1:{last_col}{n_rows + 1}")
    table.tableStyleInfo = TableStyleInfo(name=TABLE_STYLE, showRowStripes=True)
    ws.add_table(table)


def _write_rend_sheet(ws, rend_rows: List[List[str]]) -> None:
    ws.append(REND_COLUMNS)
    for i, row_data in enumerate(rend_rows, start=2):
        for j, cell in enumerate(row_data, start=1):
            if cell == "":
                continue
            if j == 2:
                # Monto: decimal comma is accepted on the way in
                num = as_number(cell.replace(",", "."))
                ws.cell(row=i, column=j, value=num if num is not None else _xl_text(cell))
            else:
                ws.cell(row=i, column=j, value=_xl_text(cell))
        for col0, formula in REND_FORMULAS.items():
            ws.cell(row=i, column=col0 + 1, value=formula.format(r=i))

    if rend_rows:
        _add_table(ws, "TablaREND", REND_COLUMNS, len(rend_rows))


def _write_pdf_sheet(ws, records: List[PageRecord]) -> None:
    headers = PDF_COLUMNS + PDF_CONTROL_COLUMNS
    ws.append(headers)
    for i, rec in enumerate(records, start=2):
        year = as_number(rec.year)
        amount = as_number(rec.amount)
        ws.cell(row=i, column=1, value=_xl_text(rec.name))
        ws.cell(row=i, column=2, value=_xl_text(rec.case_reference))
        ws.cell(row=i, column=3, value=year if year is not None else _xl_text(rec.year))
        ws.cell(row=i, column=4, value=amount if amount is not None else _xl_text(rec.amount))
        ws.cell(row=i, column=5, value=_xl_text(rec.payment_id))
        for col0, formula in PDF_FORMULAS.items():
            ws.cell(row=i, column=col0 + 1, value=formula.format(r=i))

    if records:
        _add_table(ws, "TablaPDF", headers, len(records))


def save_rend_workbook(records: Iterable[PageRecord], output_path: str | Path) -> Path:
    """
    Write the REND + PDF workbook to output_path.

    When output_path already exists its REND rows are carried over (the rest
    of that workbook is replaced) and get lookup formulas against the new
    PDF sheet, so each issued cheque can be checked against the documents.
    """
    out = Path(output_path)
    records = list(records)
    rend_rows = read_rend_rows(out)

    wb = Workbook()
    ws_rend = wb.active
    ws_rend.title = REND_SHEET
    _write_rend_sheet(ws_rend, rend_rows)

    ws_pdf = wb.create_sheet(PDF_SHEET)
    _write_pdf_sheet(ws_pdf, records)

    out.parent.mkdir(parents=True, exist_ok=True)
    wb.save(out)
    print(f"Wrote: {out}")
    return out
