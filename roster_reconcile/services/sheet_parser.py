"""
Roster Sheet Parser
Header detection, column identification and record extraction for
human-authored roster spreadsheets.

Roster layouts vary from sheet to sheet: a title row may sit above the
header, names may be a single Chinese column or split pinyin columns, and
room numbers are often merged across several rows. Column roles are found
with ranked header rules (see ``NAME_RULES``), and the sheet's matching mode
follows from which roles exist.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from roster_reconcile.models.reconciliation_models import (
    ColumnLayout, MatchingMode, RosterRecord, SheetParseResult, SheetRejection,
)
from roster_reconcile.services.name_normalizer import format_roster_name
from roster_reconcile.utils.error_handlers import RosterRejectedError
from roster_reconcile.utils.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

Grid = List[List[Any]]

# A first row with this many non-empty cells or fewer is a title, not a header
TITLE_ROW_MAX_CELLS = 2


@dataclass(frozen=True)
class HeaderRule:
    """A header label predicate and the score a matching column earns"""
    predicate: Callable[[str], bool]
    score: int
    description: str

    def matches(self, label: str) -> bool:
        return bool(label) and self.predicate(label)


def _contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda label: any(n in label for n in needles)


def _lower_contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda label: any(n in label.lower() for n in needles)


def _is_id_label(label: str) -> bool:
    if any(n in label for n in ("身份证", "证件号", "证件", "证号", "护照")):
        return True
    lower = label.lower()
    if "id" in lower and any(n in lower for n in ("card", "number", "no")):
        return True
    return "passport" in lower or "identity" in lower


ROOM_RULES = (
    HeaderRule(lambda l: _contains_any("房号", "房间")(l) or "room" in l.lower(), 1, "room label"),
)

NAME_RULES = (
    HeaderRule(lambda l: l in ("中文姓名", "姓名", "名字"), 100, "exact name label"),
    HeaderRule(_contains_any("中文姓名", "中文名姓"), 90, "compound Chinese name label"),
    HeaderRule(_contains_any("姓名", "中文名"), 80, "contains name label"),
)

SURNAME_RULES = (
    HeaderRule(
        lambda l: (_contains_any("拼音姓")(l) or _lower_contains_any("surname", "last name")(l)) and "名" not in l,
        1, "pinyin/English surname label",
    ),
)

GIVEN_NAME_RULES = (
    HeaderRule(
        lambda l: (_contains_any("拼音名")(l) or _lower_contains_any("given name", "first name")(l)) and "姓" not in l,
        1, "pinyin/English given name label",
    ),
)

ID_CARD_RULES = (
    HeaderRule(_is_id_label, 1, "identity document label"),
)


def cell_to_str(value: Any) -> str:
    """Stringify an untyped cell; blanks (None, NaN, whitespace) become ''"""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def _cell(row: Sequence[Any], index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return cell_to_str(row[index])


def score_header(label: str, rules: Sequence[HeaderRule]) -> int:
    """Score of the first rule the label satisfies, 0 when none does"""
    for rule in rules:
        if rule.matches(label):
            return rule.score
    return 0


def find_column(headers: Sequence[str], rules: Sequence[HeaderRule]) -> Optional[int]:
    """Index of the highest scoring header; ties keep the leftmost column"""
    best_index = None
    best_score = 0
    for index, label in enumerate(headers):
        score = score_header(label, rules)
        if score > best_score:
            best_index, best_score = index, score
    return best_index


def locate_header_row(grid: Grid) -> Optional[int]:
    """Row 0, unless it looks like a title row; then row 1"""
    if not grid:
        return None
    first_row_cells = sum(1 for cell in grid[0] if cell_to_str(cell))
    header_row = 0 if first_row_cells > TITLE_ROW_MAX_CELLS else 1
    if header_row >= len(grid) or not any(cell_to_str(c) for c in grid[header_row]):
        return None
    return header_row


def inspect_columns(grid: Grid) -> Tuple[Optional[ColumnLayout], Optional[str]]:
    """Detect the header row and column roles, or explain why none were usable"""
    if not grid:
        return None, "sheet is empty"

    header_row = locate_header_row(grid)
    if header_row is None:
        return None, "no header row found"

    headers = tuple(cell_to_str(cell) for cell in grid[header_row])
    layout = ColumnLayout(
        header_row=header_row,
        room=find_column(headers, ROOM_RULES),
        name=find_column(headers, NAME_RULES),
        surname=find_column(headers, SURNAME_RULES),
        given_name=find_column(headers, GIVEN_NAME_RULES),
        id_card=find_column(headers, ID_CARD_RULES),
        headers=headers,
    )

    if not layout.has_name_source:
        return None, "missing required column: name (姓名) or surname + given name"
    return layout, None


def detect_columns(grid: Grid) -> Optional[ColumnLayout]:
    """Column layout of a sheet, None when no usable columns exist"""
    layout, _ = inspect_columns(grid)
    return layout


def choose_mode(layout: ColumnLayout) -> Optional[MatchingMode]:
    if layout.room is not None:
        return MatchingMode.ROOM_NAME
    if layout.id_card is not None:
        return MatchingMode.NAME_ONLY
    return None


def extract_records(grid: Grid, layout: ColumnLayout, mode: MatchingMode) -> List[RosterRecord]:
    """Build one record per data row that carries the fields ``mode`` requires"""
    records = []
    last_room = None

    for row_index in range(layout.header_row + 1, len(grid)):
        row = grid[row_index]

        room = None
        if layout.room is not None:
            room = _cell(row, layout.room)
            if room:
                last_room = room
            else:
                # merged cell: inherit the nearest room above
                room = last_room

        name = format_roster_name(_cell(row, layout.name))
        if not name and layout.surname is not None and layout.given_name is not None:
            surname = _cell(row, layout.surname)
            given_name = _cell(row, layout.given_name)
            name = f"{surname} {given_name}".strip()

        id_card = _cell(row, layout.id_card)

        if mode == MatchingMode.ROOM_NAME:
            if not (room and name):
                continue
        elif not (name and id_card):
            continue

        records.append(RosterRecord(name=name, room=room, id_card=id_card, row_number=row_index + 1))

    return records


def parse_sheet_detailed(grid: Grid, sheet_name: str,
                         max_rows: Optional[int] = None) -> Tuple[Optional[SheetParseResult], Optional[str]]:
    """Parse one sheet; on rejection the second element says why"""
    if max_rows is not None and len(grid) > max_rows:
        return None, f"sheet has too many rows ({len(grid)}), maximum allowed is {max_rows}"

    layout, reason = inspect_columns(grid)
    if layout is None:
        return None, reason

    mode = choose_mode(layout)
    if mode is None:
        return None, "missing required column: room (房号) or identity document (身份证/护照)"

    records = extract_records(grid, layout, mode)
    logger.info("Sheet columns detected", context={
        "sheet": sheet_name,
        "header_row": layout.header_row + 1,
        "mode": mode.value,
        "room": layout.label(layout.room),
        "name": layout.label(layout.name),
        "id_card": layout.label(layout.id_card),
        "records": len(records),
    })
    if not records:
        return None, "no rows with the required fields"

    return SheetParseResult(mode=mode, records=tuple(records), sheet_name=sheet_name, layout=layout), None


def parse_sheet(grid: Grid, sheet_name: str, max_rows: Optional[int] = None) -> Optional[SheetParseResult]:
    result, _ = parse_sheet_detailed(grid, sheet_name, max_rows)
    return result


def read_workbook(path) -> "OrderedDict[str, Grid]":
    """
    Load every sheet of a workbook as a raw grid of untyped cells.

    ``.xls`` files are read with xlrd, everything else with openpyxl.
    """
    suffix = Path(path).suffix.lower()
    engine = "xlrd" if suffix == ".xls" else "openpyxl"
    try:
        frames: Dict[str, pd.DataFrame] = pd.read_excel(
            path,
            sheet_name=None,
            header=None,
            dtype=object,
            keep_default_na=False,
            engine=engine,
        )
    except Exception as e:
        raise RosterRejectedError(
            "The roster file could not be read as a spreadsheet",
            details={"reason": f"{type(e).__name__}: {e}"},
        ) from e

    return OrderedDict((str(name), frame.values.tolist()) for name, frame in frames.items())


def parse_workbook(path, max_rows: Optional[int] = None) -> Tuple[List[SheetParseResult], List[SheetRejection]]:
    """
    Parse every sheet of a roster workbook.

    A rejected sheet never sinks the others; it is reported alongside the
    valid results.
    """
    results = []
    rejections = []
    sheets = read_workbook(path)
    logger.info("Workbook opened", context={"file": Path(path).name, "sheets": list(sheets)})

    for sheet_name, grid in sheets.items():
        result, reason = parse_sheet_detailed(grid, sheet_name, max_rows)
        if result is None:
            logger.warning("Sheet skipped", context={"sheet": sheet_name, "reason": reason})
            rejections.append(SheetRejection(sheet_name=sheet_name, reason=reason))
        else:
            results.append(result)

    return results, rejections
