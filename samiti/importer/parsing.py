"""
Tabular text parsing for spreadsheet imports.

Handles text pasted from a spreadsheet (tab separated) or a CSV file:
delimiter detection, quote-aware reading through the ``csv`` module and the
paste grid that overlays header-less data onto a fixed column layout.
"""

import csv
import io
from typing import Dict, List, Optional, Sequence, Tuple


def detect_delimiter(first_line: str) -> str:
    """Tab if the first line contains one, otherwise comma"""
    return "\t" if "\t" in first_line else ","


def _read(text: str, delimiter: str) -> List[List[str]]:
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, skipinitialspace=True)
    return [[value.strip() for value in row] for row in reader]


def split_row(line: str, delimiter: str = ",") -> List[str]:
    """
    Split one line into trimmed fields
    
    A delimiter inside double quotes is kept as text and a doubled quote
    inside a quoted field is a literal quote.
    """
    rows = _read(line, delimiter)
    return rows[0] if rows else [""]


def parse_rows(text: str) -> List[List[str]]:
    """
    Non-blank rows of the text
    
    Quoted cells may span lines, as spreadsheets emit for multi-line
    addresses.
    """
    if not text.strip():
        return []
    delimiter = detect_delimiter(text.lstrip("\r\n").split("\n", 1)[0])
    rows = _read(text, delimiter)
    if delimiter == ",":
        # ",," is an empty CSV record, not a blank line
        return [row for row in rows if len(row) > 1 or (row and row[0])]
    return [row for row in rows if any(row)]


class PasteGrid:
    """
    Editable grid with a fixed column layout
    
    Pasted values land relative to the focused cell, overwriting what is
    there; the grid grows downwards when the paste runs past the last row.
    Values pasted beyond the last column are dropped.
    """
    
    def __init__(self, columns: Sequence[str], rows: int = 0):
        self.columns = list(columns)
        self.rows: List[List[str]] = [self._blank_row() for _ in range(rows)]
        self.focus_row = 0
        self.focus_col = 0
    
    def _blank_row(self) -> List[str]:
        return [""] * len(self.columns)
    
    def focus(self, row: int, col: int) -> None:
        if row < 0 or col < 0 or col >= len(self.columns):
            raise ValueError(f"Cell ({row}, {col}) is outside the grid")
        self.focus_row = row
        self.focus_col = col
    
    def set_cell(self, row: int, col: int, value: str) -> None:
        while len(self.rows) <= row:
            self.rows.append(self._blank_row())
        self.rows[row][col] = value
    
    def paste(self, text: str) -> int:
        """
        Overlay tabular text at the focused cell
        
        Returns:
            Number of grid rows touched
        """
        parsed = parse_rows(text)
        for offset, values in enumerate(parsed):
            row = self.focus_row + offset
            for col_offset, value in enumerate(values):
                col = self.focus_col + col_offset
                if col >= len(self.columns):
                    break
                self.set_cell(row, col, value)
        return len(parsed)
    
    def records(self) -> List[Tuple[int, Dict[str, str]]]:
        """Non-blank rows as (1-based row number, column -> value) pairs"""
        return [
            (index + 1, dict(zip(self.columns, row)))
            for index, row in enumerate(self.rows)
            if any(value.strip() for value in row)
        ]
    
    def cell(self, row: int, col: int) -> Optional[str]:
        if row >= len(self.rows):
            return None
        return self.rows[row][col]
