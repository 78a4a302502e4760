"""
Bulk import of historical spreadsheet data: members, accounts,
transactions and staff.
"""

from .parsing import PasteGrid, parse_rows, split_row
from .schema import ImportKind, normalize_header, resolve_field
from .pipeline import CommitReport, ImportPipeline, ImportPreview, RowIssue, Severity

__all__ = [
    "CommitReport",
    "ImportKind",
    "ImportPipeline",
    "ImportPreview",
    "PasteGrid",
    "RowIssue",
    "Severity",
    "normalize_header",
    "parse_rows",
    "resolve_field",
    "split_row",
]
