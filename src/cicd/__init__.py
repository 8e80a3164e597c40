"""CICD acceptance comparison - compare inspection runs against a reference run."""
from .compare import ItemComparison, KeyMismatch, RowComparisonResult, compare_item_values, compare_rows
from .engine import ComparisonOutcome, compare_loaded, compare_tables, compare_with_store
from .errors import (
    CicdError,
    InvalidStandardMutation,
    MalformedRow,
    MissingBaselineFile,
    PersistenceFailure,
    StandardNotFoundError,
    TableNotFoundError,
    UnparseableNumeric,
)
from .extent import ExtentMismatch, compare_extents
from .persistence import RunStore
from .report import CompareReport, render_report
from .standards import StandardStore
from .table import MeasurementRow, MeasurementTable, read_table, write_table
from .verdict import MismatchCounts, Verdict, evaluate_verdict

__all__ = [
    "CicdError",
    "CompareReport",
    "ComparisonOutcome",
    "ExtentMismatch",
    "InvalidStandardMutation",
    "ItemComparison",
    "KeyMismatch",
    "MalformedRow",
    "MeasurementRow",
    "MeasurementTable",
    "MismatchCounts",
    "MissingBaselineFile",
    "PersistenceFailure",
    "RowComparisonResult",
    "RunStore",
    "StandardNotFoundError",
    "StandardStore",
    "TableNotFoundError",
    "UnparseableNumeric",
    "Verdict",
    "compare_extents",
    "compare_item_values",
    "compare_loaded",
    "compare_rows",
    "compare_tables",
    "compare_with_store",
    "evaluate_verdict",
    "read_table",
    "render_report",
    "write_table",
]
