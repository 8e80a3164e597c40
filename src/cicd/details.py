"""Drill-down views over a reference/test pair: per sample, per item and a delta matrix."""
import math
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from schemas.acceptance import AcceptanceStandard
from schemas.enums import MismatchReason, RowStatus

from .capture import ItemLimit
from .compare import (
    DEFAULT_IGNORED_ITEMS,
    compare_item_values,
    defect_types_differ,
    normalize_text,
    union_item_names,
)
from .table import MeasurementRow, MeasurementTable, split_key
from .tolerance import compute_threshold, try_parse_number

SAMPLE_MISSING = "sample missing in test"
SAMPLE_ADDED = "sample added in test"
OK_NG_MISMATCH = "OK/NG mismatch"
DEFECT_TYPE_MISMATCH = "defect type mismatch"
OUT_OF_TOLERANCE = "out of tolerance"
NON_NUMERIC_MISMATCH = "value mismatch (non-numeric)"

REASON_TEXT = {
    MismatchReason.OUT_OF_TOLERANCE: OUT_OF_TOLERANCE,
    MismatchReason.TEXT_MISMATCH: NON_NUMERIC_MISMATCH,
    MismatchReason.TEST_NOT_NUMERIC: "test value non-numeric/missing",
    MismatchReason.REFERENCE_NOT_NUMERIC: "reference value non-numeric/missing",
}

STATUS_TEXT = {
    RowStatus.MATCHED: "",
    RowStatus.MISSING: "missing",
    RowStatus.EXTRA: "added",
}

NO_SAMPLE_NUMBER = -(2 ** 31)

Limits = Mapping[str, ItemLimit]


def _fmt(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.4f}"


def _join_reasons(reasons: List[str]) -> str:
    return "; ".join(reasons)


def _result_text(row: Optional[MeasurementRow], absent: str = "") -> str:
    return absent if row is None else row.result.value


def sample_number_sort_key(sample_number: str) -> int:
    """Numeric order for sample numbers; digits are extracted from mixed text."""
    text = (sample_number or "").strip()
    if not text:
        return NO_SAMPLE_NUMBER
    try:
        return int(text)
    except ValueError:
        pass
    digits = re.sub(r"\D", "", text)
    return int(digits) if digits else NO_SAMPLE_NUMBER


def ordered_keys(reference: MeasurementTable, test: MeasurementTable) -> List[str]:
    """Union of sample keys ordered by group, numeric sample number, then key."""
    keys: Dict[str, str] = {}
    for table in (reference, test):
        for row in table.by_key().values():
            keys.setdefault(row.key.casefold(), row.key)

    def sort_key(key: str) -> Tuple[str, int, str]:
        group_name, sample_number = split_key(key)
        return group_name.casefold(), sample_number_sort_key(sample_number), key.casefold()

    return sorted(keys.values(), key=sort_key)


def detail_item_names(
    reference: MeasurementTable,
    test: MeasurementTable,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> List[str]:
    return union_item_names(list(reference.rows) + list(test.rows), ignored_items)


def format_delta(delta: float) -> str:
    """Signed delta with four significant integer+fraction digits, trailing zeros cut."""
    if math.isnan(delta) or math.isinf(delta):
        return ""
    magnitude = abs(delta)
    integer_digits = 1 if magnitude < 1.0 else max(1, int(math.floor(math.log10(magnitude))) + 1)
    decimals = min(max(4 - integer_digits, 0), 6)
    text = f"{delta:.{decimals}f}"
    if decimals > 0:
        text = text.rstrip("0").rstrip(".")
    return text


def _limit_for(limits: Optional[Limits], item_name: str) -> ItemLimit:
    if limits:
        limit = limits.get(item_name.casefold())
        if limit is not None:
            return limit
    return ItemLimit(item_name)


@dataclass
class SampleDetailRow:
    """One line of the sample view: presence, result, defect type or an item."""
    item_name: str
    reference_value: str = ""
    test_value: str = ""
    diff: str = ""
    threshold: str = ""
    lower_limit: str = ""
    upper_limit: str = ""
    reason: str = ""
    is_mismatch: bool = False


def sample_details(
    key: str,
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    limits: Optional[Limits] = None,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> List[SampleDetailRow]:
    """Side-by-side comparison of one sample across both tables."""
    reference_row = reference.get(key)
    test_row = test.get(key)
    rows: List[SampleDetailRow] = []
    if reference_row is None and test_row is None:
        return rows

    if reference_row is None or test_row is None:
        rows.append(SampleDetailRow(
            item_name="presence",
            reference_value="present" if reference_row is not None else "absent",
            test_value="present" if test_row is not None else "absent",
            reason=SAMPLE_MISSING if test_row is None else SAMPLE_ADDED,
            is_mismatch=True,
        ))

    both = reference_row is not None and test_row is not None
    ok_ng_mismatch = both and reference_row.is_ok != test_row.is_ok
    rows.append(SampleDetailRow(
        item_name="result",
        reference_value=_result_text(reference_row),
        test_value=_result_text(test_row),
        reason=OK_NG_MISMATCH if ok_ng_mismatch else "",
        is_mismatch=ok_ng_mismatch,
    ))

    defect_mismatch = both and defect_types_differ(reference_row, test_row)
    rows.append(SampleDetailRow(
        item_name="defect type",
        reference_value=reference_row.defect_type if reference_row is not None else "",
        test_value=test_row.defect_type if test_row is not None else "",
        reason=DEFECT_TYPE_MISMATCH if defect_mismatch else "",
        is_mismatch=defect_mismatch,
    ))

    for item_name in detail_item_names(reference, test, ignored_items):
        comparison = compare_item_values(
            item_name,
            reference_row.get(item_name) if reference_row is not None else "",
            test_row.get(item_name) if test_row is not None else "",
            standard.tolerance_for(item_name),
        )
        limit = _limit_for(limits, item_name)
        rows.append(SampleDetailRow(
            item_name=item_name,
            reference_value=comparison.reference_value,
            test_value=comparison.test_value,
            diff=_fmt(comparison.diff),
            threshold=_fmt(comparison.threshold),
            lower_limit=limit.lower_limit,
            upper_limit=limit.upper_limit,
            reason=REASON_TEXT.get(comparison.reason, ""),
            is_mismatch=not comparison.matches,
        ))

    return rows


@dataclass
class ItemDetailRow:
    """One sample's view of a single item."""
    key: str
    group_name: str
    sample_number: str
    reference_result: str = "--"
    test_result: str = "--"
    reference_defect_type: str = ""
    test_defect_type: str = ""
    reference_value: str = ""
    test_value: str = ""
    diff: str = ""
    threshold: str = ""
    lower_limit: str = ""
    upper_limit: str = ""
    reason: str = ""
    is_mismatch: bool = False


def item_details(
    item_name: str,
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    limits: Optional[Limits] = None,
) -> List[ItemDetailRow]:
    """One row per sample key for a single item, with every reason that applies."""
    limit = _limit_for(limits, item_name)
    tolerance = standard.tolerance_for(item_name)
    rows: List[ItemDetailRow] = []
    reference_index = reference.by_key()
    test_index = test.by_key()

    for key in ordered_keys(reference, test):
        reference_row = reference_index.get(key.casefold())
        test_row = test_index.get(key.casefold())
        source = reference_row or test_row
        row = ItemDetailRow(
            key=key,
            group_name=source.group_name,
            sample_number=source.sample_number,
            reference_result=_result_text(reference_row, "--"),
            test_result=_result_text(test_row, "--"),
            reference_defect_type=reference_row.defect_type if reference_row is not None else "",
            test_defect_type=test_row.defect_type if test_row is not None else "",
            reference_value=reference_row.get(item_name) if reference_row is not None else "",
            test_value=test_row.get(item_name) if test_row is not None else "",
            lower_limit=limit.lower_limit,
            upper_limit=limit.upper_limit,
        )

        if reference_row is None or test_row is None:
            row.reason = SAMPLE_MISSING if test_row is None else SAMPLE_ADDED
            row.is_mismatch = True
            rows.append(row)
            continue

        reasons: List[str] = []
        if reference_row.is_ok != test_row.is_ok:
            reasons.append(OK_NG_MISMATCH)
        if defect_types_differ(reference_row, test_row):
            reasons.append(DEFECT_TYPE_MISMATCH)

        reference_number = try_parse_number(row.reference_value)
        test_number = try_parse_number(row.test_value)
        if reference_number is not None and test_number is not None:
            diff = abs(test_number - reference_number)
            threshold = compute_threshold(reference_number, tolerance)
            row.diff = _fmt(diff)
            row.threshold = _fmt(threshold)
            if diff > threshold:
                reasons.append(OUT_OF_TOLERANCE)
        elif normalize_text(row.reference_value) != normalize_text(row.test_value):
            reasons.append(NON_NUMERIC_MISMATCH)

        row.reason = _join_reasons(reasons)
        row.is_mismatch = bool(reasons)
        rows.append(row)

    return rows


@dataclass
class MatrixCell:
    display: str = ""
    is_mismatch: bool = False


@dataclass
class MatrixRow:
    key: str
    group_name: str
    sample_number: str
    status: str = ""
    cells: Dict[str, MatrixCell] = field(default_factory=dict)

    @property
    def has_mismatch(self) -> bool:
        return bool(self.status) or any(cell.is_mismatch for cell in self.cells.values())


@dataclass
class DifferenceMatrix:
    item_names: List[str]
    rows: List[MatrixRow]


def difference_matrix(
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> DifferenceMatrix:
    """
    Samples x items grid of test-minus-reference deltas.

    Numeric cells show the signed delta and are flagged beyond tolerance;
    differing non-numeric cells show ``!=``. Samples present on one side
    only carry a status and empty cells.
    """
    item_names = detail_item_names(reference, test, ignored_items)
    rows: List[MatrixRow] = []
    reference_index = reference.by_key()
    test_index = test.by_key()

    for key in ordered_keys(reference, test):
        reference_row = reference_index.get(key.casefold())
        test_row = test_index.get(key.casefold())
        source = reference_row or test_row
        if reference_row is None:
            status = RowStatus.EXTRA
        elif test_row is None:
            status = RowStatus.MISSING
        else:
            status = RowStatus.MATCHED
        row = MatrixRow(
            key=key,
            group_name=source.group_name,
            sample_number=source.sample_number,
            status=STATUS_TEXT[status],
        )

        for item_name in item_names:
            cell = MatrixCell()
            row.cells[item_name] = cell
            if status is not RowStatus.MATCHED:
                continue

            reference_raw = reference_row.get(item_name)
            test_raw = test_row.get(item_name)
            reference_number = try_parse_number(reference_raw)
            test_number = try_parse_number(test_raw)
            if reference_number is not None and test_number is not None:
                delta = test_number - reference_number
                cell.display = format_delta(delta)
                cell.is_mismatch = abs(delta) > compute_threshold(reference_number, standard.tolerance_for(item_name))
            elif normalize_text(reference_raw) != normalize_text(test_raw):
                cell.display = "!="
                cell.is_mismatch = True

        rows.append(row)

    return DifferenceMatrix(item_names=item_names, rows=rows)
