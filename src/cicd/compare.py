"""Row-level comparison of a reference table against a test table."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from schemas.acceptance import AcceptanceStandard, Tolerance
from schemas.enums import MismatchReason

from .table import MeasurementRow, MeasurementTable, item_sort_key
from .tolerance import compute_threshold, try_parse_number

DEFAULT_IGNORED_ITEMS = frozenset({"timestamp"})


def normalize_text(text: Optional[str]) -> str:
    """Normalize a non-numeric value for comparison."""
    return (text or "").strip().casefold()


@dataclass
class KeyMismatch:
    """A sample whose OK/NG result or defect type differs between runs."""
    key: str
    reference: str
    test: str

    def to_line(self) -> str:
        return f"{self.key},reference={self.reference},test={self.test}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ItemComparison:
    """Comparison of one item value for one sample (match or mismatch)."""
    item_name: str
    reference_value: str
    test_value: str
    matches: bool
    reason: Optional[MismatchReason] = None
    diff: Optional[float] = None
    threshold: Optional[float] = None
    key: str = ""

    def to_line(self) -> str:
        line = f"{self.key},{self.item_name},reference={self.reference_value},test={self.test_value}"
        if self.diff is not None:
            line += f",diff={self.diff:.4f},threshold={self.threshold:.4f}"
        if self.reason is not None:
            line += f",reason={self.reason.value}"
        return line

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["reason"] = self.reason.value if self.reason else None
        return result


@dataclass
class RowComparisonResult:
    """Everything the row comparator found, uncapped."""
    reference_count: int = 0
    test_count: int = 0
    missing_keys: List[str] = field(default_factory=list)
    extra_keys: List[str] = field(default_factory=list)
    ok_ng_mismatches: List[KeyMismatch] = field(default_factory=list)
    defect_type_mismatches: List[KeyMismatch] = field(default_factory=list)
    item_mismatches: List[ItemComparison] = field(default_factory=list)


def compare_item_values(
    item_name: str,
    reference_raw: Optional[str],
    test_raw: Optional[str],
    tolerance: Tolerance,
    key: str = "",
) -> ItemComparison:
    """Compare two raw values of one item.

    Both numeric: mismatch when |test - reference| > max(abs, |reference| * ratio).
    Neither numeric: trimmed, case-insensitive text equality.
    Only one numeric: always a mismatch.
    """
    reference_raw = reference_raw or ""
    test_raw = test_raw or ""
    comparison = ItemComparison(
        item_name=item_name,
        reference_value=reference_raw,
        test_value=test_raw,
        matches=True,
        key=key,
    )

    reference_number = try_parse_number(reference_raw)
    test_number = try_parse_number(test_raw)

    if reference_number is not None and test_number is not None:
        comparison.diff = abs(test_number - reference_number)
        comparison.threshold = compute_threshold(reference_number, tolerance)
        if comparison.diff > comparison.threshold:
            comparison.matches = False
            comparison.reason = MismatchReason.OUT_OF_TOLERANCE
    elif reference_number is None and test_number is None:
        if normalize_text(reference_raw) != normalize_text(test_raw):
            comparison.matches = False
            comparison.reason = MismatchReason.TEXT_MISMATCH
    else:
        comparison.matches = False
        comparison.reason = (
            MismatchReason.TEST_NOT_NUMERIC
            if reference_number is not None
            else MismatchReason.REFERENCE_NOT_NUMERIC
        )

    return comparison


def is_ignored(item_name: str, ignored_items: FrozenSet[str]) -> bool:
    return item_name.strip().casefold() in ignored_items


def union_item_names(rows: Iterable[MeasurementRow], ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS) -> List[str]:
    """Item names present in any of the rows, minus ignored ones, sorted."""
    names: Dict[str, str] = {}
    for row in rows:
        if row is None:
            continue
        for name in row.values:
            if name.strip() and not is_ignored(name, ignored_items):
                names.setdefault(name.casefold(), name)
    return sorted(names.values(), key=item_sort_key)


def compare_items(
    reference_row: MeasurementRow,
    test_row: MeasurementRow,
    standard: AcceptanceStandard,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> List[ItemComparison]:
    """Compare every item of a matched row pair, including matches."""
    key = reference_row.key
    return [
        compare_item_values(
            name,
            reference_row.get(name),
            test_row.get(name),
            standard.tolerance_for(name),
            key=key,
        )
        for name in union_item_names([reference_row, test_row], ignored_items)
    ]


def results_differ(reference_row: MeasurementRow, test_row: MeasurementRow) -> bool:
    return reference_row.is_ok != test_row.is_ok


def defect_types_differ(reference_row: MeasurementRow, test_row: MeasurementRow) -> bool:
    """Defect types only matter when both sides are NG."""
    if reference_row.is_ok or test_row.is_ok:
        return False
    return normalize_text(reference_row.defect_type) != normalize_text(test_row.defect_type)


def sorted_keys(keys: Iterable[str]) -> List[str]:
    return sorted(keys, key=lambda k: (k.casefold(), k))


def compare_rows(
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> RowComparisonResult:
    """Join both tables by sample key and classify every key.

    Returns missing keys (reference only), extra keys (test only), OK/NG
    mismatches, defect-type mismatches (both NG) and per-item value
    mismatches for matched keys. Item mismatches are informational.
    """
    reference_by_key = reference.by_key()
    test_by_key = test.by_key()

    result = RowComparisonResult(
        reference_count=len(reference_by_key),
        test_count=len(test_by_key),
    )
    result.missing_keys = sorted_keys(
        reference_by_key[k].key for k in reference_by_key if k not in test_by_key
    )
    result.extra_keys = sorted_keys(
        test_by_key[k].key for k in test_by_key if k not in reference_by_key
    )

    shared = sorted_keys(reference_by_key[k].key for k in reference_by_key if k in test_by_key)
    for key in shared:
        reference_row = reference_by_key[key.casefold()]
        test_row = test_by_key[key.casefold()]

        if results_differ(reference_row, test_row):
            result.ok_ng_mismatches.append(KeyMismatch(
                key=key,
                reference=reference_row.result.value,
                test=test_row.result.value,
            ))
        elif defect_types_differ(reference_row, test_row):
            result.defect_type_mismatches.append(KeyMismatch(
                key=key,
                reference=reference_row.defect_type or "",
                test=test_row.defect_type or "",
            ))

        result.item_mismatches.extend(
            c for c in compare_items(reference_row, test_row, standard, ignored_items) if not c.matches
        )

    return result
