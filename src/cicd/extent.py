"""Per-group extent (max - min spread) comparison."""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from schemas.acceptance import AcceptanceStandard

from .compare import DEFAULT_IGNORED_ITEMS, union_item_names
from .table import MeasurementRow, MeasurementTable, item_sort_key
from .tolerance import compute_threshold, try_parse_number

logger = logging.getLogger(__name__)


@dataclass
class ExtentMismatch:
    """An item whose spread inside a group drifted beyond tolerance."""
    group_name: str
    item_name: str
    reference_extent: float
    test_extent: float
    diff: float
    threshold: float

    def to_line(self) -> str:
        return (
            f"{self.group_name},{self.item_name},"
            f"refExtent={self.reference_extent:.4f},testExtent={self.test_extent:.4f},"
            f"diff={self.diff:.4f},threshold={self.threshold:.4f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def item_extent(rows: List[MeasurementRow], item_name: str) -> Optional[float]:
    """max - min over the parseable values of an item, None when there are none."""
    numbers = [n for n in (try_parse_number(row.get(item_name)) for row in rows) if n is not None]
    if not numbers:
        return None
    return max(numbers) - min(numbers)


def compare_extents(
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    ignored_items: FrozenSet[str] = DEFAULT_IGNORED_ITEMS,
) -> List[ExtentMismatch]:
    """Compare each group's per-item spread between reference and test.

    Only groups present in both tables are considered. Rows are taken from
    the key index, so blank keys are excluded and duplicate keys resolved.
    """
    reference_groups = reference.by_group()
    test_groups = test.by_group()
    shared = [g for g in reference_groups if g in test_groups]
    shared.sort(key=lambda g: (g, reference_groups[g][0].group_name))

    mismatches: List[ExtentMismatch] = []
    for folded in shared:
        reference_rows = reference_groups[folded]
        test_rows = test_groups[folded]
        group_name = reference_rows[0].group_name

        for item_name in union_item_names(reference_rows + test_rows, ignored_items):
            reference_extent = item_extent(reference_rows, item_name)
            test_extent = item_extent(test_rows, item_name)
            if reference_extent is None or test_extent is None:
                continue

            diff = abs(test_extent - reference_extent)
            threshold = compute_threshold(reference_extent, standard.tolerance_for(item_name))
            if diff > threshold:
                mismatches.append(ExtentMismatch(
                    group_name=group_name,
                    item_name=item_name,
                    reference_extent=reference_extent,
                    test_extent=test_extent,
                    diff=diff,
                    threshold=threshold,
                ))

    logger.debug(f"Extent check over {len(shared)} shared groups: {len(mismatches)} mismatches")
    return mismatches
