"""Sequential capture of detection results into a measurement table.

The detection pipeline is an external collaborator reached only through
:class:`DetectionSource`. Samples are processed one at a time and the table
is written once, after every sample has a result, so an aborted capture
leaves no file behind.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Protocol, Union

from schemas.measurement import DetectionResult

from .settings import EngineSettings
from .table import rows_from_results, write_table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleRef:
    """Identity of one sample to run plus whatever the pipeline needs to load it."""
    group_name: str
    sample_number: str
    payload: Any = None


class DetectionSource(Protocol):
    """Detection pipeline boundary."""

    def produce_result(self, sample: SampleRef) -> DetectionResult:
        """Run detection for one sample and block until its result is ready."""
        ...


ResultCallback = Callable[[int, DetectionResult], None]


def capture(
    samples: Iterable[SampleRef],
    source: DetectionSource,
    on_result: Optional[ResultCallback] = None,
) -> List[DetectionResult]:
    """
    Run every sample through the source, strictly one after another.

    Args:
        samples: Samples in capture order
        source: Detection pipeline
        on_result: Called with (index, result) after each sample completes

    Returns:
        Results in sample order

    Exceptions from the source or the callback abort the capture.
    """
    results: List[DetectionResult] = []
    for index, sample in enumerate(samples):
        result = source.produce_result(sample)
        results.append(result)
        logger.debug(f"Captured {sample.group_name}#{sample.sample_number}: {result.result.value}")
        if on_result is not None:
            on_result(index, result)
    logger.info(f"Captured {len(results)} samples")
    return results


def capture_to_table(
    samples: Iterable[SampleRef],
    source: DetectionSource,
    path: Union[str, Path],
    on_result: Optional[ResultCallback] = None,
    settings: Optional[EngineSettings] = None,
) -> List[DetectionResult]:
    """Capture every sample, then write the table in one atomic step."""
    results = capture(samples, source, on_result)
    write_table(rows_from_results(results, settings), path, settings)
    return results


class ItemLimit(NamedTuple):
    """Spec limits reported for an item, kept as raw text."""
    item_name: str
    lower_limit: str = ""
    upper_limit: str = ""

    @property
    def has_any_limit(self) -> bool:
        return bool(self.lower_limit.strip() or self.upper_limit.strip())


def build_item_limit_map(results: Iterable[DetectionResult]) -> Dict[str, ItemLimit]:
    """
    Collect item limits from detection results.

    Keyed by casefolded item name. The first occurrence that carries a
    limit wins; items never reported with limits are left out.
    """
    limits: Dict[str, ItemLimit] = {}
    for result in results:
        for item in result.items:
            name = (item.name or "").strip()
            if not name or name.casefold() in limits:
                continue
            limit = ItemLimit(name, item.lower_limit or "", item.upper_limit or "")
            if limit.has_any_limit:
                limits[name.casefold()] = limit
    return limits
