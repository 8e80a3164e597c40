"""Comparison entry points: two table paths plus a standard in, report out."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from schemas.acceptance import AcceptanceStandard

from .compare import compare_rows
from .errors import MissingBaselineFile, TableNotFoundError
from .extent import compare_extents
from .report import CompareReport, build_report, render_report
from .settings import EngineSettings, load_settings
from .standards import StandardStore
from .table import MeasurementTable, read_table

logger = logging.getLogger(__name__)


@dataclass
class ComparisonOutcome:
    report: CompareReport
    text: str
    passed: bool


def compare_loaded(
    reference: MeasurementTable,
    test: MeasurementTable,
    standard: AcceptanceStandard,
    settings: Optional[EngineSettings] = None,
    template_name: str = "",
) -> ComparisonOutcome:
    """Compare two parsed tables under a standard."""
    settings = settings or load_settings()
    ignored = settings.ignored_set()

    rows = compare_rows(reference, test, standard, ignored)
    extents = compare_extents(reference, test, standard, ignored)
    report = build_report(
        rows,
        extents,
        standard,
        reference_path=reference.source or "",
        test_path=test.source or "",
        template_name=template_name,
        cap=settings.report_cap,
    )

    counts = report.counts
    logger.info(
        f"Compared {report.reference_count} reference rows with {report.test_count} test rows: "
        f"missing={counts.missing} extra={counts.extra} ok_ng={counts.ok_ng} "
        f"defect_type={counts.defect_type} extent={counts.extent} "
        f"items={len(report.item_mismatches)} -> {report.verdict.label}"
    )
    return ComparisonOutcome(report=report, text=render_report(report), passed=report.passed)


def compare_tables(
    reference_path: Union[str, Path],
    test_path: Union[str, Path],
    standard: AcceptanceStandard,
    settings: Optional[EngineSettings] = None,
    template_name: str = "",
) -> ComparisonOutcome:
    """
    Read both tables and compare them.

    Raises:
        MissingBaselineFile: the reference table does not exist
        TableNotFoundError: the test table does not exist
        PersistenceFailure: a table exists but cannot be read
    """
    settings = settings or load_settings()
    reference_path = Path(reference_path)
    test_path = Path(test_path)

    if not reference_path.is_file():
        raise MissingBaselineFile(reference_path)
    if not test_path.is_file():
        raise TableNotFoundError(test_path)

    reference = read_table(reference_path, settings)
    test = read_table(test_path, settings)
    return compare_loaded(reference, test, standard, settings, template_name)


def resolve_standard(store: StandardStore, standard_name: Optional[str] = None, template_name: str = "") -> AcceptanceStandard:
    """An explicit name wins; otherwise the standard bound to ``template_name``.

    Raises:
        StandardNotFoundError: ``standard_name`` is not in the store
    """
    if standard_name:
        return store.get(standard_name)
    return store.resolve_active(template_name)


def compare_with_store(
    reference_path: Union[str, Path],
    test_path: Union[str, Path],
    store: StandardStore,
    standard_name: Optional[str] = None,
    template_name: str = "",
    settings: Optional[EngineSettings] = None,
) -> ComparisonOutcome:
    """
    Compare using a standard from the store.

    An explicit ``standard_name`` wins; otherwise the standard bound to
    ``template_name`` is used.

    Raises:
        StandardNotFoundError: ``standard_name`` is not in the store
    """
    standard = resolve_standard(store, standard_name, template_name)
    return compare_tables(reference_path, test_path, standard, settings, template_name)
