"""Comparison report: collected results, text rendering and JSON export."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from schemas.acceptance import AcceptanceStandard

from .compare import ItemComparison, KeyMismatch, RowComparisonResult
from .extent import ExtentMismatch
from .verdict import MismatchCounts, Verdict, evaluate_verdict

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"
REPORT_TEMPLATE = "compare-report.txt.j2"


@dataclass
class CompareReport:
    """
    Full result of comparing a test table against a reference table.

    Listings are stored uncapped; ``cap`` only limits what the text
    rendering shows per category.
    """
    reference_path: str
    test_path: str
    standard_name: str
    verdict: Verdict
    template_name: str = ""
    reference_count: int = 0
    test_count: int = 0
    missing_keys: List[str] = field(default_factory=list)
    extra_keys: List[str] = field(default_factory=list)
    ok_ng_mismatches: List[KeyMismatch] = field(default_factory=list)
    defect_type_mismatches: List[KeyMismatch] = field(default_factory=list)
    item_mismatches: List[ItemComparison] = field(default_factory=list)
    extent_mismatches: List[ExtentMismatch] = field(default_factory=list)
    default_tolerance_abs: float = 0.0
    default_tolerance_ratio: float = 0.0
    override_count: int = 0
    cap: int = 50

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    @property
    def counts(self) -> MismatchCounts:
        return MismatchCounts(
            missing=len(self.missing_keys),
            extra=len(self.extra_keys),
            ok_ng=len(self.ok_ng_mismatches),
            defect_type=len(self.defect_type_mismatches),
            extent=len(self.extent_mismatches),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the report to a JSON-serializable dictionary."""
        return {
            "reference_path": self.reference_path,
            "test_path": self.test_path,
            "template_name": self.template_name,
            "standard_name": self.standard_name,
            "reference_count": self.reference_count,
            "test_count": self.test_count,
            "counts": self.counts.to_dict(),
            "item_mismatch_count": len(self.item_mismatches),
            "missing_keys": list(self.missing_keys),
            "extra_keys": list(self.extra_keys),
            "ok_ng_mismatches": [m.to_dict() for m in self.ok_ng_mismatches],
            "defect_type_mismatches": [m.to_dict() for m in self.defect_type_mismatches],
            "item_mismatches": [m.to_dict() for m in self.item_mismatches],
            "extent_mismatches": [m.to_dict() for m in self.extent_mismatches],
            "default_tolerance_abs": self.default_tolerance_abs,
            "default_tolerance_ratio": self.default_tolerance_ratio,
            "override_count": self.override_count,
            "verdict": self.verdict.to_dict(),
        }


def build_report(
    rows: RowComparisonResult,
    extents: List[ExtentMismatch],
    standard: AcceptanceStandard,
    reference_path: Any,
    test_path: Any,
    template_name: str = "",
    cap: int = 50,
) -> CompareReport:
    """Assemble a report from comparator output and evaluate its verdict."""
    counts = MismatchCounts(
        missing=len(rows.missing_keys),
        extra=len(rows.extra_keys),
        ok_ng=len(rows.ok_ng_mismatches),
        defect_type=len(rows.defect_type_mismatches),
        extent=len(extents),
    )
    return CompareReport(
        reference_path=str(reference_path),
        test_path=str(test_path),
        template_name=template_name or "",
        standard_name=standard.name,
        verdict=evaluate_verdict(counts, standard),
        reference_count=rows.reference_count,
        test_count=rows.test_count,
        missing_keys=list(rows.missing_keys),
        extra_keys=list(rows.extra_keys),
        ok_ng_mismatches=list(rows.ok_ng_mismatches),
        defect_type_mismatches=list(rows.defect_type_mismatches),
        item_mismatches=list(rows.item_mismatches),
        extent_mismatches=list(extents),
        default_tolerance_abs=standard.default_tolerance_abs,
        default_tolerance_ratio=standard.default_tolerance_ratio,
        override_count=len(standard.item_tolerances),
        cap=cap,
    )


def _listing(lines: List[str], cap: int) -> Dict[str, Any]:
    return {"lines": lines[:cap], "omitted": max(0, len(lines) - cap), "count": len(lines)}


def render_report(report: CompareReport, template_dir: Optional[Path] = None) -> str:
    """
    Render the report as plain text.

    Args:
        report: Report to render
        template_dir: Directory containing the Jinja2 template.
                      Defaults to the templates directory in this package.

    Returns:
        Report text ending with the ``Verdict: PASS`` / ``Verdict: FAIL`` line
    """
    if template_dir is None:
        template_dir = DEFAULT_TEMPLATE_DIR

    env = Environment(
        loader=FileSystemLoader(template_dir),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )

    cap = report.cap
    template = env.get_template(REPORT_TEMPLATE)
    return template.render(
        report=report,
        counts=report.counts,
        missing=_listing(report.missing_keys, cap),
        extra=_listing(report.extra_keys, cap),
        ok_ng=_listing([m.to_line() for m in report.ok_ng_mismatches], cap),
        defect_type=_listing([m.to_line() for m in report.defect_type_mismatches], cap),
        items=_listing([m.to_line() for m in report.item_mismatches], cap),
        extent=_listing([m.to_line() for m in report.extent_mismatches], cap),
        cap=cap,
    )
