"""Tests for report assembly and rendering."""
import json

import pytest

from cicd.compare import compare_rows
from cicd.extent import compare_extents
from cicd.report import build_report, render_report
from conftest import make_row, make_table
from schemas.acceptance import AcceptanceStandard, ItemToleranceOverride


def _report(reference, test, standard, cap=50):
    rows = compare_rows(reference, test, standard)
    extents = compare_extents(reference, test, standard)
    return build_report(rows, extents, standard, "ref.csv", "test.csv", template_name="board-a", cap=cap)


@pytest.fixture
def failing_report():
    standard = AcceptanceStandard(
        name="strict",
        default_tolerance_abs=0.1,
        item_tolerances=[ItemToleranceOverride(item_name="width", tolerance_abs=1.0)],
    )
    reference = make_table(
        make_row("G1", "1", True, v="1.0"),
        make_row("G1", "2", True, v="1.2"),
        make_row("G1", "3", False, "scratch", v="1.1"),
        make_row("G2", "1", True, v="9"),
    )
    test = make_table(
        make_row("G1", "1", False, "dent", v="1.0"),
        make_row("G1", "2", True, v="1.6"),
        make_row("G1", "3", False, "crack", v="1.1"),
        make_row("G3", "1", True, v="9"),
    )
    return _report(reference, test, standard)


class TestBuildReport:
    def test_counts(self, failing_report):
        counts = failing_report.counts
        assert counts.missing == 1
        assert counts.extra == 1
        assert counts.ok_ng == 1
        assert counts.defect_type == 1
        assert counts.extent == 1
        assert not failing_report.passed

    def test_rule_summary_values(self, failing_report):
        assert failing_report.standard_name == "strict"
        assert failing_report.override_count == 1
        assert failing_report.default_tolerance_abs == 0.1

    def test_to_dict_is_json_serializable(self, failing_report):
        data = json.loads(json.dumps(failing_report.to_dict()))
        assert data["counts"]["missing"] == 1
        assert data["verdict"]["label"] == "FAIL"
        assert data["missing_keys"] == ["G2#1"]
        assert data["item_mismatches"][0]["reason"] == "out_of_tolerance"


class TestRenderReport:
    def test_sections(self, failing_report):
        text = render_report(failing_report)
        assert "Reference: ref.csv" in text
        assert "Test:      test.csv" in text
        assert "Template:  board-a" in text
        assert "Standard:  strict" in text
        assert "Missing rows: 1" in text
        assert "G2#1" in text
        assert "G3#1" in text
        assert "G1#1,reference=OK,test=NG" in text
        assert "G1#3,reference=scratch,test=crack" in text
        assert "G1,v,refExtent=0.2000,testExtent=0.6000,diff=0.4000,threshold=0.1000" in text
        assert "per-item overrides: 1" in text

    def test_ends_with_verdict(self, failing_report):
        assert render_report(failing_report).rstrip().endswith("Verdict: FAIL")

    def test_passing_report(self, reference_rows, default_standard):
        table = make_table(*reference_rows)
        text = render_report(_report(table, table, default_standard))
        assert text.rstrip().endswith("Verdict: PASS")
        assert "Missing rows: 0" in text
        assert "Extent mismatches: 0" in text

    def test_listing_capped(self, default_standard):
        reference = make_table(*[make_row("G1", str(i)) for i in range(8)])
        test = make_table()
        text = render_report(_report(reference, test, default_standard, cap=3))
        assert "Missing rows: 8" in text
        assert "... 5 more omitted" in text
        assert "G1#0" in text
        assert "G1#7" not in text

    def test_deterministic(self, failing_report):
        assert render_report(failing_report) == render_report(failing_report)

    def test_no_html_escaping(self, default_standard):
        reference = make_table(make_row("G<1>", "1", True))
        test = make_table(make_row("G<1>", "1", False))
        assert "G<1>#1,reference=OK,test=NG" in render_report(_report(reference, test, default_standard))
