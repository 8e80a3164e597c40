"""Tests for row-level comparison."""
import pytest

from cicd.compare import (
    KeyMismatch,
    compare_item_values,
    compare_rows,
    normalize_text,
    union_item_names,
)
from conftest import make_row, make_table
from schemas.acceptance import AcceptanceStandard, ItemToleranceOverride, Tolerance
from schemas.enums import MismatchReason


class TestNormalizeText:
    def test_basic_normalization(self):
        assert normalize_text("  Scratch ") == "scratch"

    def test_none_handling(self):
        assert normalize_text(None) == ""


class TestKeyMismatch:
    def test_to_line(self):
        assert KeyMismatch("G1#1", "OK", "NG").to_line() == "G1#1,reference=OK,test=NG"

    def test_to_dict(self):
        assert KeyMismatch("G1#1", "a", "b").to_dict() == {"key": "G1#1", "reference": "a", "test": "b"}


class TestCompareItemValues:
    def test_numeric_within_tolerance(self):
        result = compare_item_values("temp", "10.00", "10.05", Tolerance(0.1, 0.0))
        assert result.matches
        assert result.reason is None
        assert result.diff == pytest.approx(0.05)
        assert result.threshold == pytest.approx(0.1)

    def test_numeric_out_of_tolerance(self):
        result = compare_item_values("temp", "10.00", "10.05", Tolerance(0.01, 0.0))
        assert not result.matches
        assert result.reason == MismatchReason.OUT_OF_TOLERANCE

    def test_text_equal_ignoring_case_and_spaces(self):
        assert compare_item_values("color", " Red", "red ", Tolerance(0, 0)).matches

    def test_text_mismatch(self):
        result = compare_item_values("color", "red", "blue", Tolerance(0, 0))
        assert not result.matches
        assert result.reason == MismatchReason.TEXT_MISMATCH
        assert result.diff is None

    def test_test_became_non_numeric(self):
        result = compare_item_values("temp", "10", "n/a", Tolerance(1, 1))
        assert result.reason == MismatchReason.TEST_NOT_NUMERIC

    def test_reference_non_numeric(self):
        result = compare_item_values("temp", "", "10", Tolerance(1, 1))
        assert result.reason == MismatchReason.REFERENCE_NOT_NUMERIC

    def test_both_empty_match(self):
        assert compare_item_values("temp", "", None, Tolerance(0, 0)).matches

    @pytest.mark.parametrize("raw", ["NaN", "nan"])
    def test_nan_test_value_is_not_numeric(self, raw):
        result = compare_item_values("temp", "10.0", raw, Tolerance(1, 1))
        assert not result.matches
        assert result.reason == MismatchReason.TEST_NOT_NUMERIC

    def test_nan_reference_value_is_not_numeric(self):
        result = compare_item_values("temp", "NaN", "10.0", Tolerance(1, 1))
        assert result.reason == MismatchReason.REFERENCE_NOT_NUMERIC

    def test_nan_on_both_sides_matches_as_text(self):
        assert compare_item_values("temp", "NaN", "nan", Tolerance(0, 0)).matches

    def test_to_line_includes_reason(self):
        result = compare_item_values("temp", "1", "2", Tolerance(0, 0), key="G1#1")
        assert result.to_line() == (
            "G1#1,temp,reference=1,test=2,diff=1.0000,threshold=0.0000,reason=out_of_tolerance"
        )


class TestUnionItemNames:
    def test_union_excludes_ignored(self):
        rows = [make_row(temp="1", timestamp="x"), make_row(Width="2", TEMP="3")]
        assert union_item_names(rows) == ["temp", "Width"]


class TestCompareRows:
    def test_reflexive(self, reference_rows, default_standard):
        table = make_table(*reference_rows)
        result = compare_rows(table, table, default_standard)
        assert result.missing_keys == []
        assert result.extra_keys == []
        assert result.ok_ng_mismatches == []
        assert result.defect_type_mismatches == []
        assert result.item_mismatches == []
        assert result.reference_count == result.test_count == 3

    def test_scenario_a(self):
        standard = AcceptanceStandard(default_tolerance_abs=0.1)
        result = compare_rows(
            make_table(make_row("G1", "1", True, temp="10.00")),
            make_table(make_row("G1", "1", True, temp="10.05")),
            standard,
        )
        assert result.item_mismatches == []
        assert result.ok_ng_mismatches == []

    def test_scenario_b_item_mismatch_only(self):
        standard = AcceptanceStandard(default_tolerance_abs=0.01, default_tolerance_ratio=0.0)
        result = compare_rows(
            make_table(make_row("G1", "1", True, temp="10.00")),
            make_table(make_row("G1", "1", True, temp="10.05")),
            standard,
        )
        assert len(result.item_mismatches) == 1
        assert result.item_mismatches[0].item_name == "temp"
        assert result.item_mismatches[0].key == "G1#1"
        assert result.missing_keys == []
        assert result.extra_keys == []
        assert result.ok_ng_mismatches == []
        assert result.defect_type_mismatches == []

    def test_scenario_c_missing_row(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1"), make_row("G1", "2")),
            make_table(make_row("G1", "1")),
            default_standard,
        )
        assert result.missing_keys == ["G1#2"]
        assert result.extra_keys == []

    def test_reference_only_row_is_only_missing(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", True), make_row("G1", "2", False, "dent")),
            make_table(make_row("G1", "1", True)),
            default_standard,
        )
        assert result.missing_keys == ["G1#2"]
        assert result.ok_ng_mismatches == []
        assert result.defect_type_mismatches == []

    def test_extra_row(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1")),
            make_table(make_row("G1", "1"), make_row("G9", "4")),
            default_standard,
        )
        assert result.extra_keys == ["G9#4"]

    def test_keys_match_case_insensitively(self, default_standard):
        result = compare_rows(
            make_table(make_row("Panel", "1")),
            make_table(make_row("PANEL", "1")),
            default_standard,
        )
        assert result.missing_keys == []
        assert result.extra_keys == []

    def test_ok_ng_mismatch_skips_defect_comparison(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", True, "")),
            make_table(make_row("G1", "1", False, "scratch")),
            default_standard,
        )
        assert result.ok_ng_mismatches == [KeyMismatch("G1#1", "OK", "NG")]
        assert result.defect_type_mismatches == []

    def test_defect_type_compared_when_both_ng(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", False, "scratch"), make_row("G1", "2", False, "Dent")),
            make_table(make_row("G1", "1", False, "crack"), make_row("G1", "2", False, "dent")),
            default_standard,
        )
        assert result.defect_type_mismatches == [KeyMismatch("G1#1", "scratch", "crack")]

    def test_defect_type_ignored_when_both_ok(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", True, "scratch")),
            make_table(make_row("G1", "1", True, "crack")),
            default_standard,
        )
        assert result.defect_type_mismatches == []

    def test_missing_item_compares_as_empty(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", temp="10")),
            make_table(make_row("G1", "1")),
            default_standard,
        )
        assert len(result.item_mismatches) == 1
        assert result.item_mismatches[0].reason == MismatchReason.TEST_NOT_NUMERIC

    def test_item_override_applies(self):
        standard = AcceptanceStandard(
            default_tolerance_abs=0.0,
            item_tolerances=[ItemToleranceOverride(item_name="TEMP", tolerance_abs=1.0)],
        )
        result = compare_rows(
            make_table(make_row("G1", "1", temp="10", width="5")),
            make_table(make_row("G1", "1", temp="10.5", width="5.5")),
            standard,
        )
        assert [m.item_name for m in result.item_mismatches] == ["width"]

    def test_padded_item_names_compared(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", **{"temp ": "10.0"})),
            make_table(make_row("G1", "1", **{" TEMP": "99.0"})),
            default_standard,
        )
        assert [(m.item_name, m.reason) for m in result.item_mismatches] == [
            ("temp", MismatchReason.OUT_OF_TOLERANCE),
        ]

    def test_ignored_items_skipped(self, default_standard):
        result = compare_rows(
            make_table(make_row("G1", "1", capturedAt="a")),
            make_table(make_row("G1", "1", capturedAt="b")),
            default_standard,
            ignored_items=frozenset({"capturedat"}),
        )
        assert result.item_mismatches == []

    def test_shared_keys_processed_in_sorted_order(self, default_standard):
        reference = make_table(make_row("G2", "1", True), make_row("G1", "1", True))
        test = make_table(make_row("G2", "1", False), make_row("G1", "1", False))
        result = compare_rows(reference, test, default_standard)
        assert [m.key for m in result.ok_ng_mismatches] == ["G1#1", "G2#1"]

    def test_duplicate_keys_last_write_wins(self, default_standard):
        reference = make_table(make_row("G1", "1", True), make_row("G1", "1", False, "dent"))
        test = make_table(make_row("G1", "1", False, "dent"))
        result = compare_rows(reference, test, default_standard)
        assert result.ok_ng_mismatches == []
        assert result.reference_count == 1
