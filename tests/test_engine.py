"""Tests for the comparison entry points."""
import pytest

from cicd.engine import compare_loaded, compare_tables, compare_with_store
from cicd.errors import MissingBaselineFile, StandardNotFoundError, TableNotFoundError
from cicd.standards import StandardStore
from cicd.table import write_table
from conftest import make_row, make_table
from schemas.acceptance import AcceptanceStandard


@pytest.fixture
def table_paths(tmp_path, reference_rows, settings):
    drifted = list(reference_rows)
    drifted[1] = make_row("G1", "2", True, temp="10.80", width="5.1", color="red")
    reference = write_table(reference_rows, tmp_path / "reference.csv", settings)
    test = write_table(drifted, tmp_path / "test.csv", settings)
    return reference, test


class TestCompareLoaded:
    def test_identical_tables_pass(self, reference_rows, default_standard, settings):
        table = make_table(*reference_rows)
        outcome = compare_loaded(table, table, default_standard, settings)
        assert outcome.passed
        assert outcome.text.rstrip().endswith("Verdict: PASS")

    def test_ignored_items_from_settings(self, default_standard, settings):
        settings.ignored_items = ["stamp"]
        reference = make_table(make_row("G1", "1", stamp="a"))
        test = make_table(make_row("G1", "1", stamp="b"))
        assert compare_loaded(reference, test, default_standard, settings).report.item_mismatches == []


class TestCompareTables:
    def test_missing_reference(self, tmp_path, table_paths, default_standard):
        _, test = table_paths
        with pytest.raises(MissingBaselineFile) as exc_info:
            compare_tables(tmp_path / "absent.csv", test, default_standard)
        assert exc_info.value.path == tmp_path / "absent.csv"

    def test_missing_test(self, tmp_path, table_paths, default_standard):
        reference, _ = table_paths
        with pytest.raises(TableNotFoundError) as exc_info:
            compare_tables(reference, tmp_path / "absent.csv", default_standard)
        assert not isinstance(exc_info.value, MissingBaselineFile)

    def test_extent_drift_fails_default(self, table_paths, default_standard, settings):
        outcome = compare_tables(*table_paths, default_standard, settings)
        assert not outcome.passed
        assert outcome.report.counts.extent == 1
        assert outcome.report.reference_path.endswith("reference.csv")

    def test_extent_allowance_passes(self, table_paths, settings):
        standard = AcceptanceStandard(name="loose", allowed_extent_mismatch=1)
        outcome = compare_tables(*table_paths, standard, settings)
        assert outcome.passed
        assert len(outcome.report.item_mismatches) == 1


class TestCompareWithStore:
    def test_uses_bound_standard(self, tmp_path, table_paths, settings):
        store = StandardStore(tmp_path / "standards.json")
        store.upsert(AcceptanceStandard(name="loose", default_tolerance_abs=1.0))
        store.bind("board", "loose")
        outcome = compare_with_store(*table_paths, store, template_name="board", settings=settings)
        assert outcome.passed
        assert outcome.report.standard_name == "loose"
        assert outcome.report.template_name == "board"

    def test_unbound_template_uses_default(self, tmp_path, table_paths, settings):
        store = StandardStore(tmp_path / "standards.json")
        outcome = compare_with_store(*table_paths, store, template_name="other", settings=settings)
        assert outcome.report.standard_name == "default"
        assert not outcome.passed

    def test_explicit_standard_wins(self, tmp_path, table_paths, settings):
        store = StandardStore(tmp_path / "standards.json")
        store.create("loose")
        store.set_default_tolerance("loose", 1.0, 0.0)
        outcome = compare_with_store(*table_paths, store, standard_name="LOOSE", settings=settings)
        assert outcome.report.standard_name == "loose"

    def test_unknown_standard(self, tmp_path, table_paths):
        store = StandardStore(tmp_path / "standards.json")
        with pytest.raises(StandardNotFoundError):
            compare_with_store(*table_paths, store, standard_name="ghost")
