"""Tests for RunStore and atomic writes."""
import json
from datetime import datetime

import pytest

from cicd.engine import compare_loaded
from cicd.errors import PersistenceFailure
from cicd.persistence import RunStore, atomic_write_text, sanitize_name
from cicd.table import read_table
from conftest import make_row, make_table


@pytest.fixture
def store(tmp_path, settings):
    return RunStore(tmp_path / "runs", settings)


class TestSanitizeName:
    def test_replaces_reserved_characters(self):
        assert sanitize_name('a/b:c*?"<>|') == "a_b_c______"

    def test_blank(self):
        assert sanitize_name("  ") == "_"


class TestAtomicWriteText:
    def test_creates_parents(self, tmp_path):
        path = atomic_write_text(tmp_path / "a" / "b.txt", "hello")
        assert path.read_text(encoding="utf-8") == "hello"

    def test_no_temp_files_left(self, tmp_path):
        atomic_write_text(tmp_path / "b.txt", "one")
        atomic_write_text(tmp_path / "b.txt", "two")
        assert [p.name for p in tmp_path.iterdir()] == ["b.txt"]
        assert (tmp_path / "b.txt").read_text(encoding="utf-8") == "two"

    def test_unwritable_target(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(PersistenceFailure):
            atomic_write_text(blocker / "child.txt", "x")


class TestLayout:
    def test_paths(self, store):
        root = store.root
        assert store.reference_path("T", "set1") == root / "T" / "cicd" / "set1" / "reference.csv"
        assert store.get_tests_dir("T", "set1") == root / "T" / "cicd" / "tests" / "set1"
        assert store.history_path("T", "set1").name == "history.json"

    def test_resolve_reference_for_test(self, store):
        test_path = store.test_table_path("T", "set1", "20240101_120000")
        assert store.resolve_reference_for_test(test_path) == ("T", store.reference_path("T", "set1"))

    def test_resolve_reference_outside_layout(self, store, tmp_path):
        assert store.resolve_reference_for_test(tmp_path / "loose.csv") is None


class TestReferences:
    def test_save_and_read_reference(self, store, reference_rows, settings):
        path = store.save_reference("T", "set1", reference_rows)
        assert len(read_table(path, settings)) == 3

    def test_save_reference_refuses_overwrite(self, store, reference_rows):
        store.save_reference("T", "set1", reference_rows)
        with pytest.raises(FileExistsError):
            store.save_reference("T", "set1", reference_rows)

    def test_save_reference_overwrite(self, store, reference_rows, settings):
        store.save_reference("T", "set1", reference_rows)
        path = store.save_reference("T", "set1", reference_rows[:1], overwrite=True)
        assert len(read_table(path, settings)) == 1

    def test_list_image_sets(self, store, reference_rows):
        store.save_reference("T", "b-set", reference_rows)
        store.save_reference("T", "A-set", reference_rows)
        store.save_test_table("T", "c-set", reference_rows, run_id="r1")
        assert store.list_image_sets("T") == ["A-set", "b-set"]

    def test_list_image_sets_unknown_template(self, store):
        assert store.list_image_sets("nope") == []


class TestTestRuns:
    def test_new_run_id_suffix(self, store, reference_rows):
        now = datetime(2024, 1, 1, 12, 0, 0)
        first = store.new_run_id("T", "set1", now)
        assert first == "20240101_120000"
        store.save_test_table("T", "set1", reference_rows, run_id=first)
        assert store.new_run_id("T", "set1", now) == "20240101_120000_1"

    def test_save_test_run_and_history(self, store, reference_rows, default_standard, settings):
        reference = make_table(*reference_rows)
        test = make_table(*reference_rows[:2])
        outcome = compare_loaded(reference, test, default_standard, settings)

        store.save_test_table("T", "set1", test, run_id="r2")
        stored = store.save_test_run("T", "set1", "r2", outcome.report, outcome.text)
        assert not stored.passed
        assert stored.report_path.read_text(encoding="utf-8") == outcome.text
        assert json.loads(stored.json_path.read_text(encoding="utf-8"))["counts"]["missing"] == 1

        store.save_test_table("T", "set1", reference, run_id="r1")
        passing = compare_loaded(reference, reference, default_standard, settings)
        store.save_test_run("T", "set1", "r1", passing.report, passing.text)

        history = store.get_history("T", "set1")
        assert [entry["run_id"] for entry in history] == ["r1", "r2"]
        assert history[0]["passed"] is True
        assert history[1]["counts"]["missing"] == 1
        assert history[1]["standard_name"] == "default"

    def test_history_empty(self, store):
        assert store.get_history("T", "set1") == []

    def test_corrupt_history(self, store):
        path = store.history_path("T", "set1")
        path.parent.mkdir(parents=True)
        path.write_text("[{")
        with pytest.raises(PersistenceFailure):
            store.get_history("T", "set1")

    def test_test_table_round_trip(self, store, settings):
        rows = [make_row("G1", "1", False, "dent", width="1.5")]
        path = store.save_test_table("T", "set1", rows, run_id="r1")
        table = read_table(path, settings)
        assert table.rows[0].defect_type == "dent"
        assert table.rows[0].get("WIDTH") == "1.5"
