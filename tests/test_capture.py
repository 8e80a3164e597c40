"""Tests for sequential capture."""
from datetime import datetime

import pytest

from cicd.capture import ItemLimit, SampleRef, build_item_limit_map, capture, capture_to_table
from cicd.table import read_table
from schemas.measurement import DetectionItem, DetectionResult


class FakeSource:
    """Detection source answering from a prepared dict, recording call order."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def produce_result(self, sample):
        self.calls.append(sample.sample_number)
        if sample.sample_number == self.fail_on:
            raise RuntimeError("camera disconnected")
        return DetectionResult(
            group_name=sample.group_name,
            sample_number=sample.sample_number,
            is_ok=sample.sample_number != "2",
            defect_type="" if sample.sample_number != "2" else "scratch",
            items=[DetectionItem(name="width", value=f"{sample.sample_number}.5")],
            tested_at=datetime(2024, 1, 1, 12, 0, 0),
        )


@pytest.fixture
def samples():
    return [SampleRef("G1", str(i)) for i in (1, 2, 3)]


class TestCapture:
    def test_sequential_order(self, samples):
        source = FakeSource()
        results = capture(samples, source)
        assert source.calls == ["1", "2", "3"]
        assert [r.sample_number for r in results] == ["1", "2", "3"]

    def test_callback_per_result(self, samples):
        seen = []
        capture(samples, FakeSource(), on_result=lambda index, result: seen.append((index, result.sample_number)))
        assert seen == [(0, "1"), (1, "2"), (2, "3")]

    def test_source_error_aborts(self, samples):
        source = FakeSource(fail_on="2")
        with pytest.raises(RuntimeError):
            capture(samples, source)
        assert source.calls == ["1", "2"]


class TestCaptureToTable:
    def test_writes_table(self, tmp_path, samples, settings):
        path = tmp_path / "reference.csv"
        capture_to_table(samples, FakeSource(), path, settings=settings)
        table = read_table(path, settings)
        assert [row.key for row in table] == ["G1#1", "G1#2", "G1#3"]
        assert table.rows[1].defect_type == "scratch"
        assert not table.rows[1].is_ok
        assert table.rows[0].timestamp == "2024-01-01 12:00:00"
        assert table.rows[2].get("width") == "3.5"

    def test_no_file_on_failure(self, tmp_path, samples, settings):
        path = tmp_path / "reference.csv"
        with pytest.raises(RuntimeError):
            capture_to_table(samples, FakeSource(fail_on="3"), path, settings=settings)
        assert not path.exists()


class TestItemLimitMap:
    def test_first_limit_wins(self):
        results = [
            DetectionResult(is_ok=True, items=[DetectionItem(name="Width", value="1")]),
            DetectionResult(is_ok=True, items=[DetectionItem(name="width", value="1", lower_limit="0.5")]),
            DetectionResult(is_ok=True, items=[DetectionItem(name="WIDTH", value="1", upper_limit="9")]),
        ]
        limits = build_item_limit_map(results)
        assert limits == {"width": ItemLimit("width", "0.5", "")}

    def test_items_without_limits_left_out(self):
        results = [DetectionResult(is_ok=True, items=[DetectionItem(name="depth", value="1")])]
        assert build_item_limit_map(results) == {}
