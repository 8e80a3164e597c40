"""Shared test fixtures and configuration."""
from pathlib import Path

import pytest

from cicd.settings import load_settings
from cicd.table import MeasurementRow, MeasurementTable
from schemas.acceptance import AcceptanceStandard


def make_row(group="G1", sample="1", is_ok=True, defect_type="", **values) -> MeasurementRow:
    """Build a measurement row; keyword arguments become item values."""
    return MeasurementRow(
        group_name=group,
        sample_number=sample,
        is_ok=is_ok,
        defect_type=defect_type,
        timestamp="2024-01-01 12:00:00",
        values={name: str(value) for name, value in values.items()},
    )


def make_table(*rows: MeasurementRow) -> MeasurementTable:
    return MeasurementTable.from_rows(rows)


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def default_standard():
    return AcceptanceStandard()


@pytest.fixture
def reference_rows():
    return [
        make_row("G1", "1", True, temp="10.00", width="5.0", color="red"),
        make_row("G1", "2", True, temp="10.20", width="5.1", color="red"),
        make_row("G2", "1", False, "scratch", temp="11.00", width="4.9", color="blue"),
    ]


@pytest.fixture
def write_csv(tmp_path):
    """Write raw CSV text to a file under tmp_path and return its path."""
    def _write(name: str, text: str, encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding=encoding)
        return path
    return _write
