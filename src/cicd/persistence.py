"""Reference/test run storage and comparison history."""
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .errors import PersistenceFailure
from .report import CompareReport
from .settings import EngineSettings, load_settings
from .table import MeasurementRow, MeasurementTable, write_table

logger = logging.getLogger(__name__)

INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_name(name: str) -> str:
    """Make a template or image set name safe to use as a folder name."""
    cleaned = INVALID_NAME_CHARS.sub("_", name or "").strip()
    return cleaned or "_"


def atomic_write_text(path: Union[str, Path], text: str) -> Path:
    """Write text to a temporary sibling and move it into place.

    Raises:
        PersistenceFailure: the directory or file could not be written
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            f.write(text)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        logger.error(f"Failed to write {path}: {e}")
        raise PersistenceFailure(path, f"Failed to write file ({e})") from e
    return path


@dataclass
class StoredRun:
    """Files written for one stored test run."""
    run_id: str
    table_path: Path
    report_path: Path
    json_path: Path
    passed: bool


@dataclass
class RunStore:
    """
    Manages reference tables, test runs and comparison history.

    Directory structure:
        {root}/{template}/cicd/
            {image_set}/
                reference.csv
            tests/{image_set}/
                20240101_120000.csv
                20240101_120000_compare.txt
                20240101_120000_compare.json
                history.json  (one entry per compared run)
    """
    root: Path
    settings: EngineSettings = field(default_factory=load_settings)

    def __post_init__(self):
        self.root = Path(self.root)

    @property
    def layout(self):
        return self.settings.layout

    def get_cicd_dir(self, template_name: str) -> Path:
        return self.root / sanitize_name(template_name) / self.layout.cicd_dir

    def get_image_set_dir(self, template_name: str, image_set: str) -> Path:
        return self.get_cicd_dir(template_name) / sanitize_name(image_set)

    def get_tests_dir(self, template_name: str, image_set: str) -> Path:
        return self.get_cicd_dir(template_name) / self.layout.tests_dir / sanitize_name(image_set)

    def reference_path(self, template_name: str, image_set: str) -> Path:
        """Path of the reference table for an image set (may not exist yet)."""
        return self.get_image_set_dir(template_name, image_set) / self.layout.reference_file

    def history_path(self, template_name: str, image_set: str) -> Path:
        return self.get_tests_dir(template_name, image_set) / self.layout.history_file

    def save_reference(
        self,
        template_name: str,
        image_set: str,
        rows: Union[MeasurementTable, Iterable[MeasurementRow]],
        overwrite: bool = False,
    ) -> Path:
        """
        Write the reference table of an image set.

        Raises:
            FileExistsError: a reference already exists and overwrite is False
        """
        path = self.reference_path(template_name, image_set)
        if path.exists() and not overwrite:
            raise FileExistsError(f"Reference already exists for image set '{image_set}': {path}")
        write_table(rows, path, self.settings)
        logger.info(f"Saved reference for {template_name}/{image_set}: {path}")
        return path

    def list_image_sets(self, template_name: str) -> List[str]:
        """Image sets of a template that have a reference table, sorted."""
        cicd_dir = self.get_cicd_dir(template_name)
        if not cicd_dir.is_dir():
            return []
        names = [
            item.name
            for item in cicd_dir.iterdir()
            if item.is_dir()
            and item.name != self.layout.tests_dir
            and (item / self.layout.reference_file).is_file()
        ]
        return sorted(names, key=lambda n: (n.casefold(), n))

    def new_run_id(self, template_name: str, image_set: str, now: Optional[datetime] = None) -> str:
        """Timestamp id for a new test run, suffixed when already taken."""
        base = (now or datetime.now()).strftime(self.layout.run_id_format)
        tests_dir = self.get_tests_dir(template_name, image_set)
        run_id = base
        suffix = 1
        while (tests_dir / f"{run_id}.csv").exists():
            run_id = f"{base}_{suffix}"
            suffix += 1
        return run_id

    def test_table_path(self, template_name: str, image_set: str, run_id: str) -> Path:
        return self.get_tests_dir(template_name, image_set) / f"{run_id}.csv"

    def save_test_table(
        self,
        template_name: str,
        image_set: str,
        rows: Union[MeasurementTable, Iterable[MeasurementRow]],
        run_id: Optional[str] = None,
    ) -> Path:
        run_id = run_id or self.new_run_id(template_name, image_set)
        path = self.test_table_path(template_name, image_set, run_id)
        return write_table(rows, path, self.settings)

    def save_test_run(
        self,
        template_name: str,
        image_set: str,
        run_id: str,
        report: CompareReport,
        report_text: str,
    ) -> StoredRun:
        """
        Store the comparison output of a test run and append it to history.

        The test table itself must already be at ``test_table_path``.

        Returns:
            StoredRun describing the written files
        """
        tests_dir = self.get_tests_dir(template_name, image_set)
        report_path = atomic_write_text(tests_dir / f"{run_id}_compare.txt", report_text)
        json_path = atomic_write_text(
            tests_dir / f"{run_id}_compare.json",
            json.dumps(report.to_dict(), indent=2, ensure_ascii=False),
        )
        self._append_history(template_name, image_set, run_id, report)
        logger.info(f"Stored test run {run_id} for {template_name}/{image_set}: {report.verdict.label}")
        return StoredRun(
            run_id=run_id,
            table_path=self.test_table_path(template_name, image_set, run_id),
            report_path=report_path,
            json_path=json_path,
            passed=report.passed,
        )

    def _append_history(
        self,
        template_name: str,
        image_set: str,
        run_id: str,
        report: CompareReport,
    ) -> None:
        """Append a run entry to history.json."""
        history = self.get_history(template_name, image_set)
        history.append({
            "run_id": run_id,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "standard_name": report.standard_name,
            "passed": report.passed,
            "counts": report.counts.to_dict(),
            "item_mismatches": len(report.item_mismatches),
        })
        atomic_write_text(
            self.history_path(template_name, image_set),
            json.dumps(history, indent=2, ensure_ascii=False),
        )

    def get_history(self, template_name: str, image_set: str) -> List[Dict[str, Any]]:
        """
        Get comparison history of an image set.

        Returns:
            List of history entries sorted by run id
        """
        path = self.history_path(template_name, image_set)
        if not path.exists():
            return []
        try:
            history = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read history {path}: {e}")
            raise PersistenceFailure(path, f"Failed to read history ({e})") from e
        return sorted(history, key=lambda entry: entry.get("run_id", ""))

    def resolve_reference_for_test(self, test_path: Union[str, Path]) -> Optional[Tuple[str, Path]]:
        """
        Find the reference table a stored test table belongs to.

        ``{root}/{template}/cicd/tests/{image_set}/{run}.csv`` maps to
        ``{root}/{template}/cicd/{image_set}/reference.csv``.

        Returns:
            (template name, reference path), or None when the path does not
            follow the run store layout
        """
        test_path = Path(test_path)
        image_set_dir = test_path.parent
        tests_dir = image_set_dir.parent
        cicd_dir = tests_dir.parent
        if tests_dir.name != self.layout.tests_dir or cicd_dir.name != self.layout.cicd_dir:
            return None
        template_name = cicd_dir.parent.name
        if not template_name:
            return None
        return template_name, cicd_dir / image_set_dir.name / self.layout.reference_file
