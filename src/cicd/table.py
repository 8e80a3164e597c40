"""Measurement table codec and the typed table shared by the comparators.

Wire format (UTF-8, comma separated, every field double-quoted):

    "group","sample","timestamp","result","defectType","<item1>","<item2>",...

Item columns are the union of all item names, sorted case-insensitively.
Values are kept as text here; numeric interpretation belongs to the
comparators.
"""
import csv
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from schemas.enums import InspectionResult
from schemas.measurement import DetectionResult

from .errors import MalformedRow, PersistenceFailure, TableNotFoundError
from .settings import EngineSettings, load_settings

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "#"
TABLE_ENCODING = "utf-8-sig"
# Record separators only, unlike str.splitlines
LINE_BREAK = re.compile(r"\r\n|\r|\n")


def make_key(group_name: str, sample_number: str) -> str:
    """Sample key: ``group#sample``. Compared case-insensitively."""
    return f"{group_name or ''}{KEY_SEPARATOR}{sample_number or ''}"


def split_key(key: str) -> Tuple[str, str]:
    group_name, _, sample_number = (key or "").partition(KEY_SEPARATOR)
    return group_name, sample_number


def item_sort_key(name: str) -> Tuple[str, str]:
    return (name.casefold(), name)


@dataclass(frozen=True)
class MeasurementRow:
    """One sample's record in a reference or test table."""
    group_name: str
    sample_number: str
    is_ok: bool
    defect_type: str = ""
    timestamp: str = ""
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Case-insensitive unique names: first spelling, last value
        spelling: Dict[str, str] = {}
        latest: Dict[str, str] = {}
        for name, value in self.values.items():
            name = (name or "").strip()
            if not name:
                continue
            folded = name.casefold()
            spelling.setdefault(folded, name)
            latest[folded] = "" if value is None else str(value)
        object.__setattr__(self, "values", {spelling[f]: latest[f] for f in spelling})
        object.__setattr__(self, "_index", spelling)

    @property
    def key(self) -> str:
        return make_key(self.group_name, self.sample_number)

    @property
    def has_blank_key(self) -> bool:
        return not (self.group_name or "").strip() and not (self.sample_number or "").strip()

    @property
    def result(self) -> InspectionResult:
        return InspectionResult.from_flag(self.is_ok)

    def item_names(self) -> List[str]:
        return list(self.values.keys())

    def get(self, item_name: str, default: str = "") -> str:
        """Raw value for an item, looked up case-insensitively."""
        name = self._index.get((item_name or "").strip().casefold())
        if name is None:
            return default
        return self.values[name]


def collect_item_names(rows: Iterable[MeasurementRow]) -> List[str]:
    """Union of item names across rows, sorted case-insensitively."""
    names: Dict[str, str] = {}
    for row in rows:
        for name in row.values:
            stripped = name.strip()
            if stripped:
                names.setdefault(stripped.casefold(), stripped)
    return sorted(names.values(), key=item_sort_key)


@dataclass(frozen=True)
class MeasurementTable:
    """Parsed measurement table: ordered item columns plus rows in file order."""
    item_names: Tuple[str, ...] = ()
    rows: Tuple[MeasurementRow, ...] = ()
    source: Optional[Path] = None

    @classmethod
    def from_rows(cls, rows: Iterable[MeasurementRow], source: Optional[Path] = None) -> "MeasurementTable":
        rows = tuple(rows)
        return cls(item_names=tuple(collect_item_names(rows)), rows=rows, source=source)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def by_key(self) -> Dict[str, MeasurementRow]:
        """Index rows by casefolded key. Blank keys dropped, last write wins."""
        index: Dict[str, MeasurementRow] = {}
        for row in self.rows:
            if row.has_blank_key:
                continue
            index[row.key.casefold()] = row
        return index

    def by_group(self) -> Dict[str, List[MeasurementRow]]:
        """Group the keyed rows by casefolded group name."""
        groups: Dict[str, List[MeasurementRow]] = {}
        for row in self.by_key().values():
            groups.setdefault(row.group_name.casefold(), []).append(row)
        return groups

    def keys(self) -> List[str]:
        return [row.key for row in self.by_key().values()]

    def get(self, key: str) -> Optional[MeasurementRow]:
        return self.by_key().get((key or "").casefold())


def _clean_field(value) -> str:
    text = "" if value is None else str(value)
    return text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")


def write_table(
    rows: Union[MeasurementTable, Iterable[MeasurementRow]],
    path: Union[str, Path],
    settings: Optional[EngineSettings] = None,
) -> Path:
    """Serialize rows to ``path``. The file appears atomically or not at all.

    Raises:
        PersistenceFailure: the directory or file could not be written
    """
    settings = settings or load_settings()
    path = Path(path)
    rows = list(rows.rows if isinstance(rows, MeasurementTable) else rows)
    item_names = collect_item_names(rows)
    header = settings.columns.header() + item_names

    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding=TABLE_ENCODING,
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            tmp_name = f.name
            writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
            writer.writerow(header)
            for row in rows:
                writer.writerow(
                    [
                        _clean_field(row.group_name),
                        _clean_field(row.sample_number),
                        _clean_field(row.timestamp),
                        row.result.value,
                        _clean_field(row.defect_type),
                    ]
                    + [_clean_field(row.get(name)) for name in item_names]
                )
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        logger.error(f"Failed to write measurement table {path}: {e}")
        raise PersistenceFailure(path, f"Failed to write measurement table ({e})") from e

    logger.debug(f"Wrote {len(rows)} rows x {len(item_names)} items to {path}")
    return path


def _split_line(path: Path, line_number: int, line: str) -> List[str]:
    try:
        return next(csv.reader([line], strict=True))
    except csv.Error as e:
        raise MalformedRow(path, line_number, str(e)) from e


def read_table(path: Union[str, Path], settings: Optional[EngineSettings] = None) -> MeasurementTable:
    """Parse a measurement table written by :func:`write_table`.

    Header cells are matched case-insensitively; blank header cells are
    ignored. Malformed data lines are logged and skipped.

    Raises:
        TableNotFoundError: the file does not exist
        PersistenceFailure: the file exists but cannot be read
        MalformedRow: the header line itself cannot be split
    """
    settings = settings or load_settings()
    path = Path(path)
    if not path.is_file():
        raise TableNotFoundError(path)

    try:
        text = path.read_text(encoding=TABLE_ENCODING)
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Failed to read measurement table {path}: {e}")
        raise PersistenceFailure(path, f"Failed to read measurement table ({e})") from e

    lines = LINE_BREAK.split(text)
    if not lines[0].strip():
        return MeasurementTable(source=path)

    identity_lookup = settings.columns.lookup()
    identity_columns: Dict[str, int] = {}
    item_columns: List[Tuple[int, str]] = []
    seen_items = set()
    for index, cell in enumerate(_split_line(path, 1, lines[0])):
        name = cell.strip()
        if not name:
            continue
        identity = identity_lookup.get(name.casefold())
        if identity is not None:
            identity_columns.setdefault(identity, index)
            continue
        if name.casefold() in seen_items:
            continue
        seen_items.add(name.casefold())
        item_columns.append((index, name))

    rows: List[MeasurementRow] = []
    skipped = 0
    for line_number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        try:
            cells = _split_line(path, line_number, line)
        except MalformedRow as e:
            skipped += 1
            logger.warning(f"Skipping malformed row: {e}")
            continue

        def cell_at(identity: str) -> str:
            index = identity_columns.get(identity)
            if index is None or index >= len(cells):
                return ""
            return cells[index]

        rows.append(MeasurementRow(
            group_name=cell_at("group").strip(),
            sample_number=cell_at("sample").strip(),
            is_ok=cell_at("result").strip().casefold() == InspectionResult.OK.value.casefold(),
            defect_type=cell_at("defect_type"),
            timestamp=cell_at("timestamp"),
            values={name: (cells[index] if index < len(cells) else "") for index, name in item_columns},
        ))

    if skipped:
        logger.info(f"Read {len(rows)} rows from {path} ({skipped} malformed skipped)")

    return MeasurementTable(
        item_names=tuple(sorted((name for _, name in item_columns), key=item_sort_key)),
        rows=tuple(rows),
        source=path,
    )


def rows_from_results(
    results: Sequence[DetectionResult],
    settings: Optional[EngineSettings] = None,
) -> List[MeasurementRow]:
    """Convert detection results into measurement rows."""
    settings = settings or load_settings()
    return [
        MeasurementRow(
            group_name=(result.group_name or "").strip(),
            sample_number=(result.sample_number or "").strip(),
            is_ok=result.is_ok,
            defect_type=result.defect_type or "",
            timestamp=result.tested_at.strftime(settings.timestamp_format),
            values=result.item_values(),
        )
        for result in results
    ]
