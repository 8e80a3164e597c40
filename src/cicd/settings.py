"""Engine settings loaded from YAML."""
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


class ColumnNames(BaseModel):
    """Identity column headers. The first alias is the one written."""
    group: List[str] = Field(default_factory=lambda: ["group"])
    sample: List[str] = Field(default_factory=lambda: ["sample"])
    timestamp: List[str] = Field(default_factory=lambda: ["timestamp"])
    result: List[str] = Field(default_factory=lambda: ["result"])
    defect_type: List[str] = Field(default_factory=lambda: ["defectType"])

    def header(self) -> List[str]:
        return [self.group[0], self.sample[0], self.timestamp[0], self.result[0], self.defect_type[0]]

    def lookup(self) -> Dict[str, str]:
        """Map every accepted header (casefolded) to its identity field."""
        result = {}
        for field_name in ("group", "sample", "timestamp", "result", "defect_type"):
            for alias in getattr(self, field_name):
                result.setdefault(alias.strip().casefold(), field_name)
        return result


class LayoutSettings(BaseModel):
    """Folder and file names used by the run store."""
    cicd_dir: str = "cicd"
    tests_dir: str = "tests"
    reference_file: str = "reference.csv"
    history_file: str = "history.json"
    run_id_format: str = "%Y%m%d_%H%M%S"


class EngineSettings(BaseModel):
    report_cap: int = Field(default=50, ge=1, description="Max listed examples per category")
    ignored_items: List[str] = Field(default_factory=lambda: ["timestamp"])
    columns: ColumnNames = Field(default_factory=ColumnNames)
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"
    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    standards_file: str = "cicd_acceptance_standards.json"

    def ignored_set(self) -> frozenset:
        return frozenset(name.strip().casefold() for name in self.ignored_items if name and name.strip())


def load_settings(path: Optional[Union[str, Path]] = None) -> EngineSettings:
    """Load packaged settings, optionally overlaid with a user YAML file."""
    with open(DEFAULT_SETTINGS_PATH, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if path is not None:
        with open(path, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
        data.update(overrides)

    return EngineSettings.model_validate(data)
