"""Pydantic models for detection results handed over by the inspection pipeline.

These are the only inputs the capture workflow accepts from the outside:
one result per inspected sample, carrying its identity, the OK/NG verdict of
the pipeline, the defect classification and the named measurement items.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import InspectionResult


class DetectionItem(BaseModel):
    """A single named measurement produced for one sample."""
    name: str = Field(description="Item name, compared case-insensitively")
    value: str = Field(default="", description="Raw value text, numeric or textual")
    lower_limit: Optional[str] = Field(default=None, description="Lower spec limit as reported by the pipeline")
    upper_limit: Optional[str] = Field(default=None, description="Upper spec limit as reported by the pipeline")

    @property
    def has_any_limit(self) -> bool:
        return bool((self.lower_limit or "").strip() or (self.upper_limit or "").strip())


class DetectionResult(BaseModel):
    """Detection outcome for one sample (group name + sample number)."""
    group_name: str = Field(default="", description="Logical group the sample belongs to")
    sample_number: str = Field(default="", description="Sample/image number inside the group")
    is_ok: bool = Field(description="True when the pipeline judged the sample OK")
    defect_type: str = Field(default="", description="Defect classification, meaningful only when NG")
    items: List[DetectionItem] = Field(default_factory=list)
    tested_at: datetime = Field(default_factory=datetime.now, description="When the detection completed")

    @property
    def result(self) -> InspectionResult:
        return InspectionResult.from_flag(self.is_ok)

    def item_values(self) -> Dict[str, str]:
        """Return item name -> raw value, de-duplicated case-insensitively.

        A repeated name keeps the last-seen value but stays at the position
        (and spelling) where it first appeared.
        """
        names: Dict[str, str] = {}
        values: Dict[str, str] = {}
        for item in self.items:
            name = (item.name or "").strip()
            if not name:
                continue
            folded = name.casefold()
            names.setdefault(folded, name)
            values[folded] = item.value if item.value is not None else ""
        return {names[folded]: values[folded] for folded in names}
