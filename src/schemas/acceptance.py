"""Pydantic models for acceptance standards (tolerance/allowance policies).

An acceptance standard decides how far a test run may drift from its
reference run before the comparison fails. Standards are stored globally and
bound to inspection templates by name.
"""
from typing import Any, List, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import DEFAULT_STANDARD_NAME


class Tolerance(NamedTuple):
    """Effective tolerance for one item: max(abs, |reference| * ratio)."""
    abs: float
    ratio: float


def _non_negative(value: float) -> float:
    return value if value > 0 else 0.0


class ItemToleranceOverride(BaseModel):
    """Per-item tolerance replacing the standard's defaults."""
    item_name: str = Field(description="Item name, matched case-insensitively")
    tolerance_abs: float = Field(default=0.0, description="Absolute tolerance")
    tolerance_ratio: float = Field(default=0.0, description="Proportional tolerance (fraction of reference)")

    @field_validator("item_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return (value or "").strip()

    @field_validator("tolerance_abs", "tolerance_ratio")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _non_negative(value)

    @property
    def tolerance(self) -> Tolerance:
        return Tolerance(self.tolerance_abs, self.tolerance_ratio)


class AcceptanceStandard(BaseModel):
    """Named tolerance policy used to judge a comparison."""
    name: str = Field(default=DEFAULT_STANDARD_NAME, description="Unique, case-insensitive")
    allowed_ok_ng_mismatch: int = Field(default=0, ge=0, description="Tolerated OK/NG disagreements")
    allowed_defect_type_mismatch: int = Field(default=0, ge=0, description="Tolerated defect-type disagreements")
    allowed_extent_mismatch: int = Field(default=0, ge=0, description="Tolerated extent (max-min spread) drifts")
    default_tolerance_abs: float = Field(default=0.0, description="Absolute tolerance for items without override")
    default_tolerance_ratio: float = Field(default=0.0, description="Proportional tolerance for items without override")
    item_tolerances: List[ItemToleranceOverride] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_fields(cls, data: Any) -> Any:
        # v1 configs named the defaults after the extent check
        if isinstance(data, dict):
            data = dict(data)
            legacy_abs = data.pop("numeric_range_tolerance_abs", None)
            legacy_ratio = data.pop("numeric_range_tolerance_ratio", None)
            if legacy_abs is not None and "default_tolerance_abs" not in data:
                data["default_tolerance_abs"] = legacy_abs
            if legacy_ratio is not None and "default_tolerance_ratio" not in data:
                data["default_tolerance_ratio"] = legacy_ratio
        return data

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: Optional[str]) -> str:
        value = (value or "").strip()
        return value or DEFAULT_STANDARD_NAME

    @field_validator("default_tolerance_abs", "default_tolerance_ratio")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return _non_negative(value)

    @field_validator("item_tolerances")
    @classmethod
    def _dedupe_overrides(cls, value: List[ItemToleranceOverride]) -> List[ItemToleranceOverride]:
        by_name = {}
        for override in value:
            if not override.item_name:
                continue
            by_name[override.item_name.casefold()] = override
        return sorted(by_name.values(), key=lambda o: (o.item_name.casefold(), o.item_name))

    @property
    def is_default(self) -> bool:
        return self.name.casefold() == DEFAULT_STANDARD_NAME.casefold()

    @property
    def default_tolerance(self) -> Tolerance:
        return Tolerance(self.default_tolerance_abs, self.default_tolerance_ratio)

    def find_override(self, item_name: str) -> Optional[ItemToleranceOverride]:
        folded = (item_name or "").strip().casefold()
        for override in self.item_tolerances:
            if override.item_name.casefold() == folded:
                return override
        return None

    def tolerance_for(self, item_name: str) -> Tolerance:
        """Effective tolerance for an item: its override, else the defaults."""
        override = self.find_override(item_name)
        if override is not None:
            return override.tolerance
        return self.default_tolerance


class TemplateBinding(BaseModel):
    """Binds an inspection template (scope key) to an acceptance standard."""
    template_name: str = Field(default="")
    bound_standard_name: Optional[str] = Field(default=None)
    # v1 layout kept standards per template; migrated on load
    active_standard_name: Optional[str] = Field(default=None)
    standards: Optional[List[AcceptanceStandard]] = Field(default=None)

    @field_validator("template_name", mode="before")
    @classmethod
    def _template_name(cls, value: Optional[str]) -> str:
        return value or ""


class AcceptanceConfig(BaseModel):
    """Persisted collection of standards and template bindings."""
    standards: List[AcceptanceStandard] = Field(default_factory=lambda: [AcceptanceStandard()])
    templates: List[TemplateBinding] = Field(default_factory=list)

    def find_standard(self, name: Optional[str]) -> Optional[AcceptanceStandard]:
        folded = (name or "").strip().casefold()
        for standard in self.standards:
            if standard.name.casefold() == folded:
                return standard
        return None

    def find_template(self, template_name: Optional[str]) -> Optional[TemplateBinding]:
        folded = (template_name or "").casefold()
        for template in self.templates:
            if template.template_name.casefold() == folded:
                return template
        return None
