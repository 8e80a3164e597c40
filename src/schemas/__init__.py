"""CICD schemas - Pydantic models for detection results and acceptance standards."""
from .acceptance import (
    AcceptanceConfig,
    AcceptanceStandard,
    ItemToleranceOverride,
    TemplateBinding,
    Tolerance,
)
from .enums import (
    DEFAULT_STANDARD_NAME,
    InspectionResult,
    MismatchReason,
    RowStatus,
)
from .measurement import DetectionItem, DetectionResult

__all__ = [
    # Acceptance standards
    "AcceptanceConfig",
    "AcceptanceStandard",
    "ItemToleranceOverride",
    "TemplateBinding",
    "Tolerance",
    # Detection results
    "DetectionItem",
    "DetectionResult",
    # Enums
    "DEFAULT_STANDARD_NAME",
    "InspectionResult",
    "MismatchReason",
    "RowStatus",
]
