"""Shared enums used across measurement tables, comparisons and reports."""
from enum import Enum


class InspectionResult(str, Enum):
    OK = "OK"
    NG = "NG"

    @classmethod
    def from_flag(cls, is_ok: bool) -> "InspectionResult":
        return cls.OK if is_ok else cls.NG


class MismatchReason(str, Enum):
    """Why a single item value differs between reference and test."""
    OUT_OF_TOLERANCE = "out_of_tolerance"
    TEXT_MISMATCH = "text_mismatch"
    TEST_NOT_NUMERIC = "test_not_numeric"
    REFERENCE_NOT_NUMERIC = "reference_not_numeric"


class RowStatus(str, Enum):
    """Presence of a sample key across the two tables."""
    MATCHED = "matched"
    MISSING = "missing"   # in reference, absent from test
    EXTRA = "extra"       # in test, absent from reference


# Name of the privileged acceptance standard
DEFAULT_STANDARD_NAME = "default"
