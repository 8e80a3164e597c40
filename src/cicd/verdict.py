"""Pass/fail aggregation of mismatch counts against an acceptance standard."""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from schemas.acceptance import AcceptanceStandard


@dataclass
class MismatchCounts:
    """Counts of every verdict-relevant mismatch category."""
    missing: int = 0
    extra: int = 0
    ok_ng: int = 0
    defect_type: int = 0
    extent: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class VerdictRule:
    """One line of the rule summary: a limit, the observed count and whether it held."""
    name: str
    description: str
    allowed: int
    actual: int

    @property
    def passed(self) -> bool:
        return self.actual <= self.allowed

    def to_line(self) -> str:
        status = "ok" if self.passed else "VIOLATED"
        return f"{self.description} <= {self.allowed} (current: {self.actual}) [{status}]"

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["passed"] = self.passed
        return result


@dataclass
class Verdict:
    passed: bool
    rules: List[VerdictRule] = field(default_factory=list)

    @property
    def label(self) -> str:
        return "PASS" if self.passed else "FAIL"

    def failed_rules(self) -> List[VerdictRule]:
        return [rule for rule in self.rules if not rule.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "label": self.label,
            "rules": [rule.to_dict() for rule in self.rules],
        }


def evaluate_verdict(counts: MismatchCounts, standard: AcceptanceStandard) -> Verdict:
    """Apply the standard's allowances to the counts.

    Missing and extra rows always have an allowance of zero: the sample
    set of a test run must match the reference exactly.
    """
    rules = [
        VerdictRule("missing", "Missing rows", 0, counts.missing),
        VerdictRule("extra", "Extra rows", 0, counts.extra),
        VerdictRule("ok_ng", "OK/NG mismatches", standard.allowed_ok_ng_mismatch, counts.ok_ng),
        VerdictRule(
            "defect_type",
            "Defect type mismatches",
            standard.allowed_defect_type_mismatch,
            counts.defect_type,
        ),
        VerdictRule("extent", "Extent mismatches", standard.allowed_extent_mismatch, counts.extent),
    ]
    return Verdict(passed=all(rule.passed for rule in rules), rules=rules)
