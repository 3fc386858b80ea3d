"""
Result aggregation: merges the boolean, interval and verification
findings of one analysis into a single report.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from negation_verifier import VerificationOutcome
from z3_boolean_relations import (
    BooleanReport, BooleanRelation, BooleanStrategy, RelationKind
)
from z3_interval_search import IntervalReport
from z3_oracle import ReportStatus


@dataclass
class GeneralizationReport:
    """Everything learned about the solution space of one formula"""
    boolean: Optional[BooleanReport] = None
    intervals: Optional[IntervalReport] = None
    verifications: List[VerificationOutcome] = field(default_factory=list)

    @property
    def has_solution(self) -> bool:
        for part in (self.boolean, self.intervals):
            if part is not None and part.status == ReportStatus.NO_SOLUTION:
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_solution": self.has_solution,
            "boolean": self.boolean.to_dict() if self.boolean else None,
            "intervals": self.intervals.to_dict() if self.intervals else None,
            "verifications": [v.to_dict() for v in self.verifications],
        }

    def to_lines(self) -> List[str]:
        lines: List[str] = []
        if self.boolean is not None:
            lines.extend(_boolean_lines(self.boolean))
        if self.intervals is not None:
            if lines:
                lines.append("")
            lines.extend(_interval_lines(self.intervals))
        if self.verifications:
            if lines:
                lines.append("")
            lines.append("Candidate Invariants:")
            for outcome in self.verifications:
                lines.append(f"  {outcome.to_string()}")
        return lines

    def to_string(self) -> str:
        return "\n".join(self.to_lines())


def _status_line(status: ReportStatus) -> Optional[str]:
    if status == ReportStatus.NO_SOLUTION:
        return "  No solution exists: the formula is unsatisfiable."
    if status == ReportStatus.NO_VARIABLES:
        return "  No applicable variables."
    return None


def _problem_lines(errors: Dict[str, str], unresolved: List[str]) -> List[str]:
    lines = []
    for item, reason in sorted(errors.items()):
        lines.append(f"  Skipped {item}: {reason}")
    for item in unresolved:
        lines.append(f"  Unresolved {item}: oracle gave up")
    return lines


def _implication_lines(relations: List[BooleanRelation], suffix: str) -> List[str]:
    """Group implications by source: 'p = true implies all of {q, r} = true'"""
    grouped: Dict[tuple, List[str]] = {}
    for r in relations:
        implied = "true" if r.kind == RelationKind.IMPLIES_TRUE else "false"
        grouped.setdefault((r.variable, implied), []).append(r.other)

    lines = []
    for (source, implied), targets in sorted(grouped.items()):
        targets = sorted(targets)
        if len(targets) == 1:
            lines.append(f"  {source} = true implies {targets[0]} = {implied}{suffix}")
        else:
            lines.append(f"  {source} = true implies all of {{{', '.join(targets)}}} = {implied}{suffix}")
    return lines


def _boolean_lines(report: BooleanReport) -> List[str]:
    lines = [f"Boolean Relations ({report.strategy.value}):"]
    status = _status_line(report.status)
    if status:
        lines.append(status)
        lines.extend(_problem_lines(report.errors, report.unresolved))
        return lines

    lines.append(f"  Variables: [{', '.join(report.variables)}]")
    suffix = ""
    if report.strategy == BooleanStrategy.MODEL_SAMPLING:
        scope = "all models" if report.exhaustive else f"{report.models_sampled} sampled model(s)"
        lines.append(f"  Based on {scope}; facts are conjectures unless every model was seen.")
        suffix = " (sampled)"

    lines.append("Fixed Values:")
    fixed = report.fixed_values
    if not fixed:
        lines.append("  None found")
    for name in sorted(fixed):
        lines.append(f"  {name} is always {'true' if fixed[name] else 'false'}{suffix}")

    lines.append("Implications:")
    implications = report.implications()
    if not implications:
        lines.append("  None found")
    lines.extend(_implication_lines(implications, suffix))

    equivalences = [r for r in report.relations if r.kind == RelationKind.EQUIVALENT]
    if equivalences:
        lines.append("Equivalences:")
        lines.extend(f"  {r.to_string()}" for r in equivalences)

    lines.extend(_problem_lines(report.errors, report.unresolved))
    return lines


def _interval_lines(report: IntervalReport) -> List[str]:
    lines = [f"Integer Bounds ({report.strategy.value}):"]
    status = _status_line(report.status)
    if status:
        lines.append(status)
        lines.extend(_problem_lines(report.errors, report.unresolved))
        return lines

    reference = ", ".join(f"{k} = {str(v).lower() if isinstance(v, bool) else v}"
                          for k, v in report.reference.items())
    lines.append(f"  Reference model: {{{reference}}}")
    for name in sorted(report.bounds):
        lines.append(f"  {report.bounds[name].to_string()}")
    lines.extend(_problem_lines(report.errors, report.unresolved))
    return lines
