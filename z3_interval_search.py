"""
Integer Interval Engine
Finds the satisfiable range of each integer variable while every other
variable is held at its value in one reference model.

Strategies:
- LINEAR_SCAN: step by 1 away from the reference value until UNSAT,
  at most `horizon` steps per direction.
- BRACKET_BISECTION: double a step outward until UNSAT (clamped to
  [int_min, int_max]), then bisect between the last SAT probe and the
  UNSAT bracket end. One oracle query per probe.

Both assume the satisfiable values of the free variable form one
contiguous interval. With a gap (x = 2 or x = 9) they can return a convex
superset or miss a component. Pass check_contiguity=True to probe a few
interior points; gaps it finds are reported, never patched over.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from z3 import BoolRef, ExprRef, Int, IntVal, is_int

from formula_variables import VariableCollector, default_collector
from z3_oracle import (
    Z3Oracle, ConfigurationError, OracleUnknown, ReportStatus, conjoin, sort_name
)

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = 1000
DEFAULT_INITIAL_STEP = 16
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class IntervalStrategy(Enum):
    LINEAR_SCAN = "linear-scan"
    BRACKET_BISECTION = "bracket-bisection"


class BoundStatus(Enum):
    EXACT = "exact"
    HORIZON = "horizon"  # search stopped while still SAT; true bound lies further out


@dataclass(frozen=True)
class Bound:
    """Closed interval for one variable, each end exact or horizon-limited"""
    variable: str
    lower: int
    upper: int
    lower_status: BoundStatus
    upper_status: BoundStatus
    reference: int
    strategy: IntervalStrategy
    contiguity_checked: bool = False
    gaps: Tuple[int, ...] = ()

    @property
    def is_exact(self) -> bool:
        return (self.lower_status == BoundStatus.EXACT
                and self.upper_status == BoundStatus.EXACT)

    @property
    def contiguous(self) -> Optional[bool]:
        """None when no contiguity probe ran"""
        if not self.contiguity_checked:
            return None
        return not self.gaps

    def to_string(self) -> str:
        lo = str(self.lower) if self.lower_status == BoundStatus.EXACT else f"<={self.lower}"
        hi = str(self.upper) if self.upper_status == BoundStatus.EXACT else f">={self.upper}"
        text = f"{self.variable} in [{lo}, {hi}]"
        if not self.is_exact:
            text += " (search horizon reached)"
        if self.gaps:
            text += f" (not contiguous: UNSAT at {', '.join(map(str, self.gaps))})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variable": self.variable,
            "lower": self.lower,
            "upper": self.upper,
            "lower_status": self.lower_status.value,
            "upper_status": self.upper_status.value,
            "reference": self.reference,
            "strategy": self.strategy.value,
            "contiguous": self.contiguous,
            "gaps": list(self.gaps),
        }


@dataclass
class IntervalReport:
    """Outcome of one interval analysis call"""
    strategy: IntervalStrategy
    status: ReportStatus
    reference: Dict[str, Any] = field(default_factory=dict)
    bounds: Dict[str, Bound] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "status": self.status.value,
            "reference": dict(self.reference),
            "bounds": {name: b.to_dict() for name, b in self.bounds.items()},
            "errors": dict(self.errors),
            "unresolved": list(self.unresolved),
        }


class Z3IntervalSearch:
    """
    Per-variable interval discovery.

    horizon bounds LINEAR_SCAN. initial_step seeds the bracket doubling,
    int_min/int_max is the range the bracket is clamped to.
    """

    def __init__(self, oracle: Optional[Z3Oracle] = None,
                 horizon: int = DEFAULT_HORIZON,
                 initial_step: int = DEFAULT_INITIAL_STEP,
                 int_min: int = INT64_MIN,
                 int_max: int = INT64_MAX,
                 check_contiguity: bool = False,
                 contiguity_samples: int = 5,
                 collector: Optional[VariableCollector] = None):
        if horizon < 1:
            raise ConfigurationError(f"horizon must be >= 1, got {horizon}")
        if initial_step < 1:
            raise ConfigurationError(f"initial_step must be >= 1, got {initial_step}")
        if int_min >= int_max:
            raise ConfigurationError(f"int_min ({int_min}) must be below int_max ({int_max})")
        if contiguity_samples < 1:
            raise ConfigurationError(f"contiguity_samples must be >= 1, got {contiguity_samples}")
        self.oracle = oracle
        self.horizon = horizon
        self.initial_step = initial_step
        self.int_min = int_min
        self.int_max = int_max
        self.check_contiguity = check_contiguity
        self.contiguity_samples = contiguity_samples
        self.collector = collector or default_collector

    def _session(self):
        if self.oracle is not None:
            return nullcontext(self.oracle)
        return Z3Oracle()

    def _resolve_variables(self, formula: BoolRef,
                           variables: Optional[Iterable[str]],
                           errors: Dict[str, str]) -> Dict[str, ExprRef]:
        declared = self.collector.variables(formula)
        if variables is None:
            return {n: t for n, t in declared.items() if is_int(t)}

        resolved = {}
        for name in sorted(set(variables)):
            term = declared.get(name)
            if term is None:
                resolved[name] = Int(name, formula.ctx)
            elif is_int(term):
                resolved[name] = term
            else:
                errors[name] = f"declared {sort_name(term)}, expected Int"
                logger.warning("Skipping '%s': %s", name, errors[name])
        return resolved

    def discover(self, formula: BoolRef,
                 variables: Optional[Iterable[str]] = None,
                 strategy: IntervalStrategy = IntervalStrategy.BRACKET_BISECTION) -> IntervalReport:
        """Per-variable integer bounds around one reference model"""
        if strategy not in (IntervalStrategy.LINEAR_SCAN, IntervalStrategy.BRACKET_BISECTION):
            raise ConfigurationError(f"unknown interval strategy: {strategy}")

        errors: Dict[str, str] = {}
        terms = self._resolve_variables(formula, variables, errors)
        report = IntervalReport(strategy=strategy, status=ReportStatus.OK, errors=errors)

        if not terms:
            logger.info("No integer variables to analyze")
            report.status = ReportStatus.NO_VARIABLES
            return report

        with self._session() as oracle:
            model = oracle.get_model(formula)
            if model is None:
                report.status = ReportStatus.NO_SOLUTION
                return report

            declared = self.collector.variables(formula)
            report.reference = {name: oracle.evaluate(model, t) for name, t in declared.items()}

            for name, term in terms.items():
                start = oracle.evaluate(model, term)
                fixed = [t == report.reference[other]
                         for other, t in declared.items()
                         if other != name and report.reference[other] is not None]
                base = conjoin(formula, fixed)
                try:
                    if strategy == IntervalStrategy.LINEAR_SCAN:
                        bound = self._linear_scan(oracle, base, name, term, start)
                    else:
                        bound = self._bracket_bisection(oracle, base, name, term, start)
                    if self.check_contiguity:
                        bound = self._probe_contiguity(oracle, base, term, bound)
                except OracleUnknown as e:
                    report.unresolved.append(name)
                    logger.warning("Unresolved '%s': %s", name, e)
                    continue
                except ConfigurationError as e:
                    report.errors[name] = str(e)
                    logger.warning("Error on '%s': %s", name, e)
                    continue

                logger.info("%s", bound.to_string())
                report.bounds[name] = bound

        return report

    def _sat_at(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef, value: int) -> bool:
        return oracle.is_satisfiable(conjoin(base, [term == IntVal(value, term.ctx)]))

    # -- linear scan ------------------------------------------------------

    def _scan(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef,
              start: int, direction: int) -> Tuple[int, BoundStatus]:
        last_sat = start
        for step in range(1, self.horizon + 1):
            value = start + direction * step
            if value < self.int_min or value > self.int_max:
                break
            if not self._sat_at(oracle, base, term, value):
                return last_sat, BoundStatus.EXACT
            last_sat = value
        return last_sat, BoundStatus.HORIZON

    def _linear_scan(self, oracle: Z3Oracle, base: BoolRef, name: str,
                     term: ExprRef, start: int) -> Bound:
        lower, lower_status = self._scan(oracle, base, term, start, -1)
        upper, upper_status = self._scan(oracle, base, term, start, +1)
        return Bound(name, lower, upper, lower_status, upper_status, start,
                     IntervalStrategy.LINEAR_SCAN)

    # -- bracket + bisection ----------------------------------------------

    def _clamp(self, value: int) -> int:
        return max(self.int_min, min(self.int_max, value))

    def _bracket(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef,
                 start: int, direction: int) -> Tuple[int, Optional[int]]:
        """
        Double outward from start. Returns (last_sat, unsat_edge);
        unsat_edge is None when the clamp limit itself is still SAT, or
        when start already lies at or past the limit.
        """
        limit = self.int_min if direction < 0 else self.int_max
        last_sat = start
        step = self.initial_step
        while (last_sat > limit) if direction < 0 else (last_sat < limit):
            probe = self._clamp(start + direction * step)
            if not self._sat_at(oracle, base, term, probe):
                return last_sat, probe
            last_sat = probe
            step *= 2
        return last_sat, None

    def _least_sat(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef,
                   low: int, high: int) -> int:
        # invariant: high is SAT, everything below low is UNSAT
        while low < high:
            mid = low + (high - low) // 2
            if self._sat_at(oracle, base, term, mid):
                high = mid
            else:
                low = mid + 1
        return low

    def _greatest_sat(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef,
                      low: int, high: int) -> int:
        # invariant: low is SAT, everything above high is UNSAT
        while low < high:
            mid = low + (high - low + 1) // 2
            if self._sat_at(oracle, base, term, mid):
                low = mid
            else:
                high = mid - 1
        return high

    def _bracket_bisection(self, oracle: Z3Oracle, base: BoolRef, name: str,
                           term: ExprRef, start: int) -> Bound:
        last_sat, edge = self._bracket(oracle, base, term, start, -1)
        if edge is None:
            logger.info("'%s' still SAT at %d, lower bound not proven", name, last_sat)
            lower, lower_status = last_sat, BoundStatus.HORIZON
        else:
            lower = self._least_sat(oracle, base, term, edge + 1, last_sat)
            lower_status = BoundStatus.EXACT

        last_sat, edge = self._bracket(oracle, base, term, start, +1)
        if edge is None:
            logger.info("'%s' still SAT at %d, upper bound not proven", name, last_sat)
            upper, upper_status = last_sat, BoundStatus.HORIZON
        else:
            upper = self._greatest_sat(oracle, base, term, last_sat, edge - 1)
            upper_status = BoundStatus.EXACT

        return Bound(name, lower, upper, lower_status, upper_status, start,
                     IntervalStrategy.BRACKET_BISECTION)

    # -- contiguity probe -------------------------------------------------

    def _probe_contiguity(self, oracle: Z3Oracle, base: BoolRef, term: ExprRef,
                          bound: Bound) -> Bound:
        """Query evenly spaced interior points; any UNSAT one is a gap"""
        span = bound.upper - bound.lower
        points = set()
        for i in range(1, self.contiguity_samples + 1):
            points.add(bound.lower + span * i // (self.contiguity_samples + 1))
        points -= {bound.lower, bound.upper, bound.reference}

        gaps = tuple(p for p in sorted(points)
                     if not self._sat_at(oracle, base, term, p))
        if gaps:
            logger.warning("'%s' has UNSAT interior points %s", bound.variable, list(gaps))
        return replace(bound, contiguity_checked=True, gaps=gaps)


def discover_integer_bounds(formula: BoolRef,
                            variables: Optional[Iterable[str]] = None,
                            strategy: IntervalStrategy = IntervalStrategy.BRACKET_BISECTION,
                            oracle: Optional[Z3Oracle] = None,
                            **settings) -> IntervalReport:
    return Z3IntervalSearch(oracle, **settings).discover(formula, variables, strategy)
