"""
Boolean Relation Engine
Discovers fixed values and implications among boolean variables.

Two strategies share one report shape:
- DIRECT_QUERY: one UNSAT query per fact. Sound and complete for the
  shapes it looks for: O(n) queries for fixed values, O(n^2) for pairs.
- MODEL_SAMPLING: draws up to `sample_limit` distinct models using
  blocking clauses and keeps what every sample agrees on. Cheap, but the
  facts are conjectures bounded by the sample; they are always labeled
  sample_bounded and never mixed with sound facts.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from z3 import Bool, BoolRef, ExprRef, Not, Or, is_bool

from formula_variables import VariableCollector, default_collector
from z3_oracle import (
    Z3Oracle, ConfigurationError, OracleUnknown, ReportStatus, conjoin, sort_name
)

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 10


class BooleanStrategy(Enum):
    DIRECT_QUERY = "direct-query"
    MODEL_SAMPLING = "model-sampling"


class RelationKind(Enum):
    ALWAYS_TRUE = "always-true"
    ALWAYS_FALSE = "always-false"
    IMPLIES_TRUE = "implies-true"      # v1 = true implies v2 = true
    IMPLIES_FALSE = "implies-false"    # v1 = true implies v2 = false
    EQUIVALENT = "equivalent"          # v1 <=> v2


@dataclass(frozen=True)
class BooleanRelation:
    """One unary or binary fact about boolean variables"""
    kind: RelationKind
    variable: str
    other: Optional[str]
    provenance: BooleanStrategy
    sample_bounded: bool = False

    @property
    def is_fixed_value(self) -> bool:
        return self.kind in (RelationKind.ALWAYS_TRUE, RelationKind.ALWAYS_FALSE)

    @property
    def is_sound(self) -> bool:
        return not self.sample_bounded

    def to_string(self) -> str:
        if self.kind == RelationKind.ALWAYS_TRUE:
            text = f"{self.variable} is always true"
        elif self.kind == RelationKind.ALWAYS_FALSE:
            text = f"{self.variable} is always false"
        elif self.kind == RelationKind.IMPLIES_TRUE:
            text = f"{self.variable} = true implies {self.other} = true"
        elif self.kind == RelationKind.IMPLIES_FALSE:
            text = f"{self.variable} = true implies {self.other} = false"
        else:
            text = f"{self.variable} <=> {self.other}"
        if self.sample_bounded:
            text += " (sampled)"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "variable": self.variable,
            "other": self.other,
            "provenance": self.provenance.value,
            "sample_bounded": self.sample_bounded,
        }


@dataclass
class BooleanReport:
    """Outcome of one boolean analysis call"""
    strategy: BooleanStrategy
    status: ReportStatus
    variables: List[str] = field(default_factory=list)
    relations: List[BooleanRelation] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)
    models_sampled: int = 0
    exhaustive: bool = False

    @property
    def fixed_values(self) -> Dict[str, bool]:
        return {r.variable: r.kind == RelationKind.ALWAYS_TRUE
                for r in self.relations if r.is_fixed_value}

    def implications(self) -> List[BooleanRelation]:
        return [r for r in self.relations
                if r.kind in (RelationKind.IMPLIES_TRUE, RelationKind.IMPLIES_FALSE)]

    def has(self, kind: RelationKind, variable: str, other: Optional[str] = None) -> bool:
        return any(r.kind == kind and r.variable == variable and r.other == other
                   for r in self.relations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "status": self.status.value,
            "variables": list(self.variables),
            "relations": [r.to_dict() for r in self.relations],
            "errors": dict(self.errors),
            "unresolved": list(self.unresolved),
            "models_sampled": self.models_sampled,
            "exhaustive": self.exhaustive,
        }


def _equivalences(relations: List[BooleanRelation], strategy: BooleanStrategy,
                  sample_bounded: bool) -> List[BooleanRelation]:
    """v1 <=> v2 for every pair with implications in both directions"""
    forward = {(r.variable, r.other) for r in relations
               if r.kind == RelationKind.IMPLIES_TRUE}
    result = []
    for v1, v2 in sorted(forward):
        if v1 < v2 and (v2, v1) in forward:
            result.append(BooleanRelation(RelationKind.EQUIVALENT, v1, v2,
                                          strategy, sample_bounded))
    return result


class Z3BooleanRelationEngine:
    """
    Discovers boolean relations for a formula.

    sample_limit caps MODEL_SAMPLING. A larger cap makes the conjectures
    more likely to be right but never makes them proofs, unless the oracle
    runs out of models first (reported as `exhaustive`).
    """

    def __init__(self, oracle: Optional[Z3Oracle] = None,
                 sample_limit: int = DEFAULT_SAMPLE_LIMIT,
                 collector: Optional[VariableCollector] = None):
        if sample_limit < 1:
            raise ConfigurationError(f"sample_limit must be >= 1, got {sample_limit}")
        self.oracle = oracle
        self.sample_limit = sample_limit
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
            return {n: t for n, t in declared.items() if is_bool(t)}

        resolved = {}
        for name in sorted(set(variables)):
            term = declared.get(name)
            if term is None:
                resolved[name] = Bool(name, formula.ctx)
            elif is_bool(term):
                resolved[name] = term
            else:
                errors[name] = f"declared {sort_name(term)}, expected Bool"
                logger.warning("Skipping '%s': %s", name, errors[name])
        return resolved

    def discover(self, formula: BoolRef,
                 variables: Optional[Iterable[str]] = None,
                 strategy: BooleanStrategy = BooleanStrategy.DIRECT_QUERY) -> BooleanReport:
        """Fixed values, implications and equivalences among boolean variables"""
        errors: Dict[str, str] = {}
        terms = self._resolve_variables(formula, variables, errors)
        report = BooleanReport(strategy=strategy, status=ReportStatus.OK,
                               variables=list(terms), errors=errors)

        if not terms:
            logger.info("No boolean variables to analyze")
            report.status = ReportStatus.NO_VARIABLES
            return report

        with self._session() as oracle:
            if strategy == BooleanStrategy.DIRECT_QUERY:
                self._direct_query(oracle, formula, terms, report)
            elif strategy == BooleanStrategy.MODEL_SAMPLING:
                self._model_sampling(oracle, formula, terms, report)
            else:
                raise ConfigurationError(f"unknown boolean strategy: {strategy}")

        logger.info("%s: %d relation(s) over %d variable(s)",
                    strategy.value, len(report.relations), len(terms))
        return report

    # -- direct query -----------------------------------------------------

    def _unsat(self, oracle: Z3Oracle, formula: BoolRef, *literals: BoolRef) -> bool:
        return oracle.is_unsatisfiable(conjoin(formula, literals))

    def _direct_query(self, oracle: Z3Oracle, formula: BoolRef,
                      terms: Dict[str, ExprRef], report: BooleanReport):
        strategy = BooleanStrategy.DIRECT_QUERY

        if oracle.is_unsatisfiable(formula):
            report.status = ReportStatus.NO_SOLUTION
            return

        fixed: Dict[str, bool] = {}
        broken = set()
        for name, v in terms.items():
            try:
                if self._unsat(oracle, formula, Not(v)):
                    fixed[name] = True
                elif self._unsat(oracle, formula, v):
                    fixed[name] = False
            except (ConfigurationError, OracleUnknown) as e:
                self._record_failure(report, name, e)
                broken.add(name)
                continue
            if name in fixed:
                kind = RelationKind.ALWAYS_TRUE if fixed[name] else RelationKind.ALWAYS_FALSE
                report.relations.append(BooleanRelation(kind, name, None, strategy))

        implications = []
        for name1, v1 in terms.items():
            if name1 in broken or fixed.get(name1) is False:
                # v1 can never be true: every implication from it is vacuous
                continue
            for name2, v2 in terms.items():
                if name1 == name2 or name2 in broken:
                    continue
                try:
                    if self._unsat(oracle, formula, v1, Not(v2)):
                        kind = RelationKind.IMPLIES_TRUE
                    elif self._unsat(oracle, formula, v1, v2):
                        kind = RelationKind.IMPLIES_FALSE
                    else:
                        continue
                except (ConfigurationError, OracleUnknown) as e:
                    self._record_failure(report, f"{name1} -> {name2}", e)
                    continue
                implications.append(BooleanRelation(kind, name1, name2, strategy))

        report.relations.extend(implications)
        report.relations.extend(_equivalences(implications, strategy, False))

    def _record_failure(self, report: BooleanReport, item: str, error: Exception):
        if isinstance(error, OracleUnknown):
            report.unresolved.append(item)
            logger.warning("Unresolved %s: %s", item, error)
        else:
            report.errors[item] = str(error)
            logger.warning("Error on %s: %s", item, error)

    # -- model sampling ---------------------------------------------------

    def sample_models(self, oracle: Z3Oracle, formula: BoolRef,
                      terms: Dict[str, ExprRef]) -> Tuple[List[Dict[str, Optional[bool]]], bool]:
        """
        Draw up to sample_limit distinct assignments over `terms`.

        Returns (samples, exhausted). A variable the model leaves
        unconstrained maps to None and is left out of the blocking clause.
        """
        samples: List[Dict[str, Optional[bool]]] = []
        blocking: List[BoolRef] = []

        while len(samples) < self.sample_limit:
            model = oracle.get_model(conjoin(formula, blocking))
            if model is None:
                return samples, True

            assignment = {name: oracle.evaluate(model, v, model_completion=False)
                          for name, v in terms.items()}
            samples.append(assignment)

            literals = [Not(terms[name]) if value else terms[name]
                        for name, value in assignment.items() if value is not None]
            if not literals:
                # nothing left to block: every analyzed variable is free
                break
            blocking.append(Or(*literals))

        return samples, False

    def _model_sampling(self, oracle: Z3Oracle, formula: BoolRef,
                        terms: Dict[str, ExprRef], report: BooleanReport):
        strategy = BooleanStrategy.MODEL_SAMPLING

        try:
            samples, exhausted = self.sample_models(oracle, formula, terms)
        except OracleUnknown as e:
            report.unresolved.extend(terms)
            logger.warning("Sampling stopped: %s", e)
            return

        report.models_sampled = len(samples)
        if not samples:
            report.status = ReportStatus.NO_SOLUTION
            return
        report.exhaustive = exhausted

        for name in terms:
            values = {s[name] for s in samples}
            if values == {True}:
                report.relations.append(
                    BooleanRelation(RelationKind.ALWAYS_TRUE, name, None, strategy, True))
            elif values == {False}:
                report.relations.append(
                    BooleanRelation(RelationKind.ALWAYS_FALSE, name, None, strategy, True))

        implications = []
        for name1 in terms:
            with_v1 = [s for s in samples if s[name1] is True]
            if not with_v1:
                continue
            for name2 in terms:
                if name1 == name2:
                    continue
                seen = {s[name2] for s in with_v1}
                if seen == {True}:
                    kind = RelationKind.IMPLIES_TRUE
                elif seen == {False}:
                    kind = RelationKind.IMPLIES_FALSE
                else:
                    continue
                implications.append(BooleanRelation(kind, name1, name2, strategy, True))

        report.relations.extend(implications)
        report.relations.extend(_equivalences(implications, strategy, True))


def discover_boolean_relations(formula: BoolRef,
                               variables: Optional[Iterable[str]] = None,
                               strategy: BooleanStrategy = BooleanStrategy.DIRECT_QUERY,
                               oracle: Optional[Z3Oracle] = None,
                               sample_limit: int = DEFAULT_SAMPLE_LIMIT) -> BooleanReport:
    engine = Z3BooleanRelationEngine(oracle, sample_limit=sample_limit)
    return engine.discover(formula, variables, strategy)
