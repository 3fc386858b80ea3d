"""
Negation-Test Verifier
Proves or refutes a candidate invariant against the full formula.

A candidate holds for every solution of F exactly when
F AND candidate.negate() is unsatisfiable. A satisfying model of that
conjunction is a counterexample.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from z3 import BoolRef

from candidate_invariant import CandidateInvariant
from formula_variables import VariableCollector, default_collector
from z3_oracle import (
    Z3Oracle, ConfigurationError, OracleUnknown, conjoin, model_to_assignment
)

logger = logging.getLogger(__name__)


class VerificationStatus(Enum):
    HOLDS = "holds"
    VIOLATED = "violated"
    ERROR = "error"


@dataclass
class VerificationOutcome:
    """Result of one negation test"""
    status: VerificationStatus
    candidate: Optional[CandidateInvariant]
    counterexample: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @property
    def holds(self) -> bool:
        return self.status == VerificationStatus.HOLDS

    def to_string(self) -> str:
        label = self.candidate.to_string() if self.candidate else "<candidate>"
        if self.status == VerificationStatus.HOLDS:
            return f"{label}: holds for every solution"
        if self.status == VerificationStatus.VIOLATED:
            witness = ", ".join(f"{k} = {_fmt(v)}" for k, v in (self.counterexample or {}).items())
            return f"{label}: violated (counterexample: {witness or 'any model'})"
        return f"{label}: error ({self.reason})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate.to_string() if self.candidate else None,
            "status": self.status.value,
            "counterexample": self.counterexample,
            "reason": self.reason,
        }


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class NegationTestVerifier:
    """Runs negation tests against one oracle session"""

    def __init__(self, oracle: Optional[Z3Oracle] = None,
                 collector: Optional[VariableCollector] = None):
        self.oracle = oracle
        self.collector = collector or default_collector

    def _session(self):
        if self.oracle is not None:
            return nullcontext(self.oracle)
        return Z3Oracle()

    def check(self, formula: BoolRef, candidate: CandidateInvariant) -> VerificationOutcome:
        """
        HOLDS or VIOLATED. Raises ConfigurationError if the query cannot be
        built or the oracle rejects it, OracleUnknown if the oracle gives up.
        """
        declarations = self.collector.variables(formula)
        negation = candidate.negate(declarations)
        test_formula = conjoin(formula, [negation])

        with self._session() as oracle:
            model = oracle.get_model(test_formula)
            if model is None:
                logger.info("%s holds", candidate.to_string())
                return VerificationOutcome(VerificationStatus.HOLDS, candidate)

            counterexample = model_to_assignment(oracle, model, declarations)
            logger.info("%s violated by %s", candidate.to_string(), counterexample)
            return VerificationOutcome(VerificationStatus.VIOLATED, candidate,
                                       counterexample=counterexample)

    def verify(self, formula: BoolRef, candidate: CandidateInvariant) -> VerificationOutcome:
        """Like check(), but a configuration problem becomes an ERROR outcome"""
        try:
            return self.check(formula, candidate)
        except (ConfigurationError, OracleUnknown) as e:
            logger.warning("Cannot verify %s: %s", candidate, e)
            return VerificationOutcome(VerificationStatus.ERROR, candidate, reason=str(e))

    def verify_all(self, formula: BoolRef,
                   candidates: Iterable[CandidateInvariant]) -> List[VerificationOutcome]:
        with self._session() as oracle:
            verifier = NegationTestVerifier(oracle, self.collector)
            return [verifier.verify(formula, c) for c in candidates]


def verify(formula: BoolRef, candidate: CandidateInvariant,
           oracle: Optional[Z3Oracle] = None) -> VerificationOutcome:
    """verify(formula, candidate) -> HOLDS | VIOLATED(counterexample) | ERROR(reason)"""
    return NegationTestVerifier(oracle).verify(formula, candidate)
