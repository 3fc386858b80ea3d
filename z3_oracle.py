"""
Z3 Oracle Wrapper for Solution Generalization
Answers SAT/UNSAT questions and hands out models.

Every query runs on a fresh Solver, so no assertion survives from one query
to the next. The engines only ever compose formulas and ask this class.
"""

import logging
import threading
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from z3 import (
    Solver, BoolRef, ExprRef, ModelRef, And, Z3Exception,
    sat, unsat, is_true, is_false, is_int_value, is_bool, is_int,
    parse_smt2_string
)

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """Base class for failures coming out of the oracle"""


class OracleUnavailable(OracleError):
    """The session could not be created or is no longer usable"""


class OracleUnknown(OracleError):
    """The solver gave up (timeout or incompleteness)"""


class ConfigurationError(Exception):
    """Malformed input: bad candidate, sort mismatch, unparsable formula"""


class ReportStatus(Enum):
    """Overall outcome of one engine call"""
    OK = "ok"
    NO_VARIABLES = "no-variables"
    NO_SOLUTION = "no-solution"


class Z3Oracle:
    """
    One oracle session.

    Use it as a context manager so the session is released on every exit
    path. A session serves one call site at a time.
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        if timeout_ms is not None and timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be positive, got {timeout_ms}")
        self.timeout_ms = timeout_ms
        self.query_count = 0
        self._closed = False
        self._in_use = threading.Lock()

    def __enter__(self) -> "Z3Oracle":
        if self._closed:
            raise OracleUnavailable("oracle session already closed")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if not self._closed:
            logger.debug("Closing oracle session after %d queries", self.query_count)
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check(self, formula: BoolRef) -> Any:
        if self._closed:
            raise OracleUnavailable("oracle session already closed")
        if not self._in_use.acquire(blocking=False):
            raise OracleUnavailable("oracle session is already serving another query")
        try:
            try:
                s = Solver(ctx=formula.ctx)
                if self.timeout_ms is not None:
                    s.set("timeout", self.timeout_ms)
                s.add(formula)
                self.query_count += 1
                result = s.check()
            except Z3Exception as e:
                raise ConfigurationError(f"oracle rejected query: {e}") from e
            logger.debug("Query #%d -> %s", self.query_count, result)
            if result == sat:
                return s
            if result == unsat:
                return None
            raise OracleUnknown(f"solver returned unknown: {s.reason_unknown()}")
        finally:
            self._in_use.release()

    def is_satisfiable(self, formula: BoolRef) -> bool:
        return self._check(formula) is not None

    def is_unsatisfiable(self, formula: BoolRef) -> bool:
        """Logically `not is_satisfiable`; kept separate for readable call sites"""
        return self._check(formula) is None

    def get_model(self, formula: BoolRef) -> Optional[ModelRef]:
        """Return one satisfying model, or None iff the formula is UNSAT"""
        s = self._check(formula)
        if s is None:
            return None
        return s.model()

    def evaluate(self, model: ModelRef, term: ExprRef,
                 model_completion: bool = True) -> Any:
        """
        Evaluate `term` in `model` and convert to a Python value.

        Returns bool or int for literal results. With model_completion off,
        a term the model leaves unconstrained comes back as None.
        """
        try:
            value = model.eval(term, model_completion=model_completion)
        except Z3Exception as e:
            raise ConfigurationError(f"cannot evaluate {term}: {e}") from e
        return python_value(value)


def python_value(value: ExprRef) -> Any:
    """Convert a z3 literal to bool/int, anything else to None"""
    if is_true(value):
        return True
    if is_false(value):
        return False
    if is_int_value(value):
        return value.as_long()
    return None


def conjoin(formula: BoolRef, extra: Iterable[BoolRef]) -> BoolRef:
    """formula AND extra..., without building an empty conjunction"""
    extra = list(extra)
    if not extra:
        return formula
    return And(formula, *extra)


def model_to_assignment(oracle: Z3Oracle, model: ModelRef,
                        variables: Dict[str, ExprRef]) -> Dict[str, Any]:
    """Project a model onto the given declared variables"""
    return {name: oracle.evaluate(model, term)
            for name, term in sorted(variables.items())}


def as_formula(source: Any) -> BoolRef:
    """
    Accept a z3 boolean expression, a list/AstVector of assertions or
    SMT-LIB 2 text and return a single boolean formula.
    """
    if isinstance(source, str):
        try:
            assertions = parse_smt2_string(source)
        except Z3Exception as e:
            raise ConfigurationError(f"invalid SMT-LIB input: {e}") from e
        source = list(assertions)

    if isinstance(source, ExprRef):
        if not is_bool(source):
            raise ConfigurationError(f"formula must be boolean, got sort {source.sort()}")
        return source

    try:
        items: List[ExprRef] = list(source)
    except TypeError:
        raise ConfigurationError(f"unsupported formula type: {type(source).__name__}")

    if not items:
        raise ConfigurationError("empty assertion list")
    for item in items:
        if not isinstance(item, ExprRef) or not is_bool(item):
            raise ConfigurationError(f"assertion is not a boolean expression: {item}")
    if len(items) == 1:
        return items[0]
    return And(*items)


def sort_name(term: ExprRef) -> str:
    if is_bool(term):
        return "Bool"
    if is_int(term):
        return "Int"
    return str(term.sort())
