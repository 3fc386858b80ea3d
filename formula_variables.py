"""
Variable extraction for z3 formulas.
Collects every free 0-arity Bool/Int constant by walking the term tree.
"""

import logging
from typing import Dict, List, Tuple

from z3 import (
    ExprRef, BoolRef, is_app, is_quantifier, is_bool, is_int,
    Z3_OP_UNINTERPRETED
)

logger = logging.getLogger(__name__)


def _is_free_constant(term: ExprRef) -> bool:
    return (is_app(term)
            and term.num_args() == 0
            and term.decl().kind() == Z3_OP_UNINTERPRETED)


def collect_variables(formula: ExprRef) -> Dict[str, ExprRef]:
    """
    Return {name: constant} for all Bool and Int constants in `formula`.

    Iterative walk; shared subterms are visited once. Bound variables of
    quantifiers are de Bruijn indices and never show up as constants.
    """
    found: Dict[str, ExprRef] = {}
    seen = set()
    stack = [formula]

    while stack:
        term = stack.pop()
        key = term.get_id()
        if key in seen:
            continue
        seen.add(key)

        if is_quantifier(term):
            stack.append(term.body())
            continue

        if _is_free_constant(term):
            if is_bool(term) or is_int(term):
                found[term.decl().name()] = term
            continue

        if is_app(term):
            stack.extend(term.children())

    return dict(sorted(found.items()))


class VariableCollector:
    """Memoizes collect_variables per (structurally equal) formula"""

    def __init__(self):
        self._cache: Dict[int, List[Tuple[ExprRef, Dict[str, ExprRef]]]] = {}

    def variables(self, formula: BoolRef) -> Dict[str, ExprRef]:
        bucket = self._cache.setdefault(formula.hash(), [])
        for cached_formula, variables in bucket:
            if cached_formula.eq(formula):
                return variables
        variables = collect_variables(formula)
        logger.debug("Collected %d variable(s): %s", len(variables), list(variables))
        bucket.append((formula, variables))
        return variables

    def boolean_variables(self, formula: BoolRef) -> Dict[str, ExprRef]:
        return {n: t for n, t in self.variables(formula).items() if is_bool(t)}

    def integer_variables(self, formula: BoolRef) -> Dict[str, ExprRef]:
        return {n: t for n, t in self.variables(formula).items() if is_int(t)}


default_collector = VariableCollector()
