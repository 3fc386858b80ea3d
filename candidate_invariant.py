"""
Candidate invariants: conjectured properties of every solution of a formula.

Three shapes are supported:
- fixed value:       x = 5
- boolean polarity:  p is always true
- integer interval:  x in [0, 10]

Each candidate can build its own negation; the negation-test verifier
conjoins that with the formula and asks the oracle.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from z3 import Bool, Int, IntVal, BoolRef, ExprRef, Or, Not, is_bool, is_int

from z3_oracle import ConfigurationError, sort_name


class CandidateKind(Enum):
    FIXED_VALUE = "fixed-value"
    BOOLEAN_POLARITY = "boolean-polarity"
    INTERVAL = "interval"


@dataclass(frozen=True)
class CandidateInvariant:
    """Base for the three candidate shapes"""
    variable: str

    kind = None  # set by each subclass

    def __post_init__(self):
        if not isinstance(self.variable, str) or not self.variable:
            raise ConfigurationError(f"candidate variable must be a non-empty name, got {self.variable!r}")

    def _term(self, declarations: Optional[Dict[str, ExprRef]]) -> ExprRef:
        """Resolve the variable, checking its declared sort if known"""
        if declarations and self.variable in declarations:
            term = declarations[self.variable]
            if not self._accepts(term):
                raise ConfigurationError(
                    f"{self.to_string()}: variable '{self.variable}' is declared "
                    f"{sort_name(term)}, candidate needs {self._sort_label()}"
                )
            return term
        return self._fresh_term()

    def _accepts(self, term: ExprRef) -> bool:
        return is_int(term)

    def _sort_label(self) -> str:
        return "Int"

    def _fresh_term(self) -> ExprRef:
        return Int(self.variable)

    def negate(self, declarations: Optional[Dict[str, ExprRef]] = None) -> BoolRef:
        raise NotImplementedError

    def to_string(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class FixedValue(CandidateInvariant):
    value: int

    kind = CandidateKind.FIXED_VALUE

    def __post_init__(self):
        super().__post_init__()
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ConfigurationError(f"fixed value for '{self.variable}' must be an integer, got {self.value!r}")

    def negate(self, declarations: Optional[Dict[str, ExprRef]] = None) -> BoolRef:
        term = self._term(declarations)
        return term != IntVal(self.value, term.ctx)

    def to_string(self) -> str:
        return f"{self.variable} = {self.value}"


@dataclass(frozen=True)
class BooleanPolarity(CandidateInvariant):
    polarity: bool

    kind = CandidateKind.BOOLEAN_POLARITY

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.polarity, bool):
            raise ConfigurationError(f"polarity for '{self.variable}' must be a bool, got {self.polarity!r}")

    def _accepts(self, term: ExprRef) -> bool:
        return is_bool(term)

    def _sort_label(self) -> str:
        return "Bool"

    def _fresh_term(self) -> ExprRef:
        return Bool(self.variable)

    def negate(self, declarations: Optional[Dict[str, ExprRef]] = None) -> BoolRef:
        term = self._term(declarations)
        # always true is refuted by a model with p = false, and vice versa
        return Not(term) if self.polarity else term

    def to_string(self) -> str:
        return f"{self.variable} is always {'true' if self.polarity else 'false'}"


@dataclass(frozen=True)
class Interval(CandidateInvariant):
    lower: int
    upper: int

    kind = CandidateKind.INTERVAL

    def __post_init__(self):
        super().__post_init__()
        for bound in (self.lower, self.upper):
            if isinstance(bound, bool) or not isinstance(bound, int):
                raise ConfigurationError(f"interval bounds for '{self.variable}' must be integers, got {bound!r}")
        if self.lower > self.upper:
            raise ConfigurationError(
                f"empty interval for '{self.variable}': lower {self.lower} > upper {self.upper}"
            )

    def negate(self, declarations: Optional[Dict[str, ExprRef]] = None) -> BoolRef:
        term = self._term(declarations)
        ctx = term.ctx
        return Or(term < IntVal(self.lower, ctx), term > IntVal(self.upper, ctx))

    def to_string(self) -> str:
        return f"{self.variable} in [{self.lower}, {self.upper}]"


_NAME = r'([A-Za-z_][\w.!$@-]*|\|[^|]+\|)'

_INTERVAL_RE = re.compile(rf'^\s*{_NAME}\s+in\s+\[\s*(-?\d+)\s*,\s*(-?\d+)\s*\]\s*$')
_ALWAYS_RE = re.compile(rf'^\s*{_NAME}\s+is\s+always\s+(true|false)\s*$', re.IGNORECASE)
_EQUALS_RE = re.compile(rf'^\s*{_NAME}\s*==?\s*(-?\d+|true|false)\s*$', re.IGNORECASE)


def _strip_bars(name: str) -> str:
    if name.startswith('|') and name.endswith('|'):
        return name[1:-1]
    return name


def parse_candidate(text: str) -> CandidateInvariant:
    """
    Build a candidate from text.

    Accepted forms: "x = 5", "p = true", "p is always false",
    "x in [0, 10]".
    """
    match = _INTERVAL_RE.match(text)
    if match:
        return Interval(_strip_bars(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = _ALWAYS_RE.match(text)
    if match:
        return BooleanPolarity(_strip_bars(match.group(1)), match.group(2).lower() == "true")

    match = _EQUALS_RE.match(text)
    if match:
        name, value = _strip_bars(match.group(1)), match.group(2).lower()
        if value in ("true", "false"):
            return BooleanPolarity(name, value == "true")
        return FixedValue(name, int(value))

    raise ConfigurationError(f"cannot parse candidate invariant: {text!r}")
