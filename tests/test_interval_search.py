#!/usr/bin/env python3
"""
Tests for the Integer Interval Engine
Both strategies run against the same scenarios.
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from z3 import Int, Bool, And, Or, Not, Implies, is_and

from z3_interval_search import (
    Z3IntervalSearch, IntervalStrategy, BoundStatus, INT64_MAX, discover_integer_bounds
)
from z3_oracle import Z3Oracle, ConfigurationError, OracleUnknown, ReportStatus
from formula_variables import collect_variables

STRATEGIES = [IntervalStrategy.LINEAR_SCAN, IntervalStrategy.BRACKET_BISECTION]

x, y = Int('x'), Int('y')


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_convex_range(strategy):
    """(x >= 0) AND (x <= 10) gives exactly [0, 10]"""
    print(f"Testing convex range ({strategy.value})...")
    report = discover_integer_bounds(And(x >= 0, x <= 10), strategy=strategy)
    bound = report.bounds['x']
    print(f"  {bound.to_string()}")
    assert (bound.lower, bound.upper) == (0, 10)
    assert bound.is_exact


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_exact_value(strategy):
    """x = 5 converges to [5, 5]"""
    report = discover_integer_bounds(x == 5, strategy=strategy)
    bound = report.bounds['x']
    assert (bound.lower, bound.upper) == (5, 5)
    assert bound.is_exact
    assert bound.reference == 5


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_tight_bounds(strategy):
    report = discover_integer_bounds(And(x >= 5, x <= 5), strategy=strategy)
    assert (report.bounds['x'].lower, report.bounds['x'].upper) == (5, 5)


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_dependent_variables(strategy):
    """(y > x) AND (x >= 0): x has lower bound 0 given the reference y"""
    print(f"Testing dependent variables ({strategy.value})...")
    report = discover_integer_bounds(And(y > x, x >= 0), strategy=strategy)
    ref = report.reference
    bx, by = report.bounds['x'], report.bounds['y']
    print(f"  reference {ref}: {bx.to_string()}; {by.to_string()}")

    assert bx.lower == 0 and bx.lower_status == BoundStatus.EXACT
    assert bx.upper == ref['y'] - 1 and bx.upper_status == BoundStatus.EXACT
    assert by.lower == ref['x'] + 1 and by.lower_status == BoundStatus.EXACT
    # y has no upper bound: the search must say so rather than look exact
    assert by.upper_status == BoundStatus.HORIZON
    assert not by.is_exact


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_arithmetic_relationship(strategy):
    """y = x + 5 AND x >= 0: fixing x pins y"""
    report = discover_integer_bounds(And(y == x + 5, x >= 0), strategy=strategy)
    ref = report.reference
    assert (report.bounds['y'].lower, report.bounds['y'].upper) == (ref['x'] + 5, ref['x'] + 5)
    assert (report.bounds['x'].lower, report.bounds['x'].upper) == (ref['y'] - 5, ref['y'] - 5)


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_boolean_variables_are_fixed(strategy):
    """Other variables, boolean ones included, keep their reference values"""
    p = Bool('p')
    formula = And(Implies(p, x <= 3), Implies(Not(p), x <= 7), x >= 0)
    report = discover_integer_bounds(formula, strategy=strategy)
    expected_upper = 3 if report.reference['p'] else 7
    assert (report.bounds['x'].lower, report.bounds['x'].upper) == (0, expected_upper)


def test_linear_scan_horizon():
    """An unbounded variable stops at the horizon and is flagged approximate"""
    search = Z3IntervalSearch(horizon=20)
    report = search.discover(x >= 0, strategy=IntervalStrategy.LINEAR_SCAN)
    bound = report.bounds['x']
    if bound.reference <= 20:
        assert bound.lower == 0 and bound.lower_status == BoundStatus.EXACT
    assert bound.upper == bound.reference + 20
    assert bound.upper_status == BoundStatus.HORIZON
    assert ">=" in bound.to_string()


def test_bracket_clamps_to_range():
    """Doubling never passes the representable range"""
    search = Z3IntervalSearch(int_min=-1000, int_max=1000)
    report = search.discover(x >= -3, strategy=IntervalStrategy.BRACKET_BISECTION)
    bound = report.bounds['x']
    assert bound.lower == -3 and bound.lower_status == BoundStatus.EXACT
    assert bound.upper == 1000 and bound.upper_status == BoundStatus.HORIZON


def test_bracket_is_logarithmic():
    """Bracket + bisection needs far fewer queries than a linear scan"""
    formula = And(x >= -5000, x <= 5000)
    with Z3Oracle() as oracle:
        report = Z3IntervalSearch(oracle).discover(formula, strategy=IntervalStrategy.BRACKET_BISECTION)
        assert (report.bounds['x'].lower, report.bounds['x'].upper) == (-5000, 5000)
        assert oracle.query_count < 100


def test_reference_beyond_int64():
    """A reference value past int_max never yields an inverted or fake-exact bound"""
    print("Testing reference values above INT64_MAX...")
    big = 2 ** 64
    bound = discover_integer_bounds(x == big, strategy=IntervalStrategy.BRACKET_BISECTION).bounds['x']
    assert bound.lower == big and bound.lower_status == BoundStatus.EXACT
    assert bound.upper == big and bound.upper_status == BoundStatus.HORIZON

    low, high = INT64_MAX + 100, INT64_MAX + 110
    report = discover_integer_bounds(And(x >= low, x <= high),
                                     strategy=IntervalStrategy.BRACKET_BISECTION)
    bound = report.bounds['x']
    print(f"  {bound.to_string()}")
    assert bound.lower == low and bound.lower_status == BoundStatus.EXACT
    assert bound.lower <= bound.upper
    assert bound.upper_status == BoundStatus.HORIZON


def test_convexity_unchecked_by_default():
    formula = Or(x == 0, x == 2)
    report = discover_integer_bounds(formula, strategy=IntervalStrategy.LINEAR_SCAN)
    assert report.bounds['x'].contiguous is None


def test_gap_is_reported():
    """x = 0 or x = 2: bisection spans both, the contiguity check finds the hole at 1"""
    print("Testing gap detection...")
    search = Z3IntervalSearch(check_contiguity=True)
    report = search.discover(Or(x == 0, x == 2), strategy=IntervalStrategy.BRACKET_BISECTION)
    bound = report.bounds['x']
    print(f"  {bound.to_string()}")
    assert (bound.lower, bound.upper) == (0, 2)
    assert bound.contiguous is False
    assert bound.gaps == (1,)
    assert "not contiguous" in bound.to_string()


def test_contiguous_range_passes_check():
    search = Z3IntervalSearch(check_contiguity=True)
    report = search.discover(And(x >= 0, x <= 100))
    assert report.bounds['x'].contiguous is True


class StallingOracle(Z3Oracle):
    """Answers unknown whenever a query pins down the named variable"""

    def __init__(self, stalled):
        super().__init__()
        self.stalled = stalled

    def _check(self, formula):
        if is_and(formula) and any(self.stalled in collect_variables(c)
                                   for c in formula.children()[1:]):
            raise OracleUnknown(f"gave up on {self.stalled}")
        return super()._check(formula)


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_unknown_answer_leaves_variable_unresolved(strategy):
    """An oracle giving up on x only drops x; y still gets its bound"""
    formula = Not(Or(x < 0, x > 5, y < 1, y > 3))
    with StallingOracle('x') as oracle:
        report = Z3IntervalSearch(oracle).discover(formula, strategy=strategy)
    assert report.status == ReportStatus.OK
    assert report.unresolved == ['x']
    assert 'x' not in report.bounds
    assert (report.bounds['y'].lower, report.bounds['y'].upper) == (1, 3)
    assert report.bounds['y'].is_exact


def test_unsatisfiable_formula():
    """UNSAT base formula: NO_SOLUTION after a single query"""
    for strategy in STRATEGIES:
        with Z3Oracle() as oracle:
            report = Z3IntervalSearch(oracle).discover(And(x > 3, x < 2), strategy=strategy)
            assert report.status == ReportStatus.NO_SOLUTION
            assert report.bounds == {}
            assert oracle.query_count <= 1


def test_no_variables_and_bad_variables():
    p = Bool('p')
    assert discover_integer_bounds(p).status == ReportStatus.NO_VARIABLES

    report = discover_integer_bounds(And(p, x == 2), variables=['p', 'x'])
    assert 'p' in report.errors
    assert (report.bounds['x'].lower, report.bounds['x'].upper) == (2, 2)


def test_invalid_settings():
    with pytest.raises(ConfigurationError):
        Z3IntervalSearch(horizon=0)
    with pytest.raises(ConfigurationError):
        Z3IntervalSearch(initial_step=0)
    with pytest.raises(ConfigurationError):
        Z3IntervalSearch(int_min=5, int_max=5)


def main():
    """Run all tests"""
    print("=" * 60)
    print("Integer Interval Engine - Test Suite")
    print("=" * 60)

    tests = []
    for strategy in STRATEGIES:
        tests.extend([
            (f"Convex range ({strategy.value})", lambda s=strategy: test_convex_range(s)),
            (f"Exact value ({strategy.value})", lambda s=strategy: test_exact_value(s)),
            (f"Tight bounds ({strategy.value})", lambda s=strategy: test_tight_bounds(s)),
            (f"Dependent variables ({strategy.value})", lambda s=strategy: test_dependent_variables(s)),
            (f"Arithmetic ({strategy.value})", lambda s=strategy: test_arithmetic_relationship(s)),
            (f"Boolean fixing ({strategy.value})", lambda s=strategy: test_boolean_variables_are_fixed(s)),
            (f"Unknown answer ({strategy.value})",
             lambda s=strategy: test_unknown_answer_leaves_variable_unresolved(s)),
        ])
    tests.extend([
        ("Linear scan horizon", test_linear_scan_horizon),
        ("Bracket clamping", test_bracket_clamps_to_range),
        ("Bracket query count", test_bracket_is_logarithmic),
        ("Reference beyond int64", test_reference_beyond_int64),
        ("Unchecked convexity", test_convexity_unchecked_by_default),
        ("Gap detection", test_gap_is_reported),
        ("Contiguous check", test_contiguous_range_passes_check),
        ("Unsatisfiable formula", test_unsatisfiable_formula),
        ("Variable selection", test_no_variables_and_bad_variables),
        ("Invalid settings", test_invalid_settings),
    ])

    passed = 0
    failed = 0

    for name, test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as e:
            print(f"\n✗ {name} test failed: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    print("=" * 60)

    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
