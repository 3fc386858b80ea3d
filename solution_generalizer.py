"""
Solution Generalization Tool
Turns one satisfiable SMT formula into machine-checked facts about all
of its solutions.

Supports:
- Boolean fixed values and implications (direct-query or model-sampling)
- Integer intervals (linear-scan or bracket-bisection)
- Checking user-supplied candidate invariants by negation test
"""

import sys
import json
import logging
from typing import Iterable, List, Optional

from z3 import BoolRef

from candidate_invariant import CandidateInvariant, parse_candidate
from formula_variables import VariableCollector
from generalization_report import GeneralizationReport
from negation_verifier import NegationTestVerifier
from z3_boolean_relations import (
    Z3BooleanRelationEngine, BooleanStrategy, DEFAULT_SAMPLE_LIMIT
)
from z3_interval_search import (
    Z3IntervalSearch, IntervalStrategy, DEFAULT_HORIZON, DEFAULT_INITIAL_STEP
)
from z3_oracle import Z3Oracle, ConfigurationError, OracleError, as_formula

logger = logging.getLogger(__name__)


class SolutionGeneralizer:
    """
    Runs the engines over one oracle session per call.
    """

    def __init__(self, sample_limit: int = DEFAULT_SAMPLE_LIMIT,
                 horizon: int = DEFAULT_HORIZON,
                 initial_step: int = DEFAULT_INITIAL_STEP,
                 check_contiguity: bool = False,
                 timeout_ms: Optional[int] = None):
        # validate eagerly so bad settings fail before any query
        Z3BooleanRelationEngine(sample_limit=sample_limit)
        Z3IntervalSearch(horizon=horizon, initial_step=initial_step)
        self.sample_limit = sample_limit
        self.horizon = horizon
        self.initial_step = initial_step
        self.check_contiguity = check_contiguity
        self.timeout_ms = timeout_ms
        self.collector = VariableCollector()

    def generalize(self, formula,
                   boolean_strategy: Optional[BooleanStrategy] = BooleanStrategy.DIRECT_QUERY,
                   interval_strategy: Optional[IntervalStrategy] = IntervalStrategy.BRACKET_BISECTION,
                   candidates: Iterable[CandidateInvariant] = (),
                   variables: Optional[Iterable[str]] = None) -> GeneralizationReport:
        """
        Analyze `formula` (z3 expression, assertion list or SMT-LIB text).
        Pass None for a strategy to skip that engine.
        """
        formula = as_formula(formula)
        variables = list(variables) if variables is not None else None
        report = GeneralizationReport()

        with Z3Oracle(timeout_ms=self.timeout_ms) as oracle:
            if boolean_strategy is not None:
                engine = Z3BooleanRelationEngine(oracle, sample_limit=self.sample_limit,
                                                 collector=self.collector)
                report.boolean = engine.discover(
                    formula, self._applicable(formula, variables, bool_sort=True),
                    boolean_strategy)

            if interval_strategy is not None:
                search = Z3IntervalSearch(oracle, horizon=self.horizon,
                                          initial_step=self.initial_step,
                                          check_contiguity=self.check_contiguity,
                                          collector=self.collector)
                report.intervals = search.discover(
                    formula, self._applicable(formula, variables, bool_sort=False),
                    interval_strategy)

            candidates = list(candidates)
            if candidates:
                verifier = NegationTestVerifier(oracle, self.collector)
                report.verifications = verifier.verify_all(formula, candidates)

            logger.info("Generalization used %d oracle queries", oracle.query_count)

        return report

    def _applicable(self, formula: BoolRef, variables: Optional[List[str]],
                    bool_sort: bool) -> Optional[List[str]]:
        """
        With a mixed user selection, hand each engine only the names that
        are declared with its sort (undeclared names go to both).
        """
        if variables is None:
            return None
        declared = self.collector.variables(formula)
        wanted = (self.collector.boolean_variables(formula) if bool_sort
                  else self.collector.integer_variables(formula))
        return [v for v in variables if v in wanted or v not in declared]

    def generalize_file(self, path: str, **options) -> GeneralizationReport:
        """Read an SMT-LIB file and analyze it"""
        try:
            with open(path, 'r') as f:
                source = f.read()
        except OSError as e:
            raise ConfigurationError(f"cannot read {path}: {e}") from e
        return self.generalize(source, **options)


BOOLEAN_CHOICES = {s.value: s for s in BooleanStrategy}
INTERVAL_CHOICES = {s.value: s for s in IntervalStrategy}


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface"""
    import argparse

    parser = argparse.ArgumentParser(
        description='Generalize the solutions of an SMT-LIB formula',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  solution-generalizer problem.smt2
  solution-generalizer problem.smt2 --boolean model-sampling --samples 50
  solution-generalizer problem.smt2 --interval linear-scan --horizon 200
  solution-generalizer problem.smt2 --verify "x in [0, 10]" --verify "p = true"

Notes:
  - direct-query facts are proofs; model-sampling facts are marked (sampled)
  - interval ends marked <= / >= hit the search horizon and are not proven
  - intervals assume the satisfiable values are contiguous; use
    --check-contiguity to probe for gaps
        """
    )
    parser.add_argument('input', help='SMT-LIB 2 file')
    parser.add_argument('-b', '--boolean', choices=sorted(BOOLEAN_CHOICES) + ['none'],
                        default=BooleanStrategy.DIRECT_QUERY.value,
                        help='Boolean strategy (default: direct-query)')
    parser.add_argument('-i', '--interval', choices=sorted(INTERVAL_CHOICES) + ['none'],
                        default=IntervalStrategy.BRACKET_BISECTION.value,
                        help='Integer interval strategy (default: bracket-bisection)')
    parser.add_argument('--var', action='append', dest='variables',
                        help='Restrict analysis to this variable (repeatable)')
    parser.add_argument('--samples', type=int, default=DEFAULT_SAMPLE_LIMIT,
                        help=f'Model cap for model-sampling (default: {DEFAULT_SAMPLE_LIMIT})')
    parser.add_argument('--horizon', type=int, default=DEFAULT_HORIZON,
                        help=f'Linear scan steps per direction (default: {DEFAULT_HORIZON})')
    parser.add_argument('--initial-step', type=int, default=DEFAULT_INITIAL_STEP,
                        help=f'First bracket step (default: {DEFAULT_INITIAL_STEP})')
    parser.add_argument('--check-contiguity', action='store_true',
                        help='Probe interior points of each interval for gaps')
    parser.add_argument('--verify', action='append', default=[], metavar='CANDIDATE',
                        help='Candidate invariant to check, e.g. "x = 5" (repeatable)')
    parser.add_argument('--timeout', type=int, default=None, metavar='MS',
                        help='Per-query solver timeout in milliseconds')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        candidates = [parse_candidate(text) for text in args.verify]
        generalizer = SolutionGeneralizer(
            sample_limit=args.samples,
            horizon=args.horizon,
            initial_step=args.initial_step,
            check_contiguity=args.check_contiguity,
            timeout_ms=args.timeout
        )
        report = generalizer.generalize_file(
            args.input,
            boolean_strategy=BOOLEAN_CHOICES.get(args.boolean),
            interval_strategy=INTERVAL_CHOICES.get(args.interval),
            candidates=candidates,
            variables=args.variables
        )
    except (ConfigurationError, OracleError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.to_string())

    return 0


if __name__ == "__main__":
    sys.exit(main())
