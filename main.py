#!/usr/bin/env python3
"""
Solution Generalization
Main entry point.

Usage:
  python main.py <file.smt2>                          # Boolean relations + integer bounds
  python main.py <file.smt2> --boolean model-sampling # Sample models instead of proving
  python main.py <file.smt2> --verify "x in [0, 10]"  # Check a candidate invariant
"""

import sys
import os

# Ensure we can import from current directory
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from solution_generalizer import main

if __name__ == "__main__":
    sys.exit(main())
