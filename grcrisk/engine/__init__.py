"""
GRC Risk Engine: pure computation, no I/O.

Components:
- types: closed enumerations and the frozen input/output records
- residual: independent-reduction residual risk calculator
- strategy: average / worst_case / weighted aggregation
- hierarchy: one-pass organizational index builder
- rollup: per-node inherent/residual/count over the three-level tree
"""
