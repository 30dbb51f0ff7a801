"""
GRC Risk: Hierarchical risk aggregation and residual-risk engine.

Architecture:
    grcrisk/
    ├── db/              # SQLAlchemy models, engine, bulk queries
    ├── engine/          # Pure computation (residual, strategy, hierarchy, rollup)
    ├── schemas/         # Pydantic response models
    ├── services/        # Config provider, result cache, aggregation service
    └── scripts/         # Operational entry points (config seeding, batch recompute)

Module Boundaries:
    - Record CRUD, auth, notifications and HTTP live in the surrounding service
    - The engine only reads risks, controls, links and the organizational tree
    - The only write is the denormalized residual on risk-control links

Data Flow:
    Config Provider + bulk reads → Residual Calculator → Org Index + Strategy
    → Hierarchical Rollup → Result Cache → callers

Version: 1.0.0
"""

__version__ = "1.0.0"
