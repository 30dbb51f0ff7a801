"""Database layer: engine, models, bulk queries."""
