"""Application services: configuration, result cache, aggregation."""
