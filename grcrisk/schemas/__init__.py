"""Pydantic response models."""
