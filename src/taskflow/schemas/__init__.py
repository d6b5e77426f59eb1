"""Pydantic schemas for external wire formats."""
