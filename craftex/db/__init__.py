"""Persistence layer for CraftEx."""
