"""Batched calendar operations."""
