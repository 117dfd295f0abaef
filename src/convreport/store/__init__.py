"""Durable store and lookup adapters."""
