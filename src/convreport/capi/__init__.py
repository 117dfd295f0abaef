"""Conversions API: event expansion, batching and dispatch."""
