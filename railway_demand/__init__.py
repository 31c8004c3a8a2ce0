"""Batched fetch and aggregation of railway logistics demand records."""

__version__ = "0.1.0"
