"""Ilyzlist drawing-analysis service: plans, quotas and subscription billing."""

__version__ = "1.0.0"

__all__ = ["__version__"]
