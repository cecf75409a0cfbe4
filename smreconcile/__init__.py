"""Reconcilers, a training-job spawner and an in-memory object store for tuning jobs and models."""

__version__ = "0.1.0"

__all__ = ["__version__"]