"""Bounded stores owned by the error-handling components."""

from .bounded_store import InMemoryBoundedStore

__all__ = ["InMemoryBoundedStore"]
