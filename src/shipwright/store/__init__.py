"""Durable state store (SQLAlchemy)."""

from __future__ import annotations

from shipwright.store.repository import ManagedResource, StateStore

__all__ = ["ManagedResource", "StateStore"]
