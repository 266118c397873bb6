"""State management helpers for nodeprojctl."""
from __future__ import annotations

from .registry import ProjectRegistry, RegistryError

__all__ = ["ProjectRegistry", "RegistryError"]
