"""Provider interfaces for nodeprojctl."""
from __future__ import annotations

from .pm2 import Pm2Error, Pm2Provider
from .sshd import SshdError, SshdProvider

__all__ = [
    "Pm2Error",
    "Pm2Provider",
    "SshdError",
    "SshdProvider",
]
