"""
Service layer for private sessions.
"""

from .scheduler import SessionJobScheduler
from .session_manager import SessionKeyManager

__all__ = ["SessionJobScheduler", "SessionKeyManager"]
