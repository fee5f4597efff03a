"""
Queue handlers for the private sessions feature.
"""

from .recipient_fanout_job import RecipientFanoutHandler
from .session_jobs import DeleteSessionKeysHandler, RevokeSessionHandler, UpdateSessionKeysHandler

__all__ = [
    "DeleteSessionKeysHandler",
    "RecipientFanoutHandler",
    "RevokeSessionHandler",
    "UpdateSessionKeysHandler",
]
