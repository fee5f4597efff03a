"""
Private sessions feature package.

Keeps the session/key lifecycle together: domain models, the Postgres
repository, the manager, job producers, and the queue handlers that run in
the worker.
"""

from .domain.models import Session, SessionKey, WrappedKey  # noqa: F401
from .services.scheduler import SessionJobScheduler  # noqa: F401
from .services.session_manager import SessionKeyManager  # noqa: F401
