from .models import Session, SessionKey, WrappedKey

__all__ = ["Session", "SessionKey", "WrappedKey"]
