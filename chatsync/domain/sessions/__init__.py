from .models import DEFAULT_SESSION_TITLE, Session, derive_session_title

__all__ = ["DEFAULT_SESSION_TITLE", "Session", "derive_session_title"]
