"""Session management package."""

from src.session.manager import AuthState, SessionManager, classify_provider_error

__all__ = ["AuthState", "SessionManager", "classify_provider_error"]
