from backend.app.models.tables import OAuthState, OAuthToken, Session, User

__all__ = [
    "OAuthState",
    "OAuthToken",
    "Session",
    "User",
]
