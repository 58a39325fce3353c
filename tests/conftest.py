import base64
import sys
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient


def _reload_backend(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV_FILE", str(tmp_path / ".env"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'mailguardian.db'}")
    monkeypatch.setenv("ENCRYPTION_KEY", base64.urlsafe_b64encode(b"1" * 32).decode())
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("FRONTEND_BASE_URL", "http://localhost:3000")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:3000")

    # engine and settings are bound at import time, so every test gets fresh modules
    for module_name in list(sys.modules):
        if module_name == "backend" or module_name.startswith("backend."):
            sys.modules.pop(module_name)

    from backend.app.db.session import Base, engine
    import backend.app.models.tables  # noqa: F401 ensures models are registered
    import backend.app.main as main

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return main.app


@pytest.fixture
def app(monkeypatch, tmp_path):
    return _reload_backend(monkeypatch, tmp_path)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def seed_user():
    """Create a user with a live session; returns (session_id, user_id)."""

    def _seed(
        email="user@example.com",
        access_token="access-token",
        refresh_token="refresh-token",
        with_tokens=True,
        session_expires_in=timedelta(hours=1),
    ):
        from backend.app.db.session import SessionLocal
        from backend.app.models.tables import OAuthToken, Session as SessionModel, User
        from backend.app.security.crypto import encrypt_token

        db = SessionLocal()
        try:
            user = User(email=email, google_sub=f"sub-{email}")
            db.add(user)
            db.flush()
            user_id = user.id
            if with_tokens:
                db.add(
                    OAuthToken(
                        user_id=user_id,
                        access_token_enc=encrypt_token(access_token) if access_token else None,
                        refresh_token_enc=encrypt_token(refresh_token) if refresh_token else None,
                        token_expiry=datetime.utcnow() + timedelta(minutes=55),
                    )
                )
            session_id = f"session-{email}"
            db.add(
                SessionModel(
                    session_id=session_id,
                    user_id=user_id,
                    expires_at=datetime.utcnow() + session_expires_in,
                )
            )
            db.commit()
            return session_id, user_id
        finally:
            db.close()

    return _seed


@pytest.fixture
def anyio_backend():
    # the service layer uses asyncio primitives (asyncio.gather); run async tests on asyncio only
    return "asyncio"
