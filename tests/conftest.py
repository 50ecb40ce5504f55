import sys
from pathlib import Path

import pytest


BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture()
def app_client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("FILE_STORAGE_MODE", "local")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("FILE_URL_SECRET", "test-file-url-secret")

    # Prevent accidental pollution from any existing env config.
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    monkeypatch.delenv("ACTOR_HEADER_SECRET", raising=False)
    monkeypatch.delenv("MEDICAL_VALIDITY_DAYS", raising=False)
    monkeypatch.delenv("VISA_VALIDITY_DAYS", raising=False)

    from actions.audit import clear_audit_failures
    from app import create_app
    from cache_layer import cache_clear

    cache_clear()
    clear_audit_failures()

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client


@pytest.fixture()
def db(app_client):
    from db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def cfg(app_client):
    app, _client = app_client
    return app.config["CFG"]


@pytest.fixture()
def actor():
    from utils import Actor

    return Actor(actorId="ops-1", actorLabel="Ops Desk")
