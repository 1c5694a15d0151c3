import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest

from valentina import create_app
from valentina.config import Config
from valentina.models import db


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    AUTO_CREATE_TABLES = True
    RATELIMIT_ENABLED = False
    ADMIN_USER = "admin"
    ADMIN_PASS = "icc-test-pass"
    META_TOKEN = "meta-test-token"
    PHONE_NUMBER_ID = "1098765"
    GEMINI_API_KEY = None
    LLM_PROVIDER = "gemini"
    CELERY_TASK_ALWAYS_EAGER = False
    WEBHOOK_VERIFY_TOKEN = "ICC_2025"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    r = client.post("/auth", json={"user": "admin", "pass": "icc-test-pass"})
    assert r.status_code == 200
    return client


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app
