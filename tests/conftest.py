# tests/conftest.py
import os
import tempfile

import pytest

from app import create_app
from config import Config
from extensions import db
from models import Warehouse


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"  # separate DB for tests
    LOG_DIR = os.path.join(tempfile.gettempdir(), "stockledger-test-logs")
    SENTRY_DSN = ""
    REPORT_LOGO_PATH = os.path.join(tempfile.gettempdir(), "no-such-logo.png")


@pytest.fixture
def app():
    app = create_app(TestingConfig, configure_logs=False)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def warehouse(app):
    wh = Warehouse(name="Central Store", department_name="Civil")
    db.session.add(wh)
    db.session.commit()
    return wh


@pytest.fixture
def telecom_warehouse(app):
    wh = Warehouse(name="Telecom Yard", department_name="Telecom")
    db.session.add(wh)
    db.session.commit()
    return wh
