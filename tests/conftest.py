import os
import tempfile
from datetime import datetime, timedelta

# Must be set before the app module reads its configuration
_DB_DIR = tempfile.mkdtemp(prefix='gym-tests-')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ['SCHEDULER_ENABLED'] = '0'
os.environ['FLASK_SECURE_COOKIES'] = '0'
os.environ.pop('ADMIN_EMAIL', None)
os.environ.pop('ADMIN_PASSWORD', None)

import pytest

import billing
import users
from app import app
from models import db


class Clock:
    """Stand-in for billing.now that only moves when told to."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture(autouse=True)
def app_ctx():
    app.config['TESTING'] = True
    app.config['BOOTSTRAPPED'] = True
    with app.app_context():
        db.drop_all()
        db.create_all()
        yield app
        db.session.remove()


@pytest.fixture
def clock(monkeypatch):
    c = Clock(datetime(2026, 3, 10, 9, 0, 0))
    monkeypatch.setattr(billing, 'now', c)
    return c


@pytest.fixture
def client():
    with app.test_client() as c:
        yield c


@pytest.fixture
def customer():
    return users.create_user('ana@example.com', 'secret1', 'Ana Customer', phone='03001234567')


@pytest.fixture
def admin():
    return users.create_user('boss@example.com', 'secret1', 'Gym Admin', role='admin')


@pytest.fixture
def receptionist():
    return users.create_user('desk@example.com', 'secret1', 'Front Desk', role='receptionist')


def login_as(client, user):
    with client.session_transaction() as sess:
        sess['user_id'] = user.uid
