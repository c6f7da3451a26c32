import pytest

from app.sms import create_app
from app.sms.models import Base, Company, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("COMPLIANCE_WARNING_DAYS", "TRAINING_DUE_WITHIN_DAYS", "WEBHOOK_TIMEOUT_SECONDS"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def s(app):
    """Session inside an app context; left uncommitted and closed after the test."""
    with app.app_context():
        sess = app.extensions["sqlalchemy_sessionmaker"]()
        try:
            yield sess
        finally:
            sess.rollback()
            sess.close()


@pytest.fixture()
def company(s):
    c = Company(name="Acme Aviation", slug="acme", is_active=True)
    s.add(c)
    s.flush()
    return c


@pytest.fixture()
def admin(s, company):
    u = User(email="admin@example.com", name="Admin", company_id=company.id, is_active=True)
    s.add(u)
    s.flush()
    return u


@pytest.fixture()
def make_persona(s, company, admin):
    from app.sms.modules.personas.service import create_persona

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "first_name": "Jane",
            "last_name": f"Doe{counter['n']}",
            "email": f"jane.doe{counter['n']}@example.com",
            "department": "Operations",
            "position": "Pilot",
            "employment_type": "FULL_TIME",
            "data_processing_consent": True,
        }
        payload.update(overrides)
        return create_persona(s, company.id, payload, user=admin)

    return _make
