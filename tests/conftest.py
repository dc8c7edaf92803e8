from pathlib import Path
import sys
import os

import pytest
from werkzeug.security import generate_password_hash

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Safety default for any app creation during test imports.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from escrutinio import create_app
from escrutinio.extensions import db
from escrutinio.models import Candidate, PollingTable, TableAssignment, User
from escrutinio.services.tally import tally_services

ELECTION = "2025"


@pytest.fixture()
def app(tmp_path: Path):
    db_file = tmp_path / "test.sqlite3"
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_file}",
            "SQLALCHEMY_ENGINE_OPTIONS": {},
            "DEFAULT_ELECTION_ID": ELECTION,
        }
    )

    with app.app_context():
        driver = db.engine.url.drivername
        if driver != "sqlite":
            raise RuntimeError(
                f"Test database must be SQLite, got '{driver}'. Refusing to run destructive test setup."
            )
        db.drop_all()
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db_session(app):
    with app.app_context():
        yield db.session


@pytest.fixture()
def services(app):
    return tally_services()


@pytest.fixture()
def repository(services):
    return services["repository"]


@pytest.fixture()
def tables(db_session):
    rows = [
        PollingTable(code="LAB-PA-M1", local_id="LAB-PA", comuna="Puerto Aysen", region="Aysen"),
        PollingTable(code="LAB-PA-M2", local_id="LAB-PA", comuna="Puerto Aysen", region="Aysen"),
        PollingTable(code="LIC-CO-M1", local_id="LIC-CO", comuna="Coyhaique", region="Aysen"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture()
def candidates(db_session):
    rows = [
        Candidate(election_id=ELECTION, office="president", key="PRE-1",
                  display_name="Juanito Arcoiris", ballot_number="1"),
        Candidate(election_id=ELECTION, office="president", key="PRE-2",
                  display_name="Juan Pérez", ballot_number="2"),
        Candidate(election_id=ELECTION, office="president", key="PRE-3",
                  display_name="Maria Gonzalez", ballot_number="3"),
        Candidate(election_id=ELECTION, office="president", key="PRE-4",
                  display_name="Pedro Perez", ballot_number="4"),
        Candidate(election_id=ELECTION, office="deputy", key="DIP-1",
                  display_name="Rosa Cascote", ballot_number="1"),
        Candidate(election_id=ELECTION, office="deputy", key="DIP-2",
                  display_name="Luis Manoslimpias", ballot_number="2"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture()
def operator(db_session, tables):
    user = User(
        username="mesa1",
        email="mesa1@example.com",
        password_hash=generate_password_hash("secret-pass", method="pbkdf2:sha256"),
        role="table-rep",
    )
    db_session.add(user)
    db_session.flush()
    db_session.add(TableAssignment(user_id=user.id, table_id=tables[0].id))
    db_session.commit()
    return user


@pytest.fixture()
def admin_user(db_session):
    user = User(
        username="admin1",
        email="admin1@example.com",
        password_hash=generate_password_hash("admin-pass", method="pbkdf2:sha256"),
        role="comunal-admin",
    )
    db_session.add(user)
    db_session.commit()
    return user


def _logged_in(client, user):
    with client.session_transaction() as session:
        session["_user_id"] = str(user.id)
        session["_fresh"] = True
    return client


@pytest.fixture()
def operator_client(client, operator):
    return _logged_in(client, operator)


@pytest.fixture()
def admin_client(app, admin_user):
    return _logged_in(app.test_client(), admin_user)
