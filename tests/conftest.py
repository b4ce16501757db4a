import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cardflow.db import models  # noqa: F401  (registers tables)
from cardflow.db.base import Base
from cardflow.db.session import get_db
from cardflow.engine.types import FormField
from cardflow.main import app
from cardflow.routes.sessions import CREATE_LIMITER


@pytest.fixture
def db_session_factory(tmp_path):
    # a real file so request threads each get their own connection and transaction
    engine = create_engine(f"sqlite:///{tmp_path / 'cardflow.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(db_session_factory):
    session = db_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api(db_session_factory):
    def _get_db():
        session = db_session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    CREATE_LIMITER.reset()
    yield app
    app.dependency_overrides.clear()
    CREATE_LIMITER.reset()


@pytest.fixture
def client(api):
    return TestClient(api)


@pytest.fixture
def survey_fields():
    """
    name -> likes_pets (yes/no) -> pet_kind (only when yes) -> pet_name
    -> contact (email, optional). "no" on likes_pets jumps straight to contact.
    """
    return [
        FormField(id="name", type="text", label="What is your name?", required=True, piping_key="first_name"),
        FormField.model_validate({
            "id": "likes_pets",
            "type": "radio",
            "label": "Do you like pets, {{first_name:friend}}?",
            "required": True,
            "enablePiping": True,
            "options": ["yes", "no"],
            "branchRules": [{"targetFieldId": "contact", "value": "no"}],
        }),
        FormField.model_validate({
            "id": "pet_kind",
            "type": "select",
            "label": "Which kind?",
            "required": True,
            "options": ["cat", "dog"],
            "visibilityRule": {"fieldId": "likes_pets", "operator": "equals", "value": "yes"},
        }),
        FormField(id="pet_name", type="text", label="Pet name?"),
        FormField(id="contact", type="email", label="Email", placeholder="name@example.com"),
    ]
