import os

os.environ["SESSION_KEY"] = "test-session-key-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENABLE_AUDIT_LOGGING"] = "false"
for _key in (
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_AI_API_KEY",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_CALLBACK_URL",
):
    os.environ[_key] = ""

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from coach.api.access import login
from coach.core.config import get_settings
from coach.core.rate_limiter import reset_rate_limiter
from coach.database.connection import DatabaseConnection, set_database
from coach.database.init_db import init_tables, seed_if_empty
from coach.llm.registry import ProviderRegistry
from tests.helpers import ScriptedProvider, first_scenario_id

get_settings.cache_clear()


@pytest.fixture
def db():
    database = DatabaseConnection("sqlite://")
    init_tables(database)
    seed_if_empty(database)
    set_database(database)
    reset_rate_limiter()
    yield database
    set_database(None)
    reset_rate_limiter()


@pytest.fixture
def scenario_id(db):
    return first_scenario_id(db)


@pytest.fixture
def provider():
    return ScriptedProvider("anthropic")


@pytest.fixture
def registry(provider):
    return ProviderRegistry([provider])


@pytest.fixture
def app(db, registry):
    from coach.api.main import create_app

    application = create_app(registry=registry)

    @application.post("/_test/login/{user_id}", include_in_schema=False)
    async def _test_login(user_id: str, request: Request):
        login(request, user_id)
        return {"success": True}

    return application


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sign_in(client):
    def _sign_in(user_id):
        response = client.post(f"/_test/login/{user_id}")
        assert response.status_code == 200

    return _sign_in
