"""
Configuration partagée pour tous les tests.
Override get_db et get_current_user pour éviter toute connexion réelle
à PostgreSQL ou au fournisseur d'identité.
"""

import uuid

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from unitrack.auth import CurrentUser, get_current_user
from unitrack.database import get_db
from unitrack.main import app

STUDENT = CurrentUser(id=uuid.UUID("11111111-1111-1111-1111-111111111111"), role="student")
FACULTY = CurrentUser(id=uuid.UUID("22222222-2222-2222-2222-222222222222"), role="faculty")


@pytest.fixture
def mock_db():
    return MagicMock()


def _client_as(user, mock_db):
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)


@pytest.fixture
def client(mock_db):
    """Client HTTP de test connecté en tant qu'étudiant, BDD mockée."""
    with _client_as(STUDENT, mock_db) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def faculty_client(mock_db):
    """Client HTTP de test connecté en tant qu'enseignant, BDD mockée."""
    with _client_as(FACULTY, mock_db) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def student():
    return STUDENT


@pytest.fixture
def faculty():
    return FACULTY
