"""Pytest configuration and fixtures."""

import copy
from unittest.mock import AsyncMock

import pytest

from bestofjs_mcp.client import SearchClient
from bestofjs_mcp.config import settings
from bestofjs_mcp.dataset import Dataset, DatasetProvider

_TAGS = [
    {"code": "react", "name": "React"},
    {"code": "vue", "name": "Vue"},
    {"code": "state", "name": "State management"},
    {"code": "framework", "name": "Framework"},
    {"code": "meta", "name": "Meta"},
    {"code": "learning", "name": "Learning"},
    {"code": "testing", "name": "Testing"},
]

_PROJECTS = [
    {
        "name": "React",
        "full_name": "facebook/react",
        "description": "A declarative UI library",
        "tags": ["react", "framework"],
        "npm": "react",
        "stars": 200000,
        "trends": {"daily": 50},
        "owner_id": 69631,
        "icon": "react.svg",
    },
    {
        "name": "Vue.js",
        "full_name": "vuejs/core",
        "description": "The progressive framework",
        "tags": ["vue", "framework"],
        "npm": "vue",
        "stars": 45000,
        "trends": {"daily": 30},
        "owner_id": 6128107,
    },
    {
        "name": "Redux",
        "full_name": "reduxjs/redux",
        "description": "Predictable state container",
        "tags": ["react", "state"],
        "npm": "redux",
        "stars": 60000,
        "trends": {"daily": 5},
        "owner_id": 13142323,
    },
    {
        "name": "Zustand",
        "full_name": "pmndrs/zustand",
        "description": "Bear necessities for state management",
        "tags": ["react", "state"],
        "npm": "zustand",
        "stars": 45000,
        "trends": {"daily": 80},
        "owner_id": 45790596,
    },
    {
        "name": "Awesome JS",
        "description": "A curated list",
        "tags": ["meta", "learning"],
        "stars": 30000,
        "trends": {"daily": 100},
    },
    {
        "name": "Pinia",
        "full_name": "vuejs/pinia",
        "description": "Intuitive store for Vue",
        "tags": ["vue", "state", "unknown-tag"],
        "npm": "pinia",
        "stars": 12000,
        "trends": {"daily": 10},
        "owner_id": 6128107,
    },
]


@pytest.fixture
def payload():
    """Document as returned by the static API (fresh copy per test)."""
    return {"projects": copy.deepcopy(_PROJECTS), "tags": copy.deepcopy(_TAGS)}


@pytest.fixture
def dataset(payload):
    """Dataset snapshot built from the sample payload."""
    return Dataset.from_payload(payload)


@pytest.fixture
def mock_fetcher(payload):
    """Async fetcher returning the sample payload."""
    return AsyncMock(return_value=payload)


@pytest.fixture
def provider(mock_fetcher):
    """Dataset provider backed by the sample payload."""
    return DatasetProvider("https://example.com/projects.json", fetcher=mock_fetcher)


@pytest.fixture
def client(provider):
    """Search client over the sample dataset."""
    return SearchClient(provider)


@pytest.fixture(autouse=True)
def _restore_settings():
    """Undo runtime changes made to the settings singleton."""
    saved = settings.model_dump()
    yield
    for key, value in saved.items():
        setattr(settings, key, value)


@pytest.fixture(autouse=True)
def _reset_server_client():
    """Reset the server's shared client before and after each test."""
    import bestofjs_mcp.server as server_mod

    server_mod._client = None
    yield
    server_mod._client = None
