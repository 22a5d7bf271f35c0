import pytest
from fastapi.testclient import TestClient

from github_explorer.api.app import create_app


@pytest.fixture
def runtime(make_runtime):
    return make_runtime()


@pytest.fixture
def client(runtime):
    return TestClient(create_app(runtime=runtime))
