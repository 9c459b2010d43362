from pathlib import Path
from typing import Any, Dict

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from portfolio_analyst.config import AppSettings
from portfolio_analyst.main import create_app
from tests.fakes import FakeBackend, FakeSearchClient


def make_settings(**overrides) -> AppSettings:
    settings = AppSettings(
        anthropic_api_key="test-anthropic-key",
        claude_model="claude-test",
        claude_max_tokens=1000,
        tavily_api_key=None,
        stream_close_delay_s=0.0,
        host="127.0.0.1",
        port=8000,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def make_profile(**overrides) -> Dict[str, Any]:
    profile = {
        "name": "Jane Citizen",
        "investorType": "Balanced",
        "phase": "Accumulation",
        "ageRange": "40-60",
        "fundCommentary": False,
        "includeRiskSummary": False,
        "valueForMoney": False,
        "isIndustrySuperFund": False,
    }
    profile.update(overrides)
    return profile


def make_request(**overrides) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "profile": make_profile(),
        "files": [{"fileName": "statement.csv", "content": "Holding,Value\nCash,100000", "type": "csv"}],
    }
    body.update(overrides)
    return body


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_backend: FakeBackend | None = None,
        fake_search: FakeSearchClient | None = None,
        **settings_overrides,
    ):
        settings = make_settings(**settings_overrides)
        backend = fake_backend or FakeBackend()
        search_client = fake_search or FakeSearchClient(api_key=settings.tavily_api_key)
        app = create_app(settings, backend=backend, search_client=search_client)
        return app, backend, search_client

    return _factory


@pytest.fixture
async def client(app_factory):
    app, backend, search_client = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_backend = backend  # type: ignore[attr-defined]
            http_client.fake_search = search_client  # type: ignore[attr-defined]
            yield http_client
