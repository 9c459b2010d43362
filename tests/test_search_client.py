import json

import pytest
import respx
from httpx import Response

from portfolio_analyst.search import TavilyClient

SEARCH_URL = "https://api.tavily.com/search"


@pytest.mark.asyncio
async def test_tavily_search_payload_and_headers():
    client = TavilyClient("test-key")
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["headers"] = request.headers
                return Response(200, json={"results": []})

            respx_mock.post(SEARCH_URL).mock(side_effect=handler)
            resp = await client.search("hello", max_results=2, topic="finance")
            assert resp == {"results": []}
            assert captured["json"]["api_key"] == "test-key"
            assert captured["json"]["max_results"] == 2
            assert captured["json"]["topic"] == "finance"
            assert captured["headers"]["Authorization"] == "Bearer test-key"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_describe_joins_snippets_and_sources():
    client = TavilyClient("test-key", max_results=2)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(SEARCH_URL).mock(
                return_value=Response(
                    200,
                    json={
                        "results": [
                            {"url": "https://a.example", "content": "BHP is a miner."},
                            {"url": "https://b.example", "content": "It produces iron ore." + "x" * 600},
                            {"url": "https://c.example", "content": "ignored"},
                        ]
                    },
                )
            )
            result = await client.describe("BHP", "BHP ASX company")
    finally:
        await client.close()
    assert result.description.startswith("BHP is a miner. It produces iron ore.")
    assert len(result.description) == 500
    assert result.sources == ["https://a.example", "https://b.example"]


@pytest.mark.asyncio
async def test_describe_handles_http_error():
    client = TavilyClient("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(SEARCH_URL).mock(return_value=Response(500, json={"error": "boom"}))
            raw = await client.search("q")
            result = await client.describe("Acme", "q")
    finally:
        await client.close()
    assert raw["error"] == "http_status"
    assert raw["status_code"] == 500
    assert result.render() == "Acme - Description unavailable\n\nSources: None"


@pytest.mark.asyncio
async def test_describe_without_key_returns_placeholder():
    client = TavilyClient(None)
    try:
        result = await client.describe("Acme", "q")
    finally:
        await client.close()
    assert result.description == "Acme - Description not available (API key not configured)"
    assert result.sources == []
