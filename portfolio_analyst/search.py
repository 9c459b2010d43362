import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("uvicorn.error")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
DESCRIPTION_MAX_CHARS = 500
SEARCH_TOPICS = {"general", "news", "finance"}


def _response_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


@dataclass
class SearchResult:
    description: str
    sources: List[str] = field(default_factory=list)

    def render(self) -> str:
        return f"{self.description}\n\nSources: {', '.join(self.sources) or 'None'}"


class TavilyClient:
    def __init__(self, api_key: Optional[str], max_results: int = 3):
        self.api_key = api_key
        self.max_results = max_results
        # Pooled so back-to-back tool calls reuse connections.
        self.client = httpx.AsyncClient(
            timeout=60,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        topic: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.enabled:
            return {"error": "missing_api_key"}
        body: Dict[str, Any] = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "basic",
            "include_answer": False,
            "max_results": max_results or self.max_results,
        }
        if topic in SEARCH_TOPICS:
            body["topic"] = topic
        try:
            resp = await self.client.post(
                TAVILY_SEARCH_URL,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return {
                "error": "http_status",
                "status_code": exc.response.status_code,
                "detail": _response_detail(exc.response),
            }
        except httpx.RequestError as exc:
            return {"error": "request_failed", "detail": str(exc)}
        return resp.json()

    async def describe(self, subject: str, query: str) -> SearchResult:
        """Search the web and condense the top snippets into a short description."""
        if not self.enabled:
            logger.warning("Tavily API key not configured, returning placeholder for %s", subject)
            return SearchResult(f"{subject} - Description not available (API key not configured)")
        data = await self.search(query)
        if data.get("error"):
            logger.error("Search for %s failed: %s", subject, data)
            return SearchResult(f"{subject} - Description unavailable")
        results = (data.get("results") or [])[: self.max_results]
        snippets = [str(r.get("content")) for r in results if r.get("content")]
        sources = [str(r.get("url")) for r in results if r.get("url")]
        if not snippets:
            return SearchResult(f"{subject} - No description found", sources)
        return SearchResult(" ".join(snippets)[:DESCRIPTION_MAX_CHARS], sources)

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
