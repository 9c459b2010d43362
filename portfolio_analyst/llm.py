import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .errors import (
    BackendAuthError,
    BackendError,
    BackendOverloadedError,
    BackendRateLimitError,
)


ALLOWED_ROLES = {"user", "assistant"}
OVERLOADED_STATUSES = {503, 529}


@dataclass
class BackendTurn:
    content: List[Dict[str, Any]]
    stop_reason: Optional[str]
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n".join(
            block.get("text", "") for block in self.content if block.get("type") == "text" and block.get("text")
        )

    @property
    def tool_uses(self) -> List[Dict[str, Any]]:
        return [block for block in self.content if block.get("type") == "tool_use"]

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "BackendTurn":
        usage = data.get("usage") or {}
        content = data.get("content") or []
        return cls(
            content=[block for block in content if isinstance(block, dict)],
            stop_reason=data.get("stop_reason"),
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
            model=str(data.get("model") or ""),
            raw=data,
        )


class AnthropicClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.anthropic.com/v1",
        model: str = "claude-haiku-4-5-20251001",
        version: str = "2023-06-01",
        timeout: float = 300.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.version = version
        self.client = httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.version,
            "content-type": "application/json",
        }

    def _sanitize_messages(self, messages: Any) -> List[Dict[str, Any]]:
        if not isinstance(messages, list):
            return []
        sanitized: List[Dict[str, Any]] = []
        for msg in messages:
            if not isinstance(msg, dict) or msg.get("role") not in ALLOWED_ROLES:
                continue
            content = msg.get("content")
            if isinstance(content, str):
                if not content.strip():
                    continue
            elif isinstance(content, list):
                content = [item for item in content if isinstance(item, dict) and item.get("type")]
                if not content:
                    continue
            else:
                continue
            sanitized.append({"role": msg["role"], "content": content})
        return sanitized

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            return json.dumps(data, ensure_ascii=True)
        return response.text

    def _classify_status(self, status: int, detail: str) -> BackendError:
        if status == 401:
            return BackendAuthError("Invalid Anthropic API key", status_code=status, detail=detail)
        if status == 429:
            return BackendRateLimitError(
                "Rate limit exceeded. Please try again in a few moments.", status_code=status, detail=detail
            )
        if status in OVERLOADED_STATUSES:
            return BackendOverloadedError(
                "Anthropic API is temporarily overloaded. Please try again.", status_code=status, detail=detail
            )
        return BackendError(detail or f"Backend request failed (HTTP {status})", status_code=status, detail=detail)

    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: int = 8000,
        temperature: float = 0.3,
        model: Optional[str] = None,
    ) -> BackendTurn:
        if not self.enabled:
            raise BackendAuthError("Anthropic API key not configured")
        cleaned = self._sanitize_messages(messages)
        if not cleaned:
            raise ValueError("messages must include at least one non-empty entry")
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": cleaned,
        }
        if tools:
            payload["tools"] = tools
        try:
            resp = await self.client.post(f"{self.base_url}/messages", json=payload, headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_error_detail(exc.response)
            raise self._classify_status(exc.response.status_code, detail) from exc
        except httpx.RequestError as exc:
            raise BackendError(f"Backend request failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError(
                "Backend returned an invalid response", status_code=resp.status_code, detail=resp.text[:200]
            ) from exc
        return BackendTurn.from_response(data)

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
