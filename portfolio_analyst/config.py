import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "PORTFOLIO_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = ("anthropic_api_key", "tavily_api_key")

_INT_FIELDS = (
    "claude_max_tokens",
    "max_iterations",
    "search_max_results",
    "upload_max_mb",
    "max_files",
    "fetch_returns_concurrency",
    "port",
)
_FLOAT_FIELDS = ("claude_temperature", "request_timeout_s", "stream_close_delay_s")


class AppSettings(BaseModel):
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    claude_model: str = "claude-haiku-4-5-20251001"
    claude_max_tokens: int = 16000
    claude_temperature: float = 0.3
    # None lets the orchestrator pick a ceiling from the registered tools.
    max_iterations: Optional[int] = None
    request_timeout_s: float = 300.0

    tavily_api_key: Optional[str] = None
    search_max_results: int = 3

    upload_max_mb: int = 15
    max_files: int = 10
    fetch_returns_concurrency: int = 2
    stream_close_delay_s: float = 0.5

    host: str = "0.0.0.0"
    port: int = 8000

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        return data

    @property
    def max_upload_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
        "anthropic_base_url": os.getenv("ANTHROPIC_BASE_URL"),
        "anthropic_version": os.getenv("ANTHROPIC_VERSION"),
        "claude_model": os.getenv("CLAUDE_MODEL"),
        "claude_max_tokens": os.getenv("CLAUDE_MAX_TOKENS"),
        "claude_temperature": os.getenv("CLAUDE_TEMPERATURE"),
        "max_iterations": os.getenv("MAX_ITERATIONS"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "search_max_results": os.getenv("SEARCH_MAX_RESULTS"),
        "upload_max_mb": os.getenv("UPLOAD_MAX_MB"),
        "max_files": os.getenv("MAX_FILES"),
        "fetch_returns_concurrency": os.getenv("FETCH_RETURNS_CONCURRENCY"),
        "stream_close_delay_s": os.getenv("STREAM_CLOSE_DELAY_S"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in _INT_FIELDS:
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in _FLOAT_FIELDS:
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except (OSError, ValueError):
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    return AppSettings(**merged)
