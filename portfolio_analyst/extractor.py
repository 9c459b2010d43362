import json
import re
from typing import Any, Optional

from .errors import (
    BackendReportedError,
    InvalidStructureError,
    MalformedResponseError,
    TruncatedResponseError,
)
from .schemas import AnalysisResult


_JSON_FENCE_RE = re.compile(r"```json\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_LEADING_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?```\s*$")
TRUNCATION_THRESHOLD = 0.95


def strip_fences(raw: str) -> str:
    text = (raw or "").strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    text = _LEADING_FENCE_RE.sub("", text)
    text = _TRAILING_FENCE_RE.sub("", text)
    text = text.strip()
    if text and not text.startswith(("{", "[")):
        # Prose around an unfenced object: keep the outermost braces.
        text = _outer_object(text) or text
    return text


def _outer_object(raw: str) -> Optional[str]:
    first = raw.find("{")
    last = raw.rfind("}")
    if first == -1 or last <= first:
        return None
    return raw[first : last + 1]


def _load_json(raw: str) -> Any:
    text = strip_fences(raw)
    try:
        return json.loads(text)
    except ValueError:
        # A fence inside a string value ends the lazy fence match early.
        fallback = _outer_object(raw or "")
        if fallback is None or fallback == text:
            raise
    return json.loads(fallback)


def is_length_truncated(stop_reason: Optional[str], output_tokens: int, max_tokens: int) -> bool:
    if stop_reason != "max_tokens" or max_tokens <= 0:
        return False
    return output_tokens >= max_tokens * TRUNCATION_THRESHOLD


def _is_empty(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return not value
    return value is None


def extract_analysis(
    raw: str,
    *,
    stop_reason: Optional[str] = None,
    output_tokens: int = 0,
    max_tokens: int = 0,
) -> AnalysisResult:
    """Parse the backend's final text into a validated AnalysisResult.

    Raises a ResultParseError subclass describing why the text was rejected.
    """
    try:
        parsed = _load_json(raw)
    except ValueError as exc:
        size = len(raw or "")
        if is_length_truncated(stop_reason, output_tokens, max_tokens):
            raise TruncatedResponseError(
                f"Response appears truncated ({size} chars). The analysis was too long and was cut off. "
                "Please try with a smaller portfolio or disable the risk summary.",
                detail=str(exc),
            ) from exc
        raise MalformedResponseError(
            f"Failed to parse analysis results ({size} chars). This may be a transient issue. Please try again.",
            detail=str(exc),
        ) from exc

    if not isinstance(parsed, dict):
        raise InvalidStructureError(
            f"Invalid response structure - expected a JSON object, got {type(parsed).__name__}"
        )
    if parsed.get("error"):
        raise BackendReportedError(str(parsed["error"]))

    missing = [key for key in ("markdown", "chartData") if _is_empty(parsed.get(key))]
    if missing:
        raise InvalidStructureError(
            "Invalid response structure - missing " + " and ".join(missing),
            detail=", ".join(sorted(parsed.keys())),
        )
    if not isinstance(parsed["markdown"], str) or not isinstance(parsed["chartData"], dict):
        raise InvalidStructureError("Invalid response structure - markdown must be text and chartData an object")
    return AnalysisResult(**parsed)
