from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class ProgressPolicy:
    buffer: int
    cap: int


# Risk summaries trigger many correlation/metric lookups, so the curve flattens later.
RISK_SUMMARY_POLICY = ProgressPolicy(buffer=4, cap=90)
STANDARD_POLICY = ProgressPolicy(buffer=1, cap=75)

PROGRESS_TOTAL = 100
START_LABEL = "Starting analysis..."
FINAL_LABEL = "Finalising analysis..."


def policy_for(include_risk_summary: bool) -> ProgressPolicy:
    return RISK_SUMMARY_POLICY if include_risk_summary else STANDARD_POLICY


def estimate_progress(count: int, buffer: int, cap: int) -> int:
    """Asymptotic percentage for ``count`` executed tool calls.

    Rises quickly at first and flattens towards ``cap`` without reaching it,
    since the number of remaining tool calls is unknown.
    """
    if count <= 0:
        return 0
    if buffer <= 0:
        return cap
    return round(cap * count / (count + buffer))


def _first(inputs: Dict[str, Any], *keys: str, default: str) -> str:
    for key in keys:
        value = inputs.get(key)
        if value not in (None, ""):
            return str(value)
    return default


def tool_label(name: str, inputs: Dict[str, Any]) -> str:
    inputs = inputs if isinstance(inputs, dict) else {}
    if name == "search_fund_description":
        return f"Searching for '{_first(inputs, 'fund_name', 'fundName', default='fund')}'"
    if name == "search_company_description":
        return f"Searching for '{_first(inputs, 'company_name', 'companyName', default='company')}'"
    if name == "search_asset_class_metrics":
        metric = str(inputs.get("metric") or "")
        metric = metric[:1].upper() + metric[1:] if metric else "Metrics"
        asset_class = _first(inputs, "asset_class", "assetClass", default="asset class")
        return f"Searching {metric} for '{asset_class}'"
    if name == "search_asset_class_correlation":
        return (
            f"Searching correlation for '{inputs.get('asset_class_a')}' "
            f"and '{inputs.get('asset_class_b')}'"
        )
    if name == "get_portfolio_risk_data":
        classes = inputs.get("asset_classes") or []
        return f"Loading risk data for {len(classes)} asset classes"
    if name == "search_holding_return":
        return f"Fetching return for '{_first(inputs, 'holding_name', 'ticker', default='holding')}'"
    return name


class ProgressTracker:
    """Per-request tool-call counter feeding the asymptotic estimate."""

    def __init__(self, policy: ProgressPolicy):
        self.policy = policy
        self.count = 0

    def advance(self) -> int:
        self.count += 1
        return estimate_progress(self.count, self.policy.buffer, self.policy.cap)
