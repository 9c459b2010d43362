import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .market_data import describe_correlation, describe_metric, describe_portfolio_risk
from .returns import search_holding_return
from .schemas import ToolInvocation
from .search import SearchResult, TavilyClient

logger = logging.getLogger("uvicorn.error")

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[SearchResult]]


@dataclass
class ToolSpec:
    name: str
    description: str
    input_schema: Dict[str, Any]
    executor: ToolExecutor
    # True when the executor goes over the network (web search, price history).
    live: bool = False

    def schema(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        self._tools[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def schemas(self) -> List[Dict[str, Any]]:
        return [spec.schema() for spec in self._tools.values()]

    @property
    def has_live_tools(self) -> bool:
        return any(spec.live for spec in self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, tool_input: Dict[str, Any]) -> str:
        """Run one tool and return its text result. Failures come back as text."""
        spec = self._tools.get(name)
        if spec is None:
            return f"Unknown tool: {name}"
        logger.info("Executing tool %s with input %s", name, tool_input)
        try:
            result = await spec.executor(tool_input if isinstance(tool_input, dict) else {})
        except Exception as exc:
            logger.error("Tool execution error for %s: %s", name, exc)
            return f"Error executing {name}: {str(exc) or type(exc).__name__}"
        return result.render()


async def dispatch_batched(
    registry: ToolRegistry,
    calls: Sequence[ToolInvocation],
    concurrency: int = 2,
) -> List[str]:
    """Run calls in fixed windows of ``concurrency``; each window finishes before the next starts."""
    window = max(1, int(concurrency))
    results: List[str] = []
    for start in range(0, len(calls), window):
        batch = calls[start : start + window]
        results.extend(await asyncio.gather(*(registry.execute(call.name, call.input) for call in batch)))
    return results


def _required(tool_input: Dict[str, Any], key: str) -> str:
    value = tool_input.get(key)
    if value in (None, ""):
        raise ValueError(f"Missing required input '{key}'")
    return str(value)


def _web_search_tools(search_client: TavilyClient) -> List[ToolSpec]:
    async def company(tool_input: Dict[str, Any]) -> SearchResult:
        name = _required(tool_input, "company_name")
        ticker = tool_input.get("ticker")
        if ticker:
            query = f"{name} {ticker} ASX company business description what does it do"
        else:
            query = f"{name} company business description what does it do"
        return await search_client.describe(name, query)

    async def fund(tool_input: Dict[str, Any]) -> SearchResult:
        name = _required(tool_input, "fund_name")
        manager = tool_input.get("fund_manager")
        if manager:
            query = f"{name} {manager} managed fund investment strategy description Australia"
        else:
            query = f"{name} managed fund investment strategy description Australia"
        return await search_client.describe(name, query)

    return [
        ToolSpec(
            name="search_company_description",
            description=(
                "Search the web for a company's business description and overview. Use this for direct "
                "shares/stocks to get information about what the company does, its business operations, and "
                "industry. Prioritizes Australian companies and ASX listings."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "company_name": {
                        "type": "string",
                        "description": "Full company name (e.g., 'Commonwealth Bank', 'BHP Group')",
                    },
                    "ticker": {
                        "type": "string",
                        "description": "Optional stock ticker symbol (e.g., 'CBA', 'BHP')",
                    },
                },
                "required": ["company_name"],
            },
            executor=company,
            live=True,
        ),
        ToolSpec(
            name="search_fund_description",
            description=(
                "Search the web for a managed fund's investment strategy and description. Use this for managed "
                "funds, index funds, and superannuation investment options to get information about the fund's "
                "asset allocation, investment approach, and what it invests in."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "fund_name": {
                        "type": "string",
                        "description": "Full fund name (e.g., 'Vanguard High Growth Index', 'Colonial FirstChoice Balanced')",
                    },
                    "fund_manager": {
                        "type": "string",
                        "description": "Optional fund management company name (e.g., 'Vanguard', 'Colonial First Choice')",
                    },
                },
                "required": ["fund_name"],
            },
            executor=fund,
            live=True,
        ),
    ]


async def _asset_class_metrics(tool_input: Dict[str, Any]) -> SearchResult:
    return describe_metric(_required(tool_input, "asset_class"), str(tool_input.get("metric") or "volatility"))


async def _asset_class_correlation(tool_input: Dict[str, Any]) -> SearchResult:
    return describe_correlation(_required(tool_input, "asset_class_a"), _required(tool_input, "asset_class_b"))


async def _portfolio_risk_data(tool_input: Dict[str, Any]) -> SearchResult:
    classes = tool_input.get("asset_classes") or []
    if not isinstance(classes, list):
        raise ValueError("asset_classes must be a list")
    return describe_portfolio_risk([str(item) for item in classes])


async def _holding_return(tool_input: Dict[str, Any]) -> SearchResult:
    return await search_holding_return(
        _required(tool_input, "holding_name"),
        _required(tool_input, "ticker"),
        _required(tool_input, "timeframe_period"),
    )


STATIC_TOOLS = [
    ToolSpec(
        name="search_asset_class_metrics",
        description=(
            "Get expected return or volatility (standard deviation) for a given asset class from authoritative "
            "static data. Returns instant, consistent results based on Vanguard Capital Market Assumptions "
            "methodology. NO web search required - data is pre-loaded. Call this TWICE per asset class: once for "
            "'expected return' and once for 'volatility'."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "asset_class": {
                    "type": "string",
                    "description": (
                        "Asset class name, e.g., 'Australian Shares', 'International Shares', 'Australian Fixed "
                        "Interest', 'International Fixed Interest', 'Australian Property', 'International "
                        "Property', 'Cash', 'Alternatives'"
                    ),
                },
                "metric": {
                    "type": "string",
                    "enum": ["expected return", "volatility"],
                    "description": "Metric to retrieve: 'expected return' or 'volatility'. Must specify one.",
                },
            },
            "required": ["asset_class", "metric"],
        },
        executor=_asset_class_metrics,
    ),
    ToolSpec(
        name="search_asset_class_correlation",
        description=(
            "Get the correlation coefficient between two specific asset classes from authoritative static data. "
            "NO web search required - correlation matrix is pre-loaded. Values range from -1 to 1. Call this for "
            "EVERY unique pair of asset classes in the portfolio to build a complete correlation matrix."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "asset_class_a": {"type": "string", "description": "First asset class name (e.g., 'Australian Shares')"},
                "asset_class_b": {
                    "type": "string",
                    "description": "Second asset class name (e.g., 'International Shares')",
                },
            },
            "required": ["asset_class_a", "asset_class_b"],
        },
        executor=_asset_class_correlation,
    ),
    ToolSpec(
        name="get_portfolio_risk_data",
        description=(
            "BATCH TOOL - Get ALL portfolio risk data in a single call. Returns expected returns, standard "
            "deviations (volatility), and complete correlation matrix for all specified asset classes. Use this "
            "FIRST whenever you need data for multiple asset classes. Only fall back to the individual metric or "
            "correlation tools if you need to query a single specific value."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "asset_classes": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        "Array of asset class names present in the portfolio (e.g., ['Australian Shares', "
                        "'International Shares']). Include ALL asset classes you need data for."
                    ),
                },
            },
            "required": ["asset_classes"],
        },
        executor=_portfolio_risk_data,
    ),
]

HOLDING_RETURN_TOOL = ToolSpec(
    name="search_holding_return",
    description=(
        "FALLBACK TOOL - Fetch historical return data for a specific holding using Yahoo Finance when return data "
        "is NOT available in the portfolio documents. Requires ticker symbol (e.g., 'CBA.AX' for Australian stocks "
        "- always add .AX suffix for ASX stocks, 'AAPL' for US stocks) and the exact time period from the "
        "portfolio statement."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "holding_name": {
                "type": "string",
                "description": "Name of the holding (e.g., 'Commonwealth Bank', 'BHP Group')",
            },
            "ticker": {
                "type": "string",
                "description": (
                    "Stock ticker symbol. For ASX stocks, MUST include .AX suffix (e.g., 'CBA.AX', 'BHP.AX'). "
                    "For US stocks, use standard symbol (e.g., 'AAPL', 'MSFT')."
                ),
            },
            "timeframe_period": {
                "type": "string",
                "description": (
                    "Exact time period string from the portfolio statement (e.g., '1 Jul 2024 to 30 Jun 2025' or "
                    "'01/07/2024 to 30/06/2025'). Must include 'to' separator."
                ),
            },
        },
        "required": ["holding_name", "ticker", "timeframe_period"],
    },
    executor=_holding_return,
    live=True,
)


def build_registry(
    search_client: Optional[TavilyClient],
    *,
    include_web_search: bool = True,
    include_returns: bool = True,
) -> ToolRegistry:
    registry = ToolRegistry()
    if include_web_search and search_client is not None and search_client.enabled:
        for spec in _web_search_tools(search_client):
            registry.register(spec)
    for spec in STATIC_TOOLS:
        registry.register(spec)
    if include_returns:
        registry.register(HOLDING_RETURN_TOOL)
    return registry
