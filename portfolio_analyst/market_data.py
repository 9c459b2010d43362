"""Static capital-market assumptions used for portfolio risk lookups.

Values are annual decimals (0.058 == 5.8%). Correlations are keyed by the
alphabetically sorted pair so each pair is stored once.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .search import SearchResult


DATA_SOURCE = "Static Asset Class Data - Vanguard Capital Market Assumptions methodology (February 2026)"


@dataclass(frozen=True)
class AssetClassMetrics:
    expected_return: float
    standard_deviation: float
    description: str


ASSET_CLASS_METRICS: Dict[str, AssetClassMetrics] = {
    "Australian Shares": AssetClassMetrics(0.058, 0.202, "Australian equity market (ASX-listed securities)"),
    "International Shares": AssetClassMetrics(0.057, 0.162, "Global equity markets (ex-Australia, diversified)"),
    "Australian Fixed Interest": AssetClassMetrics(0.041, 0.063, "Australian bonds and fixed income securities"),
    "International Fixed Interest": AssetClassMetrics(
        0.046, 0.053, "Global bonds and fixed income (ex-Australia, hedged)"
    ),
    "Australian Property": AssetClassMetrics(0.043, 0.201, "Australian listed property trusts (A-REITs)"),
    "International Property": AssetClassMetrics(0.060, 0.155, "Global listed property trusts (ex-Australia)"),
    "Domestic Cash": AssetClassMetrics(0.034, 0.011, "Australian cash and cash equivalents"),
    "International Cash": AssetClassMetrics(0.030, 0.011, "Global cash and cash equivalents (hedged)"),
    "Alternatives": AssetClassMetrics(
        0.120, 0.160, "Alternative investments (hedge funds, commodities, infrastructure)"
    ),
    # aliases
    "Cash": AssetClassMetrics(0.034, 0.011, "Cash and cash equivalents"),
    "Property": AssetClassMetrics(0.043, 0.201, "Listed property trusts"),
    "Fixed Interest": AssetClassMetrics(0.041, 0.063, "Bonds and fixed income securities"),
}

CORRELATION_MATRIX: Dict[str, float] = {
    "Australian Fixed Interest|Australian Shares": -0.04,
    "Australian Property|Australian Shares": 0.64,
    "Australian Shares|International Fixed Interest": -0.11,
    "Australian Shares|International Property": 0.58,
    "Australian Shares|International Shares": 0.73,
    "Alternatives|Australian Shares": 0.48,
    "Australian Shares|Cash": -0.01,
    "Australian Shares|Domestic Cash": -0.01,
    "Australian Shares|International Cash": 0.02,
    "International Fixed Interest|International Shares": 0.03,
    "International Property|International Shares": 0.68,
    "Alternatives|International Shares": 0.51,
    "Cash|International Shares": 0.01,
    "Domestic Cash|International Shares": 0.01,
    "International Cash|International Shares": 0.02,
    "Australian Property|International Property": 0.52,
    "Alternatives|Australian Property": 0.41,
    "Australian Property|Cash": 0.02,
    "Australian Property|Domestic Cash": 0.02,
    "Australian Property|International Cash": 0.03,
    "Alternatives|International Property": 0.46,
    "Cash|International Property": 0.01,
    "Domestic Cash|International Property": 0.01,
    "International Cash|International Property": 0.02,
    "Australian Fixed Interest|Australian Property": 0.12,
    "Australian Fixed Interest|International Fixed Interest": 0.51,
    "Australian Fixed Interest|International Property": 0.08,
    "Alternatives|Australian Fixed Interest": 0.15,
    "Australian Fixed Interest|Cash": 0.25,
    "Australian Fixed Interest|Domestic Cash": 0.25,
    "Australian Fixed Interest|International Cash": 0.18,
    "International Fixed Interest|International Property": 0.11,
    "Alternatives|International Fixed Interest": 0.18,
    "Cash|International Fixed Interest": 0.15,
    "Domestic Cash|International Fixed Interest": 0.15,
    "International Cash|International Fixed Interest": 0.22,
    "Alternatives|Cash": 0.08,
    "Alternatives|Domestic Cash": 0.08,
    "Alternatives|International Cash": 0.06,
    "Cash|Domestic Cash": 0.98,
    "Cash|International Cash": 0.85,
    "Domestic Cash|International Cash": 0.85,
    "Cash|Fixed Interest": 0.25,
    "Cash|Property": 0.02,
    "Fixed Interest|Property": 0.12,
}

STANDARD_CLASSES = (
    "Australian Shares, International Shares, Australian Fixed Interest, International Fixed Interest, "
    "Australian Property, International Property, Cash, Alternatives"
)


def get_metrics(asset_class: str) -> Optional[AssetClassMetrics]:
    return ASSET_CLASS_METRICS.get(asset_class)


def get_correlation(asset_class_a: str, asset_class_b: str) -> float:
    if asset_class_a == asset_class_b:
        return 1.0
    key = "|".join(sorted((asset_class_a, asset_class_b)))
    return CORRELATION_MATRIX.get(key, 0.0)


def format_percent(value: float, decimals: int = 1) -> str:
    return f"{value * 100:.{decimals}f}%"


def describe_metric(asset_class: str, metric: str = "volatility") -> SearchResult:
    metrics = get_metrics(asset_class)
    if metrics is None:
        return SearchResult(
            f"No data available for asset class: {asset_class}. "
            f"Please use one of the standard asset classes: {STANDARD_CLASSES}."
        )
    basis = (
        "Based on 10-year forecast using Vanguard Capital Market Assumptions methodology "
        "and industry-standard institutional investment metrics."
    )
    if metric == "expected return":
        value = metrics.expected_return
        text = f"Expected annual return is {format_percent(value)} ({value} as decimal)"
    else:
        value = metrics.standard_deviation
        text = f"Standard deviation (volatility) is {format_percent(value)} ({value} as decimal)"
    return SearchResult(f"{asset_class}: {text}. {metrics.description}. {basis}", [DATA_SOURCE])


def describe_correlation(asset_class_a: str, asset_class_b: str) -> SearchResult:
    correlation = get_correlation(asset_class_a, asset_class_b)
    return SearchResult(
        f"Correlation coefficient (ρ) between {asset_class_a} and {asset_class_b} is {correlation:.2f}. "
        "Values range from -1 (perfect negative correlation) to +1 (perfect positive correlation). "
        "Based on Vanguard Capital Market Assumptions methodology and institutional correlation matrices.",
        [DATA_SOURCE],
    )


def describe_portfolio_risk(asset_classes: List[str]) -> SearchResult:
    if not asset_classes:
        return SearchResult("Error: No asset classes provided")
    lines = [f"Portfolio Risk Data for {len(asset_classes)} asset classes:", "", "=== EXPECTED RETURNS & VOLATILITY ==="]
    missing: List[str] = []
    for name in asset_classes:
        metrics = get_metrics(name)
        if metrics is None:
            missing.append(name)
            continue
        lines.extend(
            [
                f"{name}:",
                f"  - Expected Return: {format_percent(metrics.expected_return)} ({metrics.expected_return} decimal)",
                f"  - Standard Deviation (Volatility): {format_percent(metrics.standard_deviation)} "
                f"({metrics.standard_deviation} decimal)",
                f"  - Description: {metrics.description}",
                "",
            ]
        )
    pairs = [
        (asset_classes[i], asset_classes[j])
        for i in range(len(asset_classes))
        for j in range(i + 1, len(asset_classes))
    ]
    lines.extend(["=== CORRELATION MATRIX ===", f"Total pairs: {len(pairs)}", ""])
    for a, b in pairs:
        lines.append(f"{a} <-> {b}: {get_correlation(a, b):.2f}")
    if missing:
        lines.extend(["", f"Warning: No data found for: {', '.join(missing)}"])
    lines.extend(["", "Based on institutional correlation matrix and Vanguard Capital Market Assumptions methodology."])
    return SearchResult("\n".join(lines), [DATA_SOURCE])
