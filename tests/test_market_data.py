from portfolio_analyst.market_data import (
    DATA_SOURCE,
    describe_correlation,
    describe_metric,
    describe_portfolio_risk,
    format_percent,
    get_correlation,
)


def test_correlation_is_symmetric_and_defaults():
    assert get_correlation("Australian Shares", "International Shares") == 0.73
    assert get_correlation("International Shares", "Australian Shares") == 0.73
    assert get_correlation("Cash", "Cash") == 1.0
    assert get_correlation("Cash", "Unknown Asset") == 0.0


def test_format_percent():
    assert format_percent(0.058) == "5.8%"
    assert format_percent(-0.011, 2) == "-1.10%"


def test_describe_metric_expected_return():
    result = describe_metric("Australian Shares", "expected return")
    assert result.description.startswith("Australian Shares: Expected annual return is 5.8% (0.058 as decimal).")
    assert result.sources == [DATA_SOURCE]


def test_describe_metric_volatility():
    result = describe_metric("Domestic Cash", "volatility")
    assert "Standard deviation (volatility) is 1.1% (0.011 as decimal)" in result.description


def test_describe_metric_unknown_class():
    result = describe_metric("Crypto", "volatility")
    assert result.description.startswith("No data available for asset class: Crypto.")
    assert result.sources == []


def test_describe_correlation_text():
    result = describe_correlation("Cash", "Property")
    assert "between Cash and Property is 0.02." in result.description


def test_describe_portfolio_risk_sections():
    result = describe_portfolio_risk(["Australian Shares", "Cash", "Crypto"])
    text = result.description
    assert "=== EXPECTED RETURNS & VOLATILITY ===" in text
    assert "=== CORRELATION MATRIX ===" in text
    assert "Total pairs: 3" in text
    assert "Australian Shares <-> Cash: -0.01" in text
    assert "Cash <-> Crypto: 0.00" in text
    assert "Warning: No data found for: Crypto" in text


def test_describe_portfolio_risk_empty():
    assert describe_portfolio_risk([]).description == "Error: No asset classes provided"
