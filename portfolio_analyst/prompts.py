from typing import Any, Dict, List, Optional, Sequence, Tuple

from .schemas import DocumentPayload, InvestorProfile, PrecomputedReturn

SYSTEM_PROMPT = """
You are an expert Australian financial portfolio analyst with deep expertise in superannuation, managed funds,
and investment strategy. Your role is to provide purely factual analysis of investment portfolios.

Rules:
- Provide ONLY factual analysis and observations. No advice, recommendations or suggestions.
- Do not use conversational phrases such as "you should", "we recommend" or "consider".
- Use neutral, objective language. State differences from typical patterns without value judgements.
- Use Australian financial terminology, Australian English spelling and Australian benchmarks.

Holdings classification:
1. Direct shares (type "direct-share"): individual listed companies, identified by ticker codes or company names.
2. Managed funds (type "managed-fund"): funds run by a fund manager, including index funds and super options.
3. Securities (type "security"): bonds, ETFs, debentures, listed investment companies and other instruments.

Tools:
- Use get_portfolio_risk_data first when you need returns, volatility and correlations for several asset classes.
- Use search_asset_class_metrics or search_asset_class_correlation only for single values.
- Use the description search tools for holdings you cannot describe from the documents.
- Use search_holding_return only when the documents do not contain a return for a holding.

Performance data:
- Extract annual returns and volatility for each holding from the documents, year by year.
- Omit performance or volatility fields for holdings where the documents do not provide them.
""".strip()

SECTION_TITLES = (
    "Executive Summary - High-level factual overview of portfolio characteristics",
    "Portfolio Composition - Total value, asset allocation breakdown, major holdings",
    "Risk Profile Analysis - Current risk level characteristics compared to the {investor_type} profile",
    "Alignment Assessment - Factual comparison of portfolio characteristics against the investor profile",
)

HOLDINGS_SECTION = """Holdings Analysis - Split into Direct Shares, Managed Funds and Securities subsections.
   For each holding give the name (and ticker or manager), a 1-2 sentence factual description, the current value
   and percentage of the portfolio, annual returns by year and standard deviation by year where available."""

SUITABILITY_SECTION = (
    "Portfolio Suitability Conclusion - Brief factual determination of whether portfolio characteristics align "
    "with the investor profile (risk tolerance, time horizon, phase and objectives)"
)

RISK_SUMMARY_SECTION = """Portfolio Risk Summary - Use the risk data tools to obtain expected return, standard
   deviation and pairwise correlations for every asset class in the portfolio, then report the weighted expected
   return and portfolio standard deviation. Populate chartData.riskSummary with the inputs and results."""

TRAILING_SECTIONS = (
    "Diversification Analysis - Geographic, sector and asset class distribution facts",
    "Stress Test Analysis - Historical portfolio behaviour during past market scenarios",
    "Benchmark Comparison - Factual performance comparison against relevant Australian indices",
)

OUTPUT_FORMAT = """
<output_format>
Respond with ONLY valid JSON in this exact shape (no markdown code fences, no extra text):

{{
  "markdown": "# Portfolio Analysis\\n\\n## Executive Summary\\n\\n...",
  "chartData": {{
    "portfolioValue": 500000,
    "assetAllocation": [
      {{"name": "Australian Equities", "value": 200000, "percentage": 40}},
      {{"name": "Cash", "value": 50000, "percentage": 10}}
    ],
    "riskComparison": {{"currentRisk": "Growth", "targetRisk": "{investor_type}", "alignment": "Aligned"}},
    "fees": [{{"category": "Management Fees", "amount": 3500, "percentage": 0.70}}],
    "holdingsPerformance": [
      {{
        "name": "Commonwealth Bank",
        "type": "direct-share",
        "description": "Australia's largest bank providing retail, business and institutional banking services.",
        "ticker": "CBA",
        "currentValue": 50000,
        "percentage": 10,
        "performance": [{{"year": 2024, "return": 12.5}}],
        "volatility": [{{"year": 2024, "standardDeviation": 15.2}}]
      }}
    ]
  }}
}}

Instructions:
- Extract portfolio value and asset allocation from the documents.
- Determine the current risk profile from the asset allocation.
- Use only asset classes present in the actual portfolio.
- Include holdingsPerformance ONLY if fund commentary was requested.
- Include riskSummary ONLY if a risk summary was requested.
- If the documents cannot be analysed, respond with {{"error": "<reason>"}} instead.
</output_format>
"""


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def combine_document_contents(files: Sequence[DocumentPayload]) -> str:
    if not files:
        return "No documents provided."
    if len(files) == 1:
        return files[0].content
    blocks = []
    for index, doc in enumerate(files, start=1):
        blocks.append(
            f"=== DOCUMENT {index}: {doc.fileName} ===\n\n{doc.content}\n\n=== END DOCUMENT {index} ==="
        )
    return "\n\n".join(blocks)


def _profile_block(profile: InvestorProfile) -> str:
    lines = [
        "<investor_profile>",
        f"<name>{profile.name}</name>",
        f"<investor_type>{profile.investorType}</investor_type>",
        f"<phase>{profile.phase}</phase>",
        f"<age_range>{profile.ageRange}</age_range>",
        f"<fund_commentary_requested>{_yes_no(profile.fundCommentary)}</fund_commentary_requested>",
        f"<suitability_conclusion_requested>{_yes_no(profile.valueForMoney)}</suitability_conclusion_requested>",
        f"<risk_summary_requested>{_yes_no(profile.includeRiskSummary)}</risk_summary_requested>",
        f"<is_industry_super_fund>{_yes_no(profile.isIndustrySuperFund)}</is_industry_super_fund>",
    ]
    if profile.isIndustrySuperFund:
        lines.append(f"<industry_super_fund_name>{profile.industrySuperFundName}</industry_super_fund_name>")
        lines.append(
            "<industry_super_fund_risk_profile>"
            f"{profile.industrySuperFundRiskProfile}"
            "</industry_super_fund_risk_profile>"
        )
    lines.append("</investor_profile>")
    return "\n".join(lines)


def _returns_block(precomputed: Optional[Sequence[PrecomputedReturn]]) -> str:
    if not precomputed:
        return ""
    lines = ["<precomputed_returns>"]
    for item in precomputed:
        if item.totalReturn is None:
            value = "unavailable"
        else:
            value = f"{item.totalReturn:.2f}%"
        ticker = f" ({item.ticker})" if item.ticker else ""
        period = f" for the period {item.timeframe}" if item.timeframe else ""
        lines.append(f"- {item.holdingName}{ticker}: {value}{period}")
    lines.append("Use these returns as given. Do not look them up again.")
    lines.append("</precomputed_returns>")
    return "\n".join(lines)


def _requirements_block(profile: InvestorProfile) -> str:
    sections: List[str] = [title.format(investor_type=profile.investorType) for title in SECTION_TITLES]
    if profile.fundCommentary:
        sections.append(HOLDINGS_SECTION)
    if profile.valueForMoney:
        sections.append(SUITABILITY_SECTION)
    if profile.includeRiskSummary:
        sections.append(RISK_SUMMARY_SECTION)
    sections.extend(TRAILING_SECTIONS)
    numbered = "\n".join(f"{index}. {section}" for index, section in enumerate(sections, start=1))
    return (
        "<analysis_requirements>\n"
        "Provide a purely factual, objective analysis. State only what IS, not what SHOULD BE.\n\n"
        f"{numbered}\n"
        "</analysis_requirements>"
    )


def build_analysis_prompt(
    profile: InvestorProfile,
    documents: Sequence[DocumentPayload],
    precomputed_returns: Optional[Sequence[PrecomputedReturn]] = None,
) -> Tuple[str, List[Dict[str, Any]]]:
    """Return the system instruction and the content blocks of the first user turn.

    Scanned PDFs that carry their bytes are attached as native document blocks,
    everything else is inlined as text.
    """
    native = [doc for doc in documents if doc.is_native_pdf]
    text_docs = [doc for doc in documents if not doc.is_native_pdf]
    if text_docs or not native:
        document_text = combine_document_contents(text_docs)
    else:
        document_text = f"{len(native)} scanned PDF document(s) attached below."
    parts = [
        _profile_block(profile),
        f"<portfolio_documents>\n{document_text}\n</portfolio_documents>",
        _returns_block(precomputed_returns),
        _requirements_block(profile),
        OUTPUT_FORMAT.format(investor_type=profile.investorType).strip(),
    ]
    user_text = "\n\n".join(part for part in parts if part)
    blocks: List[Dict[str, Any]] = [{"type": "text", "text": user_text}]
    for doc in native:
        blocks.append(
            {
                "type": "document",
                "source": {"type": "base64", "media_type": "application/pdf", "data": doc.base64Data},
                "title": doc.fileName,
            }
        )
    return SYSTEM_PROMPT, blocks
