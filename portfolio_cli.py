import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from portfolio_analyst.streaming import SSEDecoder


DEFAULT_API_BASE = "http://127.0.0.1:8000"
TEXT_TYPES = {".csv": "csv", ".xlsx": "xlsx", ".xls": "xls", ".docx": "docx", ".pdf": "pdf"}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _load_documents(paths: List[str]) -> List[Dict[str, Any]]:
    """Read already-extracted text files; the original extension picks the document type."""
    documents = []
    for raw in paths:
        path = Path(raw)
        # "statement.pdf.txt" is the extracted text of "statement.pdf"
        suffix = Path(path.stem).suffix.lower() if path.suffix.lower() == ".txt" else path.suffix.lower()
        documents.append(
            {
                "fileName": path.name,
                "content": path.read_text(encoding="utf-8", errors="replace"),
                "type": TEXT_TYPES.get(suffix, "csv"),
            }
        )
    return documents


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    profile: Dict[str, Any] = {
        "name": args.name,
        "investorType": args.investor_type,
        "phase": args.phase,
        "ageRange": args.age_range,
        "fundCommentary": args.fund_commentary,
        "includeRiskSummary": args.risk_summary,
        "valueForMoney": args.value_for_money,
        "isIndustrySuperFund": bool(args.industry_fund),
    }
    if args.industry_fund:
        profile["industrySuperFundName"] = args.industry_fund
        profile["industrySuperFundRiskProfile"] = args.industry_fund_risk or args.investor_type
    return {"profile": profile, "files": _load_documents(args.files)}


def _print_progress(event: Dict[str, Any]) -> None:
    print(f"[{event.get('step', 0):>3}%] {event.get('label', '')}", file=sys.stderr)


def run_analyze(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    payload = build_payload(args)
    decoder = SSEDecoder()
    terminal: Optional[Dict[str, Any]] = None
    with httpx.Client(timeout=args.timeout) as client:
        with client.stream("POST", _join_url(base, "/api/analyze"), json=payload) as resp:
            if resp.status_code >= 400:
                resp.read()
                print(f"Analysis request failed: HTTP {resp.status_code} {resp.text}")
                return 1
            for chunk in resp.iter_bytes():
                for event in decoder.feed(chunk):
                    if event.get("type") == "progress":
                        _print_progress(event)
                    elif event.get("type") in ("result", "error"):
                        terminal = event
            for event in decoder.flush():
                if event.get("type") in ("result", "error"):
                    terminal = event
    if terminal is None:
        print("Stream ended without a result.")
        return 1
    if terminal["type"] == "error":
        print(f"Analysis failed: {terminal.get('error')}")
        return 1
    data = terminal.get("data") or {}
    if args.output:
        Path(args.output).write_text(json.dumps(data, indent=2), encoding="utf-8")
        print(f"Saved analysis to {args.output}")
    else:
        print((data.get("analysis") or {}).get("markdown", ""))
    return 0


def run_fetch_returns(args: argparse.Namespace) -> int:
    base = args.base_url or DEFAULT_API_BASE
    tools = []
    for item in args.holdings:
        name, _, ticker = item.partition("=")
        tools.append(
            {
                "name": "search_holding_return",
                "input": {"holding_name": name, "ticker": ticker or name, "timeframe_period": args.period},
            }
        )
    with httpx.Client(timeout=args.timeout) as client:
        resp = client.post(_join_url(base, "/api/fetch-returns"), json={"tools": tools})
        if resp.status_code >= 400:
            print(f"Failed to fetch returns: HTTP {resp.status_code}")
            return 1
        for item in resp.json().get("returns") or []:
            if item.get("totalReturn") is None:
                print(f"- {item.get('holdingName')}: {item.get('error') or 'no return found'}")
            else:
                print(f"- {item.get('holdingName')}: {item['totalReturn']:.2f}% ({item.get('timeframe') or 'n/a'})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Portfolio Analyst CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    parser.add_argument("--timeout", type=float, default=600.0, help="Request timeout seconds")
    subparsers = parser.add_subparsers(dest="command")

    analyze = subparsers.add_parser("analyze", help="Stream an analysis of extracted portfolio documents")
    analyze.add_argument("files", nargs="+", help="Extracted document text files")
    analyze.add_argument("--name", required=True)
    analyze.add_argument(
        "--investor-type",
        default="Balanced",
        choices=["High Growth", "Growth", "Balanced", "Conservative", "Defensive"],
    )
    analyze.add_argument("--phase", default="Accumulation", choices=["Accumulation", "Investment", "Non-super", "Pension"])
    analyze.add_argument("--age-range", default="40-60", choices=["Under 40", "40-60", "60-80", "80+"])
    analyze.add_argument("--fund-commentary", action="store_true")
    analyze.add_argument("--risk-summary", action="store_true")
    analyze.add_argument("--value-for-money", action="store_true")
    analyze.add_argument("--industry-fund", help="Industry super fund name")
    analyze.add_argument("--industry-fund-risk", help="Industry super fund risk profile")
    analyze.add_argument("--output", help="Write the full result JSON here")

    returns = subparsers.add_parser("returns", help="Look up holding returns")
    returns.add_argument("holdings", nargs="+", help="Holding as NAME=TICKER (e.g. 'Commonwealth Bank=CBA.AX')")
    returns.add_argument("--period", required=True, help="e.g. '1 Jul 2024 to 30 Jun 2025'")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "analyze":
        return run_analyze(args)
    if args.command == "returns":
        return run_fetch_returns(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
