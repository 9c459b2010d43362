import portfolio_cli
from portfolio_analyst.schemas import AnalyzeRequest


def test_build_payload_validates_as_request(tmp_path):
    doc = tmp_path / "statement.pdf.txt"
    doc.write_text("Cash 100000", encoding="utf-8")
    args = portfolio_cli.build_parser().parse_args(
        ["analyze", str(doc), "--name", "Jane", "--risk-summary", "--industry-fund", "AustralianSuper"]
    )
    payload = portfolio_cli.build_payload(args)
    request = AnalyzeRequest.model_validate(payload)
    assert request.files[0].type == "pdf"
    assert request.files[0].content == "Cash 100000"
    assert request.profile.includeRiskSummary
    assert request.profile.industrySuperFundRiskProfile == "Balanced"


def test_main_without_command_prints_help(capsys):
    assert portfolio_cli.main([]) == 1
    assert "Portfolio Analyst CLI" in capsys.readouterr().out
