from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


InvestorType = Literal["High Growth", "Growth", "Balanced", "Conservative", "Defensive"]
Phase = Literal["Accumulation", "Investment", "Non-super", "Pension"]
AgeRange = Literal["Under 40", "40-60", "60-80", "80+"]
FileType = Literal["pdf", "docx", "xlsx", "xls", "csv"]


class InvestorProfile(BaseModel):
    name: str = Field(min_length=1)
    investorType: InvestorType
    phase: Phase
    ageRange: AgeRange
    fundCommentary: bool
    includeRiskSummary: bool
    valueForMoney: bool = False
    isIndustrySuperFund: bool
    industrySuperFundName: Optional[str] = None
    industrySuperFundRiskProfile: Optional[Literal["High Growth", "Growth", "Balanced", "Conservative", "Defensive", ""]] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        return value

    @model_validator(mode="after")
    def _industry_fund_fields(self) -> "InvestorProfile":
        if self.isIndustrySuperFund:
            if not (self.industrySuperFundName or "").strip() or not self.industrySuperFundRiskProfile:
                raise ValueError(
                    "Industry super fund name and risk profile are required when industry super fund is selected"
                )
        return self


class DocumentPayload(BaseModel):
    fileName: str
    content: str
    type: FileType
    isScanned: Optional[bool] = None
    base64Data: Optional[str] = None

    @property
    def is_native_pdf(self) -> bool:
        return bool(self.isScanned and self.base64Data and self.type == "pdf")

    def payload_bytes(self) -> int:
        size = len(self.content.encode("utf-8"))
        if self.base64Data:
            # base64 expands 3 bytes into 4 characters
            size += len(self.base64Data) * 3 // 4
        return size


class PrecomputedReturn(BaseModel):
    holdingName: str
    totalReturn: Optional[float] = None
    timeframe: Optional[str] = None
    ticker: Optional[str] = None


class AnalyzeRequest(BaseModel):
    profile: InvestorProfile
    files: List[DocumentPayload] = Field(min_length=1)
    precomputedReturns: Optional[List[PrecomputedReturn]] = None


class ToolInvocation(BaseModel):
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class FetchReturnsRequest(BaseModel):
    tools: List[ToolInvocation]


class HoldingReturn(BaseModel):
    holdingName: str = ""
    ticker: Optional[str] = None
    totalReturn: Optional[float] = None
    timeframe: Optional[str] = None
    error: Optional[str] = None


class AnalysisResult(BaseModel):
    markdown: str
    chartData: Dict[str, Any]

    model_config = {"extra": "allow"}


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    step: int
    total: int
    label: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    data: Dict[str, Any]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    kind: Optional[str] = None
