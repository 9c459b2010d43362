from typing import Optional


class AnalysisError(Exception):
    """Base for every failure that is surfaced to the caller as a terminal error."""

    kind = "analysis_error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class BackendError(AnalysisError):
    kind = "backend_error"

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message, detail=detail)
        self.status_code = status_code


class BackendAuthError(BackendError):
    kind = "backend_auth"


class BackendRateLimitError(BackendError):
    kind = "backend_rate_limited"


class BackendOverloadedError(BackendError):
    kind = "backend_overloaded"


class UnexpectedBackendStateError(BackendError):
    kind = "unexpected_backend_state"


class EmptyResponseError(BackendError):
    kind = "empty_response"


class NonConvergentLoopError(AnalysisError):
    kind = "non_convergent_loop"

    def __init__(self, max_iterations: int):
        super().__init__(
            f"Max iterations ({max_iterations}) reached without a final answer. "
            "The analysis did not settle; please try again with fewer documents."
        )
        self.max_iterations = max_iterations


class ResultParseError(AnalysisError):
    kind = "result_parse_error"


class MalformedResponseError(ResultParseError):
    kind = "malformed"


class TruncatedResponseError(ResultParseError):
    kind = "truncated"


class InvalidStructureError(ResultParseError):
    kind = "invalid_structure"


class BackendReportedError(ResultParseError):
    kind = "backend_reported"
