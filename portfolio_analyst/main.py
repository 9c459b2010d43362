import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple, Type

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from .config import AppSettings, load_settings
from .errors import AnalysisError, BackendOverloadedError, BackendRateLimitError
from .llm import AnthropicClient
from .orchestrator import Backend, run_analysis
from .returns import parse_return_text
from .schemas import AnalyzeRequest, FetchReturnsRequest, HoldingReturn
from .search import TavilyClient
from .streaming import ProgressSink, stream_job
from .tools import build_registry, dispatch_batched

logger = logging.getLogger("uvicorn.error")

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}
TOOL_FAILURE_PREFIXES = ("Error executing ", "Unknown tool: ")


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


def get_search_client(request: Request) -> TavilyClient:
    return request.app.state.search_client


def _failure(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"success": False, "error": message, **extra}, status_code=status_code)


async def _parse_body(request: Request, model: Type[BaseModel]) -> Tuple[Any, Optional[JSONResponse]]:
    try:
        body = await request.json()
    except ValueError:
        return None, _failure("Failed to parse request body", 400)
    try:
        return model.model_validate(body), None
    except ValidationError as exc:
        return None, _failure("Invalid request data", 400, details=json.loads(exc.json(include_url=False)))


def _check_limits(payload: AnalyzeRequest, settings: AppSettings) -> Optional[JSONResponse]:
    if len(payload.files) > settings.max_files:
        return _failure(f"Too many files. A maximum of {settings.max_files} files can be analysed at once.", 400)
    for doc in payload.files:
        if doc.payload_bytes() > settings.max_upload_bytes:
            return _failure(f"File {doc.fileName} exceeds the {settings.upload_max_mb} MB limit.", 400)
    return None


def _status_for(exc: AnalysisError) -> int:
    if isinstance(exc, BackendRateLimitError):
        return 429
    if isinstance(exc, BackendOverloadedError):
        return 503
    return 500


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/settings")
async def get_settings_route(settings: AppSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.post("/api/analyze")
async def analyze(
    request: Request,
    stream: bool = True,
    settings: AppSettings = Depends(get_settings),
    backend: Backend = Depends(get_backend),
    search_client: TavilyClient = Depends(get_search_client),
):
    payload, failure = await _parse_body(request, AnalyzeRequest)
    if failure is not None:
        return failure
    failure = _check_limits(payload, settings)
    if failure is not None:
        return failure
    if not getattr(backend, "enabled", True):
        logger.error("Anthropic API key is not configured")
        return _failure("API configuration error. Please contact support.", 500)

    precomputed = payload.precomputedReturns or []
    if precomputed:
        logger.info("Using %s precomputed returns", len(precomputed))
    registry = build_registry(search_client, include_returns=not precomputed)

    async def job(on_progress: Optional[ProgressSink] = None) -> Dict[str, Any]:
        return await run_analysis(backend, settings, payload, registry, on_progress)

    if stream:
        return StreamingResponse(
            stream_job(job, close_delay_s=settings.stream_close_delay_s),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        data = await job()
    except AnalysisError as exc:
        logger.error("Analysis failed (%s): %s", exc.kind, exc.message)
        return _failure(exc.message, _status_for(exc), kind=exc.kind)
    except Exception as exc:
        logger.exception("Unexpected error during analysis")
        return _failure(str(exc) or "An unexpected error occurred", 500, kind="internal_error")
    return {"success": True, "data": data}


@router.post("/api/fetch-returns")
async def fetch_returns(
    request: Request,
    settings: AppSettings = Depends(get_settings),
    search_client: TavilyClient = Depends(get_search_client),
):
    payload, failure = await _parse_body(request, FetchReturnsRequest)
    if failure is not None:
        return failure
    registry = build_registry(search_client)
    concurrency = settings.fetch_returns_concurrency
    logger.info("Executing %s return-fetching tools with concurrency %s", len(payload.tools), concurrency)
    texts = await dispatch_batched(registry, payload.tools, concurrency=concurrency)

    returns = []
    for call, text in zip(payload.tools, texts):
        if text.startswith(TOOL_FAILURE_PREFIXES):
            returns.append(
                HoldingReturn(
                    holdingName=str(call.input.get("holding_name") or call.input.get("fund_name") or ""),
                    ticker=call.input.get("ticker"),
                    error=text,
                )
            )
        else:
            returns.append(parse_return_text(text, call.input))
    found = sum(1 for item in returns if item.totalReturn is not None)
    logger.info("Completed %s return lookups, %s with a return", len(returns), found)
    return {"success": True, "returns": [item.model_dump(exclude_none=True) for item in returns]}


def create_app(
    settings: AppSettings,
    *,
    backend: Optional[Backend] = None,
    search_client: Optional[TavilyClient] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            close = getattr(app.state.backend, "close", None)
            if close is not None:
                await close()
            await app.state.search_client.close()

    app = FastAPI(title="Portfolio Analyst", lifespan=lifespan)
    app.state.settings = settings
    app.state.backend = backend or AnthropicClient(
        settings.anthropic_api_key,
        base_url=settings.anthropic_base_url,
        model=settings.claude_model,
        version=settings.anthropic_version,
        timeout=settings.request_timeout_s,
    )
    app.state.search_client = search_client or TavilyClient(
        settings.tavily_api_key, max_results=settings.search_max_results
    )
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("PORTFOLIO_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "portfolio_analyst.main:app",
            host=settings.host,
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
