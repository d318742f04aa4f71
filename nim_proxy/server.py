"""
FastAPI server for the NIM proxy.
This module contains the FastAPI application and API endpoints.
"""

import json
import logging
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from .client import build_model_mapping, create_backend_client
from .config import Config
from .converter import build_backend_request, build_model_list, convert_backend_response
from .errors import (
    API_ERROR,
    INVALID_REQUEST_ERROR,
    BackendHTTPError,
    BackendResponseError,
    BackendTransportError,
    ProxyError,
    error_type_for_status,
    make_error,
    parse_backend_error,
)
from .midstream_abort import MidStreamAbortMiddleware
from .streaming import STREAM_HEADERS, open_backend_stream, relay_stream
from .types import ChatCompletionRequest, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.get("/health")
async def health(raw_request: Request):
    config: Config = raw_request.app.state.config
    return HealthResponse(api_key_set=config.api_key_set, api_base=config.api_base).model_dump()


@router.get("/v1/models")
async def list_models(raw_request: Request):
    return build_model_list(raw_request.app.state.model_mapping).model_dump()


@router.post("/v1/chat/completions")
async def create_chat_completion(raw_request: Request):
    """
    OpenAI-compatible Chat Completions endpoint.

    Maps the requested model to its NIM model, forwards the request, and
    either relays the backend event stream or returns the translated JSON
    response.
    """
    app_state = raw_request.app.state
    config: Config = app_state.config

    body = await raw_request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    if not isinstance(payload, dict):
        raise ProxyError("Request body must be a JSON object", 400, INVALID_REQUEST_ERROR)

    request = ChatCompletionRequest.model_validate(payload)
    backend_request = build_backend_request(request, app_state.model_mapping)
    backend_body = backend_request.model_dump()

    logger.info(
        f"MODEL MAPPING: {request.model} -> {backend_request.model} "
        f"(stream={request.wants_stream})"
    )

    try:
        if request.wants_stream:
            response = await open_backend_stream(app_state.client, backend_body)
            return StreamingResponse(
                relay_stream(response),
                media_type="text/event-stream",
                headers=STREAM_HEADERS,
                background=BackgroundTask(response.aclose),
            )
        return await complete_buffered(app_state.client, backend_body, request.model)

    except ProxyError as e:
        log_backend_failure(config, request, e)
        raise
    except Exception as e:
        logger.exception(f"Unexpected error in /v1/chat/completions: {type(e).__name__}")
        raise ProxyError("Internal server error", 500, API_ERROR) from e


async def complete_buffered(client: httpx.AsyncClient, backend_body: dict, requested_model):
    """Call the backend in buffered mode and translate its response."""
    start_time = time.time()
    try:
        response = await client.post("/chat/completions", json=backend_body)
    except httpx.HTTPError as e:
        raise BackendTransportError() from e

    if response.is_error:
        raise parse_backend_error(response.status_code, response.content)

    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BackendResponseError() from e

    logger.debug(
        f"Backend response received: Model={backend_body.get('model')}, "
        f"Time={time.time() - start_time:.2f}s"
    )
    return JSONResponse(content=convert_backend_response(data, requested_model).model_dump())


def log_backend_failure(config: Config, request: ChatCompletionRequest, error: ProxyError):
    """Log everything useful about a failed backend call, never the API key itself."""
    debug_info = {
        "status_code": error.status_code,
        "error_type": error.error_type,
        "error_message": error.message,
        "request_url": config.completions_url,
        "model_requested": request.model,
        "api_key_set": config.api_key_set,
        "api_key_prefix": config.redacted_api_key,
        "api_base": config.api_base,
    }
    if isinstance(error, BackendHTTPError):
        debug_info["backend_response"] = error.payload
    if error.__cause__ is not None:
        debug_info["cause"] = f"{type(error.__cause__).__name__}: {error.__cause__}"
    logger.error(f"Backend request failed: {json.dumps(debug_info, indent=2, default=str)}")


@router.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def endpoint_not_found(path: str, raw_request: Request):
    raise ProxyError(f"Endpoint {raw_request.url.path} not found", 404, INVALID_REQUEST_ERROR)


async def proxy_error_handler(request: Request, exc: ProxyError):
    return exc.to_response()


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Unsupported methods on known paths are unmatched routes too
    if exc.status_code in (404, 405):
        return ProxyError(
            f"Endpoint {request.url.path} not found", 404, INVALID_REQUEST_ERROR
        ).to_response()
    return JSONResponse(
        status_code=exc.status_code,
        content=make_error(str(exc.detail), error_type_for_status(exc.status_code), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


def create_app(config: Config | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the proxy application.

    The model mapping is built here, once, and shared read-only by every
    request. The backend client lives for the lifespan of the app.
    """
    config = config or Config()
    model_mapping = build_model_mapping(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.client = create_backend_client(config, transport)
        logger.info(f"API Key configured: {config.api_key_set}")
        logger.info(f"API Base: {config.api_base}")
        yield
        await app.state.client.aclose()

    app = FastAPI(title="NIM Proxy", lifespan=lifespan)
    app.state.config = config
    app.state.model_mapping = model_mapping

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({time.time() - start_time:.2f}s)"
        )
        return response

    app.add_middleware(MidStreamAbortMiddleware)
    app.add_exception_handler(ProxyError, proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.include_router(router)
    return app

