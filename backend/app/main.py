from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bound_contextvars

from backend.app.api.routes import router
from backend.app.dependencies import get_settings, get_telemetry, shutdown_collection_service
from backend.app.logging_config import configure_application_logging

REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    # Fails startup when the API key is missing.
    configure_application_logging(get_settings())
    try:
        yield
    finally:
        shutdown_collection_service()


def _request_id(request: Request) -> str:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return incoming or str(uuid4())


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = _request_id(request)
    method = request.method
    path = request.url.path
    with bound_contextvars(http_request_id=request_id, http_method=method, http_path=path):
        with get_telemetry().track(
            "http.request",
            request_id=request_id,
            method=method,
            path=path,
        ) as outcome:
            response = await call_next(request)
            outcome["status_code"] = response.status_code
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Brand Monitor API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
