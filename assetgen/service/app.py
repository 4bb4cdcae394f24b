"""FastAPI application and ASGI middleware for dynamic asset serving."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..orchestrator import DynamicResponse, Orchestrator


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator() -> Orchestrator:
    return Orchestrator.from_path(Path.cwd())


def _to_response(result: DynamicResponse) -> Response:
    headers = {"ETag": result.etag} if result.etag else None
    if result.status == 200:
        return Response(
            content=result.body,
            status_code=200,
            media_type=result.content_type,
            headers=headers,
        )
    if result.status == 304:
        return Response(status_code=304, headers=headers)
    return JSONResponse(status_code=result.status, content={"detail": result.body})


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application serving assets on demand.

    The factory runs once; its engine and caches live for the application's
    lifetime and are closed on shutdown.
    """
    orchestrator = orchestrator_factory()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await orchestrator.engine.close()

    app = FastAPI(title="assetgen", version="1.0.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/{asset_path:path}")
    async def serve_asset(asset_path: str, request: Request) -> Response:
        result = await orchestrator.respond(
            f"/{asset_path}", if_none_match=request.headers.get("if-none-match")
        )
        return _to_response(result)

    return app


class AssetMiddleware(BaseHTTPMiddleware):
    """Serves matching GET requests from the engine; everything else passes through."""

    def __init__(self, app: ASGIApp, orchestrator: Orchestrator) -> None:
        super().__init__(app)
        self.orchestrator = orchestrator

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method not in {"GET", "HEAD"}:
            return await call_next(request)
        result = await self.orchestrator.respond(
            request.url.path, if_none_match=request.headers.get("if-none-match")
        )
        if not result.matched:
            return await call_next(request)
        return _to_response(result)


def run_service(orchestrator: Orchestrator) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app(lambda: orchestrator)
    uvicorn.run(app, host=orchestrator.config.serve.host, port=orchestrator.config.serve.port)


__all__ = ["AssetMiddleware", "create_app", "run_service"]
