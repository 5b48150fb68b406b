"""FastAPI application exposing a YieldManager."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from yieldrouter.api.routers import manager as manager_router
from yieldrouter.core.errors import (
    BackendCallFailed,
    RebalanceNotProfitable,
    Unauthorized,
    YieldRouterError,
)
from yieldrouter.logging import get_logger
from yieldrouter.manager import YieldManager

logger = get_logger(__name__)


def _status_for(exc: YieldRouterError) -> int:
    if isinstance(exc, RebalanceNotProfitable):
        return 409
    if isinstance(exc, Unauthorized):
        return 403
    if isinstance(exc, BackendCallFailed):
        return 502
    return 400


def create_app(manager: YieldManager) -> FastAPI:
    """Build the API around an already-wired manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run the manager's event bus for the lifetime of the app."""
        bus = manager.bus
        if bus is not None:
            await bus.start()
        yield
        if bus is not None:
            await bus.stop()

    app = FastAPI(
        title="Yield Router API",
        description="Capital allocation and rebalancing across yield backends",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.manager = manager

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(YieldRouterError)
    async def yield_router_error_handler(request: Request, exc: YieldRouterError):
        request_id = getattr(request.state, "request_id", "unknown")
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error(f"Backend failure [request_id={request_id}]: {exc}", exc_info=True)
        content = {"error": type(exc).__name__, "detail": str(exc), "request_id": request_id}
        if isinstance(exc, RebalanceNotProfitable):
            content["decision"] = exc.decision.model_dump()
        return JSONResponse(status_code=status_code, content=content)

    app.include_router(manager_router.router)
    return app
