from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from swapledger.addressing import Role
from swapledger.config import bridge, engine, factory, settings
from swapledger.errors import EscrowError
from swapledger.middleware import IdempotencyMiddleware, RequestIdMiddleware
from swapledger.models import Base
from swapledger.routes import accounts, escrows, ledger, orders, webhooks
from swapledger.schemas import HealthResponse
from swapledger.tasks import background_sweep_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    sweeper = asyncio.create_task(background_sweep_loop()) if settings.sweep_enabled else None
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper


def _error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": getattr(request.state, "request_id", ""),
            }
        },
    )


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    logger.info("%s %s rejected: %s %s", request.method, request.url.path, exc.code, exc.message)
    return _error(request, exc.status_code, exc.code, exc.message)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(request, 422, "INVALID_REQUEST", str(exc))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = {401: "UNAUTHENTICATED", 403: "FORBIDDEN", 404: "NOT_FOUND", 409: "CONFLICT"}.get(
        exc.status_code, "HTTP_ERROR"
    )
    return _error(request, exc.status_code, code, str(exc.detail))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Swap Ledger",
        version="0.1.0",
        description=(
            "REST API for one ledger of a cross-ledger atomic swap. Hosts the escrow factory, "
            "hash-time-locked escrow instances and the order settlement boundary."
        ),
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "Health", "description": "Service health check"},
            {"name": "Accounts", "description": "Ledger identities and API keys"},
            {"name": "Ledger", "description": "Balances, deposits and transfers"},
            {"name": "Factory", "description": "Escrow address derivation and destination escrow creation"},
            {"name": "Orders", "description": "Signed order fills that create source escrows"},
            {"name": "Escrows", "description": "Withdraw, cancel and rescue, events and revealed secrets"},
            {"name": "Webhooks", "description": "Webhook registration and management"},
        ],
    )

    app.add_middleware(IdempotencyMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(EscrowError, escrow_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health() -> HealthResponse:
        return HealthResponse(
            chain_id=settings.chain_id,
            factory_address=factory.address,
            settlement_address=bridge.verifying_contract,
            access_token=factory.escrow(Role.SOURCE).access_token,
        )

    api_router = APIRouter()
    api_router.include_router(accounts.router)
    api_router.include_router(ledger.router)
    api_router.include_router(escrows.router)
    api_router.include_router(orders.router)
    api_router.include_router(webhooks.router)

    app.include_router(api_router, prefix="/v1")
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "swapledger.app:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )
