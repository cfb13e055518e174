"""Boosts Settlement: FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from settlement.api.v1.alerts import router as alerts_router
from settlement.api.v1.payments import router as payments_router
from settlement.config import settings
from settlement.ledger.solana_client import get_solana_client

# Configure root logger so all settlement.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# httpx logs full request URLs at INFO, and Telegram URLs carry the bot token.
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup: one RPC client and one HTTP client shared by every request
    app.state.solana_client = get_solana_client()
    app.state.http_client = httpx.AsyncClient(timeout=settings.notifier_timeout_seconds)
    yield
    # Shutdown: close RPC, HTTP and database connections
    from settlement.database import engine

    await app.state.solana_client.close()
    await app.state.http_client.aclose()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Settles plan upgrades, donations and promotions from custodial Solana wallets "
        "and applies the free-tier alert quota."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Routers
app.include_router(payments_router)
app.include_router(alerts_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
