"""
FastAPI server exposing valuation, reconciliation and readiness per account.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .core.exceptions import MalformedInputError, UpstreamUnavailableError
from .core.logging_utils import get_logger
from .core.utils import get_version
from .engine import ValuationService


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    timestamp: float
    uptime: float
    version: str


class ValuationServer:
    """FastAPI server for one ValuationService."""

    def __init__(self, service: ValuationService, host: str = "127.0.0.1", port: int = 8000):
        """Initialize the server.

        Args:
            service: Service answering the account endpoints
            host: Server host address
            port: Server port
        """
        self.service = service
        self.host = host
        self.port = port
        self.app: Optional[FastAPI] = None
        self.logger = get_logger("valuation_server")
        self._start_time = time.time()

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application
        """
        service = self.service

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.logger.info(f"Starting valuation server on {self.host}:{self.port}")
            yield
            await service.aclose()
            self.logger.info("Shutting down valuation server")

        app = FastAPI(
            title="Crypto Valuation Server",
            description="Portfolio valuation, wallet reconciliation and live-trading readiness",
            version=get_version(),
            lifespan=lifespan,
        )

        @app.exception_handler(MalformedInputError)
        async def malformed_input(request: Request, exc: MalformedInputError):
            self.logger.warning(f"MALFORMED_INPUT: path={request.url.path} error={exc}")
            return JSONResponse(status_code=422, content={"error": "malformed_input", "detail": str(exc), "field": exc.field})

        @app.exception_handler(UpstreamUnavailableError)
        async def upstream_unavailable(request: Request, exc: UpstreamUnavailableError):
            self.logger.error(f"UPSTREAM_UNAVAILABLE: path={request.url.path} source={exc.source} error={exc}")
            return JSONResponse(
                status_code=503,
                content={"error": "upstream_unavailable", "detail": str(exc), "source": exc.source},
            )

        @app.get("/health", response_model=HealthResponse)
        async def health_check():
            """Health check endpoint."""
            return HealthResponse(
                status="healthy",
                timestamp=time.time(),
                uptime=time.time() - self._start_time,
                version=get_version(),
            )

        @app.get("/accounts/{account_id}/valuation")
        async def get_valuation(account_id: str, mode: str, refresh: bool = False):
            """Ledger valuation of one account in one mode."""
            snapshot = await service.get_valuation(account_id, mode, refresh=refresh)
            return {"account_id": account_id, **snapshot.to_dict()}

        @app.get("/accounts/{account_id}/reconciliation")
        async def get_reconciliation(account_id: str, refresh: bool = False):
            """Drift between the real-money ledger and the on-chain wallet."""
            result = await service.get_reconciliation(account_id, refresh=refresh)
            return {"account_id": account_id, **result.to_dict()}

        @app.get("/accounts/{account_id}/readiness")
        async def get_readiness(account_id: str):
            """Freshly derived live-trading readiness."""
            evaluation = await service.get_readiness(account_id)
            return evaluation.to_dict()

        self.app = app
        return app

    async def start_server(self) -> None:
        """Serve the application with uvicorn until stopped."""
        import uvicorn

        if self.app is None:
            self.app = self.create_app()

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()


def create_app(service: ValuationService) -> FastAPI:
    """Build the FastAPI application for a service."""
    return ValuationServer(service).create_app()
