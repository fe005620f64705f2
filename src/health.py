"""
Health Probes - Liveness and readiness endpoints for the operator pod.

Serves ``/healthz`` and ``/readyz`` with FastAPI on the probe address.
"""

import logging
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

ReadinessCheck = Callable[[], bool]


def create_probe_app(is_ready: ReadinessCheck) -> FastAPI:
    """
    Build the probe application.

    Args:
        is_ready: Returns True once the operator is processing work
    """
    app = FastAPI(
        title="Runner Webhook Operator Probes",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/healthz")
    async def healthz():
        """Liveness probe."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        """Readiness probe."""
        if not is_ready():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return {"status": "ready"}

    return app


class ProbeServer:
    """Runs the probe application with uvicorn inside the event loop."""

    def __init__(
        self,
        is_ready: ReadinessCheck,
        host: str = "0.0.0.0",
        port: int = 8081,
        log_level: str = "info",
    ):
        self.host = host
        self.port = port
        self.log_level = log_level
        self.app = create_probe_app(is_ready)
        self.server: Optional[uvicorn.Server] = None

    async def start(self) -> None:
        """Start serving probes."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level,
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting probe server on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the probe server gracefully."""
        logger.info("Stopping probe server")
        if self.server:
            self.server.should_exit = True
