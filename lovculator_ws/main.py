"""
WebSocket Gateway main application.

Real-time presence and event fan-out for Lovculator: direct messages,
seen receipts, typing indicators, notifications, likes and comments.

Run:
    python -m lovculator_ws.main
    lovculator-ws
"""

from __future__ import annotations

import asyncio
import hmac
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Header, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from lovculator_shared.config.logging import setup_logging, ws_gateway_logger as logger
from lovculator_shared.config.settings import settings
from lovculator_shared.infrastructure import check_redis_async_health, close_redis_pool, dispose_engine
from lovculator_shared.infrastructure.correlation import CorrelationIdMiddleware
from lovculator_ws.components.core.constants import DEFAULT_ALLOWED_ORIGINS, WS_ENDPOINT
from lovculator_ws.components.endpoints import RealtimeEndpoint
from lovculator_ws.components.metrics.prometheus import generate_prometheus_metrics
from lovculator_ws.connection_manager import ConnectionManager
from lovculator_ws.core import install_fatal_error_handler
from lovculator_ws.publisher import RealtimePublisher


# Global connection manager
manager = ConnectionManager()


# =============================================================================
# Lifespan and background tasks
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Starts:
    - Cluster bridge (Redis subscriber when REDIS_URL is set)
    - Heartbeat probe task
    - Rate limiter sweep task

    On exit, releases Redis and the database engine. The graceful shutdown
    normally already ran in GatewayServer.shutdown(); under other servers
    it runs here instead.
    """
    setup_logging()
    logger.info(
        "Starting WebSocket Gateway",
        port=settings.ws_gateway_port,
        env=settings.environment,
        cluster=settings.cluster_enabled,
    )
    for problem in settings.validate_production_secrets():
        logger.warning("Configuration problem", problem=problem)

    install_fatal_error_handler(asyncio.get_running_loop(), settings.environment)

    app.state.manager = manager
    app.state.publisher = RealtimePublisher(manager.bridge)

    await manager.bridge.start()
    tasks = [
        asyncio.create_task(manager.heartbeat.run(), name="heartbeat_probe"),
        asyncio.create_task(start_rate_limit_sweep(), name="rate_limit_sweep"),
    ]

    yield

    logger.info("Shutting down WebSocket Gateway")
    await manager.lifecycle.shutdown()

    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass

    await close_redis_pool()
    dispose_engine()
    logger.info("WebSocket Gateway stopped")


async def start_rate_limit_sweep() -> None:
    """Periodically drop rate-limit windows with no recent attempts."""
    while True:
        try:
            await asyncio.sleep(settings.ws_rate_limit_sweep_interval)
            removed = manager.rate_limiter.sweep()
            if removed > 0:
                logger.debug("Swept rate limiter windows", count=removed)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in rate limiter sweep", error=str(e))


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Lovculator WebSocket Gateway",
    description="Real-time presence and event fan-out",
    version="1.0.0",
    lifespan=lifespan,
)

DEFAULT_WS_ORIGINS = list(DEFAULT_ALLOWED_ORIGINS) + [
    origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
]

ws_allowed_origins = (
    [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.allowed_origins
    else DEFAULT_WS_ORIGINS
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ws_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "X-Status-Token", "X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware)


# =============================================================================
# Health Check
# =============================================================================


@app.get("/ws/health")
def health_check():
    """Basic health check endpoint."""
    try:
        stats = manager.get_stats_sync()
    except Exception as e:
        logger.warning("Failed to get stats in health check", error=str(e))
        stats = {"error": "stats_unavailable"}
    return {
        "status": "healthy",
        "service": "ws-gateway",
        "version": app.version,
        "environment": settings.environment,
        **stats,
    }


@app.get("/ws/health/detailed")
async def detailed_health_check():
    """Health check with backplane status. 503 when a configured backplane is down."""
    checks = {
        "service": "ws-gateway",
        "environment": settings.environment,
        "connections": manager.get_stats_sync(),
        "backplane": manager.bridge.get_status(),
        "dependencies": {"redis": await check_redis_async_health()},
    }

    healthy = True
    if settings.cluster_enabled:
        healthy = (
            manager.bridge.is_connected
            and checks["dependencies"]["redis"]["status"] == "healthy"
        )

    checks["status"] = "healthy" if healthy else "degraded"
    if not healthy:
        return JSONResponse(content=checks, status_code=503)
    return checks


# =============================================================================
# Diagnostics
# =============================================================================


@app.get("/ws/status")
def status(x_status_token: str | None = Header(default=None)):
    """
    Aggregate counters for operators.

    Gated by the X-Status-Token header; disabled (404) when no token is
    configured.
    """
    expected = settings.ws_status_token
    if not expected:
        raise HTTPException(status_code=404, detail="Not Found")
    if not x_status_token or not hmac.compare_digest(x_status_token.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Forbidden")
    return manager.get_status()


@app.get("/ws/metrics")
def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Configure Prometheus scrape:
        scrape_configs:
          - job_name: 'lovculator-ws'
            static_configs:
              - targets: ['localhost:3001']
            metrics_path: '/ws/metrics'
    """
    return PlainTextResponse(
        content=generate_prometheus_metrics(manager),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


# =============================================================================
# WebSocket Endpoint
# =============================================================================


@app.websocket(WS_ENDPOINT)
async def realtime_websocket(websocket: WebSocket):
    """
    Realtime endpoint. Authenticated by the web app's session cookie.
    """
    endpoint = RealtimeEndpoint(websocket, manager)
    await endpoint.run()


# =============================================================================
# Server
# =============================================================================


class GatewayServer(uvicorn.Server):
    """
    uvicorn server that notifies clients before dropping them.

    uvicorn closes open websockets with 1012 before the lifespan shutdown
    phase starts, so SERVER_SHUTDOWN has to go out from here.
    """

    async def shutdown(self, sockets=None) -> None:
        try:
            await manager.lifecycle.shutdown()
        except Exception as e:
            logger.error("Graceful shutdown failed", error=str(e), exc_info=True)
        await super().shutdown(sockets=sockets)


def run() -> None:
    """Serve the gateway with GatewayServer."""
    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=settings.ws_gateway_port,
        log_level="debug" if settings.debug else "info",
    )
    GatewayServer(config).run()


if __name__ == "__main__":
    run()
